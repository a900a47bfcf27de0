"""In-memory fakes of the hub and spoke Kubernetes APIs used by unit tests.

The fakes keep objects in memory and record every call as a (verb, resource)
tuple so tests can assert exactly which requests a pass made against the
hub and against the spoke.
"""

import base64
import copy
from datetime import UTC, datetime, timedelta
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from managed_identity_agent.constants import (
    MANAGED_IDENTITY_GROUP,
    MANAGED_IDENTITY_KIND,
    MANAGED_IDENTITY_VERSION,
)
from managed_identity_agent.models import format_timestamp, record_labels
from managed_identity_agent.services import StatusReporter, TokenReconciler
from managed_identity_agent.utils import (
    CredentialStore,
    ManagedIdentityStore,
    PrincipalManager,
    RefreshScheduler,
    TokenIssuer,
    TokenValidator,
)

NOW = datetime(2024, 1, 1, 1, 0, 0, tzinfo=UTC)
CLUSTER_NAME = "cluster1"
IDENTITY_NAME = "identity1"
SPOKE_NAMESPACE = "open-cluster-management-managed-identity"
CA1 = b"ca1"
CA2 = b"ca2"


def not_found() -> ApiException:
    return ApiException(status=404, reason="Not Found")


def conflict() -> ApiException:
    return ApiException(status=409, reason="Conflict")


class FakeSpokeCoreV1:
    """ServiceAccounts and the token subresource of the spoke cluster."""

    def __init__(
        self,
        service_accounts: list[client.V1ServiceAccount] | None = None,
        token: str = "token1",
        token_error: Exception | None = None,
        now: datetime = NOW,
    ):
        self.actions: list[tuple[str, str]] = []
        self.service_accounts = {
            (sa.metadata.namespace, sa.metadata.name): sa
            for sa in service_accounts or []
        }
        self.token = token
        self.token_error = token_error
        self.now = now
        self.token_requests: list[tuple[str, str, Any]] = []

    def read_namespaced_service_account(self, name, namespace, _request_timeout=None):
        self.actions.append(("get", "serviceaccounts"))
        if (namespace, name) not in self.service_accounts:
            raise not_found()
        return copy.deepcopy(self.service_accounts[(namespace, name)])

    def create_namespaced_service_account(self, namespace, body, _request_timeout=None):
        self.actions.append(("create", "serviceaccounts"))
        if (namespace, body.metadata.name) in self.service_accounts:
            raise conflict()
        self.service_accounts[(namespace, body.metadata.name)] = copy.deepcopy(body)
        return body

    def delete_namespaced_service_account(self, name, namespace, _request_timeout=None):
        self.actions.append(("delete", "serviceaccounts"))
        if self.service_accounts.pop((namespace, name), None) is None:
            raise not_found()

    def create_namespaced_service_account_token(
        self, name, namespace, body, _request_timeout=None
    ):
        self.actions.append(("create", "serviceaccounts/token"))
        self.token_requests.append((namespace, name, body))
        if self.token_error is not None:
            raise self.token_error
        expiration = self.now + timedelta(seconds=body.spec.expiration_seconds)
        return client.AuthenticationV1TokenRequest(
            spec=body.spec,
            status=client.V1TokenRequestStatus(
                token=self.token, expiration_timestamp=expiration
            ),
        )


class FakeAuthenticationV1:
    """TokenReview API of the spoke cluster."""

    def __init__(self, authenticated: bool = True, username: str | None = None):
        self.actions: list[tuple[str, str]] = []
        self.authenticated = authenticated
        self.username = username
        self.reviews: list[client.V1TokenReview] = []

    def create_token_review(self, body, _request_timeout=None):
        self.actions.append(("create", "tokenreviews"))
        self.reviews.append(body)
        user = client.V1UserInfo(username=self.username) if self.username else None
        return client.V1TokenReview(
            spec=body.spec,
            status=client.V1TokenReviewStatus(
                authenticated=self.authenticated, user=user
            ),
        )


class FakeHubCoreV1:
    """Secrets of the hub cluster with resourceVersion checks."""

    def __init__(self, secrets: list[client.V1Secret] | None = None):
        self.actions: list[tuple[str, str]] = []
        self.secrets: dict[tuple[str, str], client.V1Secret] = {}
        self.replace_error: Exception | None = None
        for secret in secrets or []:
            stored = copy.deepcopy(secret)
            stored.metadata.resource_version = stored.metadata.resource_version or "1"
            self.secrets[(stored.metadata.namespace, stored.metadata.name)] = stored

    def read_namespaced_secret(self, name, namespace, _request_timeout=None):
        self.actions.append(("get", "secrets"))
        if (namespace, name) not in self.secrets:
            raise not_found()
        return copy.deepcopy(self.secrets[(namespace, name)])

    def create_namespaced_secret(self, namespace, body, _request_timeout=None):
        self.actions.append(("create", "secrets"))
        key = (namespace, body.metadata.name)
        if key in self.secrets:
            raise conflict()
        stored = copy.deepcopy(body)
        stored.metadata.resource_version = "1"
        self.secrets[key] = stored
        return copy.deepcopy(stored)

    def replace_namespaced_secret(self, name, namespace, body, _request_timeout=None):
        self.actions.append(("update", "secrets"))
        if self.replace_error is not None:
            raise self.replace_error
        current = self.secrets.get((namespace, name))
        if current is None:
            raise not_found()
        if body.metadata.resource_version != current.metadata.resource_version:
            raise conflict()
        stored = copy.deepcopy(body)
        stored.metadata.resource_version = str(int(current.metadata.resource_version) + 1)
        self.secrets[(namespace, name)] = stored
        return copy.deepcopy(stored)

    def secret_data(self, namespace: str, name: str) -> dict[str, bytes]:
        secret = self.secrets[(namespace, name)]
        return {k: base64.b64decode(v) for k, v in (secret.data or {}).items()}


class FakeCustomObjects:
    """ManagedIdentity resources of the hub cluster."""

    def __init__(self, objects: list[dict[str, Any]] | None = None):
        self.actions: list[tuple[str, str]] = []
        self.objects = {
            (o["metadata"]["namespace"], o["metadata"]["name"]): copy.deepcopy(o)
            for o in objects or []
        }
        self.get_error: Exception | None = None
        self.status_error: Exception | None = None
        self.status_writes: list[dict[str, Any]] = []

    def get_namespaced_custom_object(
        self, group, version, namespace, plural, name, _request_timeout=None
    ):
        self.actions.append(("get", plural))
        if self.get_error is not None:
            raise self.get_error
        if (namespace, name) not in self.objects:
            raise not_found()
        return copy.deepcopy(self.objects[(namespace, name)])

    def replace_namespaced_custom_object_status(
        self, group, version, namespace, plural, name, body, _request_timeout=None
    ):
        self.actions.append(("update", f"{plural}/status"))
        if self.status_error is not None:
            raise self.status_error
        current = self.objects.get((namespace, name))
        if current is None:
            raise not_found()
        if body["metadata"].get("resourceVersion") != current["metadata"].get(
            "resourceVersion"
        ):
            raise conflict()
        self.status_writes.append(copy.deepcopy(body["status"]))
        updated = copy.deepcopy(current)
        updated["status"] = copy.deepcopy(body["status"])
        updated["metadata"]["resourceVersion"] = str(
            int(current["metadata"]["resourceVersion"]) + 1
        )
        self.objects[(namespace, name)] = updated
        return copy.deepcopy(updated)

    def status_of(self, namespace: str, name: str) -> dict[str, Any]:
        return self.objects[(namespace, name)].get("status") or {}


def managed_identity(
    namespace: str = CLUSTER_NAME,
    name: str = IDENTITY_NAME,
    validity: str | None = None,
    expiration: datetime | None = None,
    last_refresh: datetime | None = None,
    conditions: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a ManagedIdentity custom object as returned by the API server."""
    spec: dict[str, Any] = {}
    if validity is not None:
        spec["rotation"] = {"validity": validity}

    status: dict[str, Any] = {}
    if last_refresh is not None:
        status["tokenSecretRef"] = {
            "name": name,
            "lastRefreshTimestamp": format_timestamp(last_refresh),
        }
    if expiration is not None:
        status["expirationTimestamp"] = format_timestamp(expiration)
    if conditions:
        status["conditions"] = conditions

    return {
        "apiVersion": f"{MANAGED_IDENTITY_GROUP}/{MANAGED_IDENTITY_VERSION}",
        "kind": MANAGED_IDENTITY_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": "0b7f2c1e-0000-0000-0000-000000000001",
            "resourceVersion": "1",
        },
        "spec": spec,
        "status": status,
    }


def service_account(
    namespace: str = SPOKE_NAMESPACE,
    name: str = IDENTITY_NAME,
    labels: dict[str, str] | None = None,
) -> client.V1ServiceAccount:
    return client.V1ServiceAccount(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels)
    )


def credential_secret(
    token: str | None,
    ca: bytes | None,
    namespace: str = CLUSTER_NAME,
    name: str = IDENTITY_NAME,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> client.V1Secret:
    """Build a hub credential secret without any labels by default."""
    data = {}
    if token:
        data["token"] = base64.b64encode(token.encode()).decode()
    if ca:
        data["ca.crt"] = base64.b64encode(ca).decode()
    return client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=dict(labels or {}),
            annotations=dict(annotations or {}),
        ),
        type="Opaque",
        data=data,
    )


def owned_labels(principal_namespace: str = SPOKE_NAMESPACE) -> dict[str, str]:
    return record_labels(principal_namespace, IDENTITY_NAME)


class ReconcilerHarness:
    """TokenReconciler wired to in-memory hub and spoke fakes."""

    def __init__(
        self,
        identities: list[dict[str, Any]] | None = None,
        secrets: list[client.V1Secret] | None = None,
        service_accounts: list[client.V1ServiceAccount] | None = None,
        token: str = "token1",
        token_error: Exception | None = None,
        authenticated: bool = True,
        spoke_namespace: str = SPOKE_NAMESPACE,
        trust_anchor: bytes = CA1,
        now: datetime = NOW,
    ):
        self.custom = FakeCustomObjects(identities)
        self.hub_core = FakeHubCoreV1(secrets)
        self.spoke_core = FakeSpokeCoreV1(
            service_accounts, token=token, token_error=token_error, now=now
        )
        self.auth = FakeAuthenticationV1(authenticated=authenticated)
        # One ordered log for every spoke call
        self.auth.actions = self.spoke_core.actions

        identity_store = ManagedIdentityStore()
        identity_store._custom_api = self.custom
        principal_manager = PrincipalManager()
        principal_manager._v1 = self.spoke_core
        token_issuer = TokenIssuer()
        token_issuer._v1 = self.spoke_core
        token_validator = TokenValidator()
        token_validator._auth_api = self.auth
        credential_store = CredentialStore()
        credential_store._v1 = self.hub_core

        self.reconciler = TokenReconciler(
            identity_store=identity_store,
            principal_manager=principal_manager,
            token_validator=token_validator,
            token_issuer=token_issuer,
            credential_store=credential_store,
            status_reporter=StatusReporter(identity_store),
            spoke_namespace=spoke_namespace,
            trust_anchor=trust_anchor,
            scheduler=RefreshScheduler(),
            now=lambda: now,
        )

    @property
    def spoke_actions(self) -> list[tuple[str, str]]:
        """Spoke calls in the order they were made."""
        return self.spoke_core.actions

    async def reconcile(self, namespace: str = CLUSTER_NAME, name: str = IDENTITY_NAME):
        return await self.reconciler.reconcile(namespace, name)

    def status(self) -> dict[str, Any]:
        return self.custom.status_of(CLUSTER_NAME, IDENTITY_NAME)

    def condition(self, condition_type: str) -> dict[str, Any] | None:
        for condition in self.status().get("conditions", []):
            if condition["type"] == condition_type:
                return condition
        return None
