"""
Credential secret management on the hub cluster.

Each ManagedIdentity has a Secret of the same namespace and name on the hub
holding the issued token and the spoke CA bundle. Both keys are always
written together. Other controllers and users may decorate the Secret with
their own labels and annotations; those are read back and carried over on
every update.
"""

import base64
import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import SECRET_CA_KEY, SECRET_TOKEN_KEY
from ..errors import ConflictError, KubernetesAPIError
from ..models import CredentialRecord, record_labels

logger = logging.getLogger(__name__)


def _encode(value: bytes) -> str:
    return base64.b64encode(value).decode()


class CredentialStore:
    """Reads and upserts credential secrets on the hub."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        request_timeout: int | None = None,
    ):
        """
        Initialize credential store.

        Args:
            k8s_client: Hub Kubernetes API client
            request_timeout: Timeout in seconds applied to every call
        """
        self.k8s_client = k8s_client
        self.request_timeout = request_timeout
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client for the hub."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    async def _read_secret(self, namespace: str, name: str) -> client.V1Secret | None:
        try:
            return self.v1.read_namespaced_secret(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}",
                reason=e.reason,
                status=e.status,
                cause=e,
            ) from e
        except Exception as e:
            raise KubernetesAPIError(
                f"Failed to read secret {namespace}/{name}: {e}", cause=e
            ) from e

    async def get(self, namespace: str, name: str) -> CredentialRecord | None:
        """
        Retrieve the credential record.

        Args:
            namespace: Hub namespace of the ManagedIdentity
            name: ManagedIdentity name

        Returns:
            The record if the secret exists, None otherwise

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        secret = await self._read_secret(namespace, name)
        if secret is None:
            return None
        return CredentialRecord.from_secret(secret)

    async def persist(
        self,
        namespace: str,
        name: str,
        token: str,
        trust_anchor: bytes,
        principal_namespace: str,
        principal_name: str,
    ) -> bool:
        """
        Create or update the credential secret.

        Only the token, the CA bundle and the agent's own labels are written.
        All other metadata on an existing secret is preserved verbatim.

        Args:
            namespace: Hub namespace of the ManagedIdentity
            name: ManagedIdentity name
            token: Token to store
            trust_anchor: Spoke CA bundle stored next to the token
            principal_namespace: Spoke namespace the token was minted in
            principal_name: ServiceAccount the token was minted for

        Returns:
            True if the secret was created or changed, False if it was already current

        Raises:
            ConflictError: If the secret changed since it was read
            KubernetesAPIError: If the read or write fails otherwise
        """
        data = {
            SECRET_TOKEN_KEY: _encode(token.encode()),
            SECRET_CA_KEY: _encode(trust_anchor),
        }
        owned_labels = record_labels(principal_namespace, principal_name)

        existing = await self._read_secret(namespace, name)
        if existing is None:
            labels: dict[str, str] = {}
            labels.update(owned_labels)
            body = client.V1Secret(
                metadata=client.V1ObjectMeta(
                    name=name,
                    namespace=namespace,
                    labels=labels,
                    annotations={},
                ),
                type="Opaque",
                data=data,
            )
            try:
                self.v1.create_namespaced_secret(
                    namespace=namespace,
                    body=body,
                    _request_timeout=self.request_timeout,
                )
            except ApiException as e:
                if e.status == 409:
                    raise ConflictError(
                        f"Secret {namespace}/{name} was created concurrently", cause=e
                    ) from e
                raise KubernetesAPIError(
                    f"Failed to create secret {namespace}/{name}",
                    reason=e.reason,
                    status=e.status,
                    cause=e,
                ) from e
            except Exception as e:
                raise KubernetesAPIError(
                    f"Failed to create secret {namespace}/{name}: {e}", cause=e
                ) from e
            logger.info(f"Created credential secret {namespace}/{name}")
            return True

        metadata = existing.metadata
        labels = dict(metadata.labels or {})
        current_data = existing.data or {}
        unchanged = (
            current_data.get(SECRET_TOKEN_KEY) == data[SECRET_TOKEN_KEY]
            and current_data.get(SECRET_CA_KEY) == data[SECRET_CA_KEY]
            and all(labels.get(k) == v for k, v in owned_labels.items())
        )
        if unchanged:
            logger.debug(f"Credential secret {namespace}/{name} is up to date")
            return False

        labels.update(owned_labels)
        merged_data = dict(current_data)
        merged_data.update(data)
        body = client.V1Secret(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels=labels,
                annotations=dict(metadata.annotations or {}),
                resource_version=metadata.resource_version,
                owner_references=metadata.owner_references,
                finalizers=metadata.finalizers,
            ),
            type=existing.type,
            data=merged_data,
        )
        try:
            self.v1.replace_namespaced_secret(
                name=name,
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"Secret {namespace}/{name} was modified concurrently", cause=e
                ) from e
            raise KubernetesAPIError(
                f"Failed to update secret {namespace}/{name}",
                reason=e.reason,
                status=e.status,
                cause=e,
            ) from e
        except Exception as e:
            raise KubernetesAPIError(
                f"Failed to update secret {namespace}/{name}: {e}", cause=e
            ) from e

        logger.info(f"Updated credential secret {namespace}/{name}")
        return True
