"""
ServiceAccount management on the spoke cluster.

Every ManagedIdentity is backed by a ServiceAccount of the same name in the
agent's spoke namespace. ServiceAccounts created by the agent carry the
is-managed-identity label; that label is the only thing that allows the
agent to delete one later. ServiceAccounts that already existed are used as
they are and never modified.
"""

import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import LABEL_IS_MANAGED_IDENTITY, LABEL_TRUE
from ..errors import KubernetesAPIError, PrincipalError

logger = logging.getLogger(__name__)


def is_managed_service_account(service_account: client.V1ServiceAccount) -> bool:
    """Check whether a ServiceAccount carries the agent's ownership label."""
    labels = (service_account.metadata and service_account.metadata.labels) or {}
    return labels.get(LABEL_IS_MANAGED_IDENTITY) == LABEL_TRUE


class PrincipalManager:
    """Ensures and cleans up ServiceAccounts on the spoke cluster."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        request_timeout: int | None = None,
    ):
        self.k8s_client = k8s_client
        self.request_timeout = request_timeout
        self._v1: client.CoreV1Api | None = None

    @property
    def v1(self) -> client.CoreV1Api:
        """Get CoreV1Api client for the spoke."""
        if self._v1 is None:
            if self.k8s_client:
                self._v1 = client.CoreV1Api(self.k8s_client)
            else:
                self._v1 = client.CoreV1Api()
        return self._v1

    async def get(self, namespace: str, name: str) -> client.V1ServiceAccount | None:
        """
        Retrieve a ServiceAccount.

        Returns:
            ServiceAccount if found, None if not found

        Raises:
            KubernetesAPIError: If read fails for reasons other than 404
        """
        try:
            return self.v1.read_namespaced_service_account(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                f"Failed to read service-account {namespace}/{name}",
                reason=e.reason,
                status=e.status,
                cause=e,
            ) from e
        except Exception as e:
            raise KubernetesAPIError(
                f"Failed to read service-account {namespace}/{name}: {e}", cause=e
            ) from e

    async def ensure(self, namespace: str, name: str) -> client.V1ServiceAccount:
        """
        Make sure the ServiceAccount exists, creating it with the ownership label.

        Args:
            namespace: Spoke namespace
            name: ServiceAccount name (equals the ManagedIdentity name)

        Returns:
            The existing or newly created ServiceAccount

        Raises:
            PrincipalError: If the ServiceAccount cannot be read or created
        """
        try:
            existing = await self.get(namespace, name)
        except KubernetesAPIError as e:
            raise PrincipalError(str(e), cause=e) from e
        if existing is not None:
            return existing

        body = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(
                name=name,
                namespace=namespace,
                labels={LABEL_IS_MANAGED_IDENTITY: LABEL_TRUE},
            )
        )
        try:
            created = self.v1.create_namespaced_service_account(
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 409:
                # Created concurrently by someone else; it is used as-is
                logger.debug(f"Service-account {namespace}/{name} already exists")
                return body
            raise PrincipalError(
                f"failed to create service-account {namespace}/{name}: {e.reason}",
                cause=e,
            ) from e
        except Exception as e:
            raise PrincipalError(
                f"failed to create service-account {namespace}/{name}: {e}", cause=e
            ) from e

        logger.info(f"Created service-account {namespace}/{name}")
        return created

    async def cleanup(self, namespace: str, name: str) -> bool:
        """
        Delete the ServiceAccount if and only if the agent created it.

        Args:
            namespace: Spoke namespace
            name: ServiceAccount name

        Returns:
            True if the ServiceAccount was deleted

        Raises:
            PrincipalError: If the ServiceAccount cannot be read or deleted
        """
        try:
            service_account = await self.get(namespace, name)
        except KubernetesAPIError as e:
            raise PrincipalError(str(e), cause=e) from e

        if service_account is None:
            return False

        if not is_managed_service_account(service_account):
            logger.debug(
                f"Service-account {namespace}/{name} is not managed by the agent, skip delete"
            )
            return False

        try:
            self.v1.delete_namespaced_service_account(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return False
            raise PrincipalError(
                f"failed to delete service-account {namespace}/{name}: {e.reason}",
                cause=e,
            ) from e
        except Exception as e:
            raise PrincipalError(
                f"failed to delete service-account {namespace}/{name}: {e}", cause=e
            ) from e

        logger.info(f"Deleted service-account {namespace}/{name}")
        return True
