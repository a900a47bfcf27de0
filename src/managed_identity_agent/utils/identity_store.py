"""
Access to ManagedIdentity resources on the hub cluster.

Reads go through the CustomObjectsApi; status writes use the status
subresource with the resourceVersion that was read, so a concurrent writer
turns into a ConflictError instead of a lost update.
"""

import logging
from typing import Any

import pydantic
from kubernetes import client
from kubernetes.client.rest import ApiException

from ..constants import (
    MANAGED_IDENTITY_GROUP,
    MANAGED_IDENTITY_PLURAL,
    MANAGED_IDENTITY_VERSION,
)
from ..errors import ConflictError, KubernetesAPIError, ValidationError
from ..models import ManagedIdentity, ManagedIdentityStatus

logger = logging.getLogger(__name__)


class ManagedIdentityStore:
    """Reads ManagedIdentity declarations and writes their status."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        request_timeout: int | None = None,
    ):
        """
        Initialize the store.

        Args:
            k8s_client: Hub Kubernetes API client
            request_timeout: Timeout in seconds applied to every call
        """
        self.k8s_client = k8s_client
        self.request_timeout = request_timeout
        self._custom_api: client.CustomObjectsApi | None = None

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        """Get CustomObjectsApi client."""
        if self._custom_api is None:
            if self.k8s_client:
                self._custom_api = client.CustomObjectsApi(self.k8s_client)
            else:
                self._custom_api = client.CustomObjectsApi()
        return self._custom_api

    async def get(self, namespace: str, name: str) -> ManagedIdentity | None:
        """
        Fetch a ManagedIdentity.

        Args:
            namespace: Hub namespace (the managed cluster's namespace)
            name: ManagedIdentity name

        Returns:
            The declaration, or None if it does not exist

        Raises:
            KubernetesAPIError: If the read fails for reasons other than 404
            ValidationError: If the resource spec cannot be parsed
        """
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                group=MANAGED_IDENTITY_GROUP,
                version=MANAGED_IDENTITY_VERSION,
                namespace=namespace,
                plural=MANAGED_IDENTITY_PLURAL,
                name=name,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesAPIError(
                str(e.reason or e), status=e.status, cause=e
            ) from e
        except Exception as e:
            raise KubernetesAPIError(
                f"Failed to read ManagedIdentity {namespace}/{name}: {e}",
                cause=e,
            ) from e

        try:
            return ManagedIdentity.from_resource(obj)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"ManagedIdentity {namespace}/{name} is invalid: {e}", field="spec"
            ) from e

    async def update_status(
        self, identity: ManagedIdentity, status: ManagedIdentityStatus
    ) -> ManagedIdentity:
        """
        Replace the status of a ManagedIdentity.

        Args:
            identity: Declaration as it was read (carries resourceVersion)
            status: New status

        Returns:
            The updated declaration

        Raises:
            ConflictError: If the resource changed since it was read
            KubernetesAPIError: If the write fails otherwise
        """
        body: dict[str, Any] = dict(identity.raw)
        body["metadata"] = dict(body.get("metadata") or {})
        body["metadata"].update(
            {
                "name": identity.name,
                "namespace": identity.namespace,
                "resourceVersion": identity.resource_version,
            }
        )
        body["status"] = status.to_api()

        try:
            updated = self.custom_api.replace_namespaced_custom_object_status(
                group=MANAGED_IDENTITY_GROUP,
                version=MANAGED_IDENTITY_VERSION,
                namespace=identity.namespace,
                plural=MANAGED_IDENTITY_PLURAL,
                name=identity.name,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"ManagedIdentity {identity.key} was modified concurrently",
                    cause=e,
                ) from e
            raise KubernetesAPIError(
                str(e.reason or e), status=e.status, cause=e
            ) from e
        except Exception as e:
            raise KubernetesAPIError(
                f"Failed to update status of ManagedIdentity {identity.key}: {e}",
                cause=e,
            ) from e

        logger.debug(f"Updated status of ManagedIdentity {identity.key}")
        return ManagedIdentity.from_resource(updated)
