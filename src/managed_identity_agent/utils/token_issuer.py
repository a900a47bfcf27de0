"""
Token issuance through the spoke cluster's TokenRequest API.
"""

import logging
from datetime import UTC, datetime, timedelta

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..errors import TokenRequestError
from ..models import Credential

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Requests short-lived tokens for spoke ServiceAccounts."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        audiences: list[str] | None = None,
        request_timeout: int | None = None,
    ):
        """
        Initialize the issuer.

        Args:
            k8s_client: Spoke Kubernetes API client
            audiences: Audiences requested for every token (empty = API server default)
            request_timeout: Timeout in seconds applied to every call
        """
        self.k8s_client = k8s_client
        self.audiences = audiences or []
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

    async def request(
        self, namespace: str, name: str, validity: timedelta
    ) -> Credential:
        """
        Request a new token bound to a ServiceAccount.

        Args:
            namespace: Spoke namespace of the ServiceAccount
            name: ServiceAccount name
            validity: Requested token lifetime

        Returns:
            The issued credential

        Raises:
            TokenRequestError: If the spoke does not return a token
        """
        body = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(
                audiences=list(self.audiences),
                expiration_seconds=int(validity.total_seconds()),
            )
        )

        try:
            response = self.v1.create_namespaced_service_account_token(
                name=name,
                namespace=namespace,
                body=body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise TokenRequestError(str(e.reason or e), cause=e) from e
        except Exception as e:
            raise TokenRequestError(str(e), cause=e) from e

        status = response.status if response else None
        if status is None or not status.token:
            raise TokenRequestError(
                f"empty token returned for {namespace}/{name}"
            )

        expiration = status.expiration_timestamp
        if expiration is None:
            expiration = datetime.now(UTC) + validity
        elif expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=UTC)

        logger.debug(
            f"Issued token for service-account {namespace}/{name}, "
            f"expires at {expiration.isoformat()}"
        )
        return Credential(token=status.token, expiration_timestamp=expiration)
