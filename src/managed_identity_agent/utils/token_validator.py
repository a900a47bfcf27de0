"""
Validation of cached tokens through the spoke cluster's TokenReview API.

Any doubt counts as invalid. A review that fails or does not authenticate
the token as the expected ServiceAccount leads to a rotation.
"""

import logging

from kubernetes import client

from ..constants import SERVICE_ACCOUNT_USERNAME_PREFIX

logger = logging.getLogger(__name__)


def service_account_username(namespace: str, name: str) -> str:
    """Username the API server reports for a ServiceAccount token."""
    return f"{SERVICE_ACCOUNT_USERNAME_PREFIX}{namespace}:{name}"


class TokenValidator:
    """Checks whether the spoke still accepts a token."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        audiences: list[str] | None = None,
        request_timeout: int | None = None,
    ):
        self.k8s_client = k8s_client
        self.audiences = audiences or []
        self.request_timeout = request_timeout
        self._auth_api: client.AuthenticationV1Api | None = None

    @property
    def auth_api(self) -> client.AuthenticationV1Api:
        """Get AuthenticationV1Api client for the spoke."""
        if self._auth_api is None:
            if self.k8s_client:
                self._auth_api = client.AuthenticationV1Api(self.k8s_client)
            else:
                self._auth_api = client.AuthenticationV1Api()
        return self._auth_api

    async def is_valid(self, token: str, namespace: str, name: str) -> bool:
        """
        Present a token to the spoke and report whether it is accepted.

        Args:
            token: Cached token
            namespace: Spoke namespace the token should belong to
            name: ServiceAccount the token should belong to

        Returns:
            True only if the spoke authenticates the token as that ServiceAccount
        """
        body = client.V1TokenReview(
            spec=client.V1TokenReviewSpec(
                token=token, audiences=list(self.audiences) or None
            )
        )

        try:
            review = self.auth_api.create_token_review(
                body=body, _request_timeout=self.request_timeout
            )
        except Exception as e:
            logger.warning(
                f"Token review for {namespace}/{name} failed, treating token as invalid: {e}"
            )
            return False

        status = review.status if review else None
        if status is None or not status.authenticated or status.error:
            reason = status.error if status is not None and status.error else "not authenticated"
            logger.info(f"Cached token for {namespace}/{name} rejected: {reason}")
            return False

        username = status.user.username if status.user else None
        expected = service_account_username(namespace, name)
        if username and username != expected:
            logger.info(
                f"Cached token authenticates as {username}, expected {expected}"
            )
            return False

        return True
