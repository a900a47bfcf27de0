"""
Agent error hierarchy with categorization and retry logic.

This module defines the error types used throughout the managed identity
agent, providing clear categorization and integration with kopf's retry
mechanisms. Messages compose by prefixing: each call site wraps the error it
received with a stable description of what it was doing.
"""

import kopf

from ..constants import CONFLICT_REQUEUE, DEFAULT_ERROR_REQUEUE


class OperatorError(Exception):
    """
    Base of every error a reconciliation pass can end with.

    The daemon only looks at ``retryable`` and ``delay`` to decide when the
    next pass runs; ``category`` and ``user_action`` end up in logs.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        delay: int = DEFAULT_ERROR_REQUEUE,
        user_action: str | None = None,
        cause: Exception | None = None,
    ):
        """
        Args:
            message: Error text, prefixed by each caller that wraps it
            category: One of validation, api, temporary, external,
                reconciliation or configuration
            retryable: Whether another pass can succeed without user action
            delay: Seconds to wait before the next pass
            user_action: Hint for the cluster administrator
            cause: Wrapped exception
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.retryable = retryable
        self.delay = delay
        self.user_action = user_action
        self.cause = cause

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self), delay=self.delay)
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message,
            category="validation",
            retryable=False,
            user_action=user_action,
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(
        self,
        message: str,
        delay: int = DEFAULT_ERROR_REQUEUE,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            delay=delay,
            cause=cause,
        )


class KubernetesAPIError(OperatorError):
    """Error communicating with a Kubernetes API (hub or spoke)."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool = True,
        delay: int = DEFAULT_ERROR_REQUEUE,
        cause: Exception | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        super().__init__(
            message=message,
            category="api",
            retryable=retryable,
            delay=delay,
            cause=cause,
        )
        self.reason = reason
        self.status = status


class ConflictError(KubernetesAPIError):
    """Optimistic concurrency conflict; the whole pass must be retried."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=message,
            reason="Conflict",
            status=409,
            delay=CONFLICT_REQUEUE,
            cause=cause,
        )


class PrincipalError(OperatorError):
    """Failure while ensuring or cleaning up a spoke ServiceAccount."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message=message, category="external", cause=cause)


class TokenRequestError(OperatorError):
    """Failure while requesting a token from the spoke cluster."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(
            message=f"failed to request token for service-account: {message}",
            category="external",
            cause=cause,
        )


class ReconciliationError(OperatorError):
    """Error raised when a reconciliation pass cannot be completed."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        delay: int = DEFAULT_ERROR_REQUEUE,
        cause: Exception | None = None,
    ):
        super().__init__(
            message=message,
            category="reconciliation",
            retryable=retryable,
            delay=delay,
            cause=cause,
        )


class ConfigurationError(OperatorError):
    """Error in agent configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct agent configuration",
        )
