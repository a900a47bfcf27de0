"""Unit tests for the agent error hierarchy."""

import kopf

from managed_identity_agent.errors import (
    ConfigurationError,
    ConflictError,
    KubernetesAPIError,
    PrincipalError,
    ReconciliationError,
    TemporaryError,
    TokenRequestError,
    ValidationError,
)


class TestCategorization:
    def test_validation_is_permanent(self):
        error = ValidationError("must be positive", field="spec.rotation.validity")

        assert not error.retryable
        assert str(error) == (
            "Validation error in field 'spec.rotation.validity': must be positive"
        )

    def test_conflict_retries_quickly(self):
        error = ConflictError("modified concurrently")

        assert isinstance(error, KubernetesAPIError)
        assert error.retryable
        assert error.status == 409
        assert error.delay < TemporaryError("x").delay

    def test_token_request_prefix(self):
        error = TokenRequestError("forbidden")

        assert str(error) == "failed to request token for service-account: forbidden"
        assert error.retryable

    def test_principal_error_is_retryable(self):
        assert PrincipalError("failed to get service account").retryable

    def test_configuration_error_includes_action(self):
        error = ConfigurationError("CLUSTER_NAME is required")

        assert "Action required" in str(error)
        assert not error.retryable


class TestKopfConversion:
    def test_retryable_becomes_temporary(self):
        kopf_error = ReconciliationError("failed to sync token", delay=12).as_kopf_error()

        assert isinstance(kopf_error, kopf.TemporaryError)
        assert kopf_error.delay == 12

    def test_permanent_becomes_permanent(self):
        kopf_error = ValidationError("bad").as_kopf_error()

        assert isinstance(kopf_error, kopf.PermanentError)
