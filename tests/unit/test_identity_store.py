"""Unit tests for identity_store module."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException
from urllib3.exceptions import ReadTimeoutError

from managed_identity_agent.constants import (
    MANAGED_IDENTITY_GROUP,
    MANAGED_IDENTITY_PLURAL,
    MANAGED_IDENTITY_VERSION,
)
from managed_identity_agent.errors import (
    ConflictError,
    KubernetesAPIError,
    ValidationError,
)
from managed_identity_agent.models import ManagedIdentityStatus
from managed_identity_agent.utils.identity_store import ManagedIdentityStore

from .fakes import CLUSTER_NAME, IDENTITY_NAME, FakeCustomObjects, managed_identity


def store_with(fake) -> ManagedIdentityStore:
    store = ManagedIdentityStore(request_timeout=10)
    store._custom_api = fake
    return store


class TestGet:
    """Test ManagedIdentity retrieval."""

    @pytest.mark.asyncio
    async def test_returns_identity(self):
        store = store_with(FakeCustomObjects([managed_identity(validity="1h")]))

        identity = await store.get(CLUSTER_NAME, IDENTITY_NAME)

        assert identity.name == IDENTITY_NAME
        assert identity.namespace == CLUSTER_NAME

    @pytest.mark.asyncio
    async def test_returns_none_when_missing(self):
        store = store_with(FakeCustomObjects())

        assert await store.get(CLUSTER_NAME, IDENTITY_NAME) is None

    @pytest.mark.asyncio
    async def test_calls_custom_objects_api(self):
        mock_api = MagicMock()
        mock_api.get_namespaced_custom_object.return_value = managed_identity()
        store = store_with(mock_api)

        await store.get(CLUSTER_NAME, IDENTITY_NAME)

        mock_api.get_namespaced_custom_object.assert_called_once_with(
            group=MANAGED_IDENTITY_GROUP,
            version=MANAGED_IDENTITY_VERSION,
            namespace=CLUSTER_NAME,
            plural=MANAGED_IDENTITY_PLURAL,
            name=IDENTITY_NAME,
            _request_timeout=10,
        )

    @pytest.mark.asyncio
    async def test_api_error(self):
        fake = FakeCustomObjects()
        fake.get_error = ApiException(status=500, reason="internal error")

        with pytest.raises(KubernetesAPIError) as exc_info:
            await store_with(fake).get(CLUSTER_NAME, IDENTITY_NAME)

        assert str(exc_info.value) == "internal error"
        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_invalid_spec(self):
        store = store_with(FakeCustomObjects([managed_identity(validity="forever")]))

        with pytest.raises(ValidationError) as exc_info:
            await store.get(CLUSTER_NAME, IDENTITY_NAME)

        assert not exc_info.value.retryable


class TestUpdateStatus:
    """Test status writes."""

    @pytest.mark.asyncio
    async def test_writes_status_with_resource_version(self):
        fake = FakeCustomObjects([managed_identity()])
        store = store_with(fake)
        identity = await store.get(CLUSTER_NAME, IDENTITY_NAME)
        status = ManagedIdentityStatus()
        status.set_condition("TokenReported", "True", "TokenReported", "ok")

        updated = await store.update_status(identity, status)

        assert fake.actions[-1] == ("update", "managedidentities/status")
        assert fake.status_writes[0]["conditions"][0]["type"] == "TokenReported"
        assert updated.resource_version == "2"
        assert updated.status.get_condition("TokenReported").status == "True"

    @pytest.mark.asyncio
    async def test_stale_resource_version_conflicts(self):
        fake = FakeCustomObjects([managed_identity()])
        store = store_with(fake)
        identity = await store.get(CLUSTER_NAME, IDENTITY_NAME)
        await store.update_status(identity, ManagedIdentityStatus())

        with pytest.raises(ConflictError):
            await store.update_status(identity, ManagedIdentityStatus())

    @pytest.mark.asyncio
    async def test_write_failure(self):
        fake = FakeCustomObjects([managed_identity()])
        fake.status_error = ApiException(status=500, reason="boom")
        store = store_with(fake)
        identity = await store.get(CLUSTER_NAME, IDENTITY_NAME)

        with pytest.raises(KubernetesAPIError) as exc_info:
            await store.update_status(identity, ManagedIdentityStatus())
        assert not isinstance(exc_info.value, ConflictError)

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_api_error(self):
        fake = FakeCustomObjects([managed_identity()])
        store = store_with(fake)
        identity = await store.get(CLUSTER_NAME, IDENTITY_NAME)
        fake.status_error = ReadTimeoutError(None, "/api", "read timed out")

        with pytest.raises(KubernetesAPIError) as exc_info:
            await store.update_status(identity, ManagedIdentityStatus())

        assert exc_info.value.retryable
        assert exc_info.value.status is None
