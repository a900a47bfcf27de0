"""
Status reporting for ManagedIdentity resources.

A reconciliation pass collects the conditions it wants to publish and writes
them in a single status replace at the end of the pass. The write is based on
the resourceVersion fetched at the start of the pass; if anything changed the
resource in between, the write fails with a ConflictError and the pass is
retried from scratch.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from ..models import ManagedIdentity, ManagedIdentityStatus, SecretRef
from ..utils.identity_store import ManagedIdentityStore

logger = logging.getLogger(__name__)


@dataclass
class ConditionUpdate:
    """A condition to publish, identified by its type."""

    type: str
    status: str
    reason: str
    message: str = ""


class StatusReporter:
    """Writes the observed state of a ManagedIdentity back to the hub."""

    def __init__(self, identity_store: ManagedIdentityStore):
        self.identity_store = identity_store

    def build_status(
        self,
        identity: ManagedIdentity,
        conditions: list[ConditionUpdate],
        token_ref: SecretRef | None = None,
        expiration: datetime | None = None,
        now: datetime | None = None,
    ) -> ManagedIdentityStatus:
        """
        Merge the pass results into a copy of the fetched status.

        Conditions are applied by type. Unknown fields of the fetched status
        are carried over untouched.
        """
        now = now or datetime.now(UTC)
        status = identity.status.model_copy(deep=True)
        for update in conditions:
            status.set_condition(
                update.type, update.status, update.reason, update.message, now=now
            )
        if token_ref is not None:
            status.token_secret_ref = token_ref
        if expiration is not None:
            status.expiration_timestamp = expiration
        return status

    async def report(
        self,
        identity: ManagedIdentity,
        conditions: list[ConditionUpdate],
        token_ref: SecretRef | None = None,
        expiration: datetime | None = None,
        now: datetime | None = None,
    ) -> ManagedIdentity:
        """
        Publish conditions, token reference and expiration in one write.

        Args:
            identity: ManagedIdentity as fetched at the start of the pass
            conditions: Conditions to set
            token_ref: New token secret reference, if the token was refreshed
            expiration: New token expiration, if the token was refreshed
            now: Transition time for changed conditions

        Returns:
            The updated ManagedIdentity

        Raises:
            ConflictError: If the resource changed since it was fetched
            KubernetesAPIError: If the status write fails otherwise
        """
        status = self.build_status(identity, conditions, token_ref, expiration, now)
        updated = await self.identity_store.update_status(identity, status)
        logger.debug(
            f"Reported status of ManagedIdentity {identity.key}: "
            + ", ".join(f"{c.type}={c.status}" for c in conditions)
        )
        return updated
