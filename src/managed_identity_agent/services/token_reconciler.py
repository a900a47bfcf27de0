"""
Token reconciler - keeps a ManagedIdentity's credential secret current.

One pass for a ManagedIdentity on the hub:

1. Fetch the declaration. If it is gone, delete the spoke ServiceAccount the
   agent created for it and stop.
2. Ensure the spoke ServiceAccount exists.
3. Load the hub credential secret and decide whether the stored token can be
   kept: it must exist, not be past the refresh threshold, have been minted
   in the current spoke namespace and pass a TokenReview.
4. Otherwise request a new token and store it together with the spoke CA.
5. Publish conditions, token reference and expiration in one status write.

Status reporting is guarded: when any step fails, whatever was learned so far
is reported best-effort and the original error propagates.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from ..constants import (
    CONDITION_FALSE,
    CONDITION_SECRET_CREATED,
    CONDITION_TOKEN_REPORTED,
    CONDITION_TRUE,
    REASON_RECONCILE_FAILED,
    REASON_SECRET_CREATED,
    REASON_SECRET_SYNC_FAILED,
    REASON_SERVICE_ACCOUNT_FAILED,
    REASON_TOKEN_REFRESHED,
    REASON_TOKEN_REPORTED,
    REASON_TOKEN_REQUEST_FAILED,
    ROTATION_EXPIRING,
    ROTATION_INITIAL,
    ROTATION_INVALID,
    ROTATION_NAMESPACE_CHANGED,
)
from ..errors import OperatorError, ReconciliationError
from ..models import CredentialRecord, ManagedIdentity, SecretRef, record_labels
from ..observability.metrics import metrics_collector
from ..utils.credential_store import CredentialStore
from ..utils.identity_store import ManagedIdentityStore
from ..utils.principal_manager import PrincipalManager
from ..utils.refresh import RefreshScheduler
from ..utils.token_issuer import TokenIssuer
from ..utils.token_validator import TokenValidator
from .base_reconciler import BaseReconciler, ReconcileResult
from .status_reporter import ConditionUpdate, StatusReporter

__all__ = ["ReconcileResult", "TokenReconciler"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _PassState:
    """Status changes collected during one pass."""

    conditions: list[ConditionUpdate] = field(default_factory=list)
    token_ref: SecretRef | None = None
    expiration: datetime | None = None

    def condition(
        self, condition_type: str, status: str, reason: str, message: str = ""
    ) -> None:
        self.conditions = [c for c in self.conditions if c.type != condition_type]
        self.conditions.append(ConditionUpdate(condition_type, status, reason, message))

    @property
    def failed(self) -> bool:
        return any(c.status == CONDITION_FALSE for c in self.conditions)


class TokenReconciler(BaseReconciler):
    """
    Reconciles ManagedIdentity resources into spoke ServiceAccounts and
    hub credential secrets.
    """

    resource_type = "managedidentity"

    def __init__(
        self,
        identity_store: ManagedIdentityStore,
        principal_manager: PrincipalManager,
        token_validator: TokenValidator,
        token_issuer: TokenIssuer,
        credential_store: CredentialStore,
        status_reporter: StatusReporter,
        spoke_namespace: str,
        trust_anchor: bytes,
        scheduler: RefreshScheduler | None = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the token reconciler.

        Args:
            identity_store: ManagedIdentity access on the hub
            principal_manager: ServiceAccount management on the spoke
            token_validator: TokenReview client on the spoke
            token_issuer: TokenRequest client on the spoke
            credential_store: Credential secrets on the hub
            status_reporter: Status writer for ManagedIdentity resources
            spoke_namespace: Spoke namespace where ServiceAccounts live
            trust_anchor: Spoke CA bundle stored next to every token
            scheduler: Refresh scheduler (default fraction and buffer if omitted)
            now: Clock returning timezone-aware UTC datetimes
        """
        super().__init__()
        self.identity_store = identity_store
        self.principal_manager = principal_manager
        self.token_validator = token_validator
        self.token_issuer = token_issuer
        self.credential_store = credential_store
        self.status_reporter = status_reporter
        self.spoke_namespace = spoke_namespace
        self.trust_anchor = trust_anchor
        self.scheduler = scheduler or RefreshScheduler()
        self.now = now

    async def do_reconcile(self, namespace: str, name: str) -> ReconcileResult:
        now = self.now()

        try:
            identity = await self.identity_store.get(namespace, name)
        except Exception as e:
            raise ReconciliationError(
                f"failed to get managed identity: {e}",
                retryable=getattr(e, "retryable", True),
                cause=e,
            ) from e

        if identity is None:
            await self._cleanup_principal(namespace, name)
            return ReconcileResult()

        state = _PassState()
        try:
            result = await self._sync(identity, state, now)
        except Exception as e:
            if not state.failed:
                state.condition(
                    CONDITION_TOKEN_REPORTED,
                    CONDITION_FALSE,
                    REASON_RECONCILE_FAILED,
                    str(e),
                )
            await self._report_best_effort(identity, state, now)
            raise

        await self.status_reporter.report(
            identity,
            state.conditions,
            token_ref=state.token_ref,
            expiration=state.expiration,
            now=now,
        )
        return result

    async def _cleanup_principal(self, namespace: str, name: str) -> None:
        deleted = await self.principal_manager.cleanup(self.spoke_namespace, name)
        if deleted:
            metrics_collector.record_principal_cleanup(namespace)
            self.logger.info(
                f"ManagedIdentity {namespace}/{name} is gone, deleted service-account "
                f"{self.spoke_namespace}/{name}",
                resource_name=name,
                namespace=namespace,
                spoke_namespace=self.spoke_namespace,
            )

    async def _report_best_effort(
        self, identity: ManagedIdentity, state: _PassState, now: datetime
    ) -> None:
        try:
            await self.status_reporter.report(
                identity,
                state.conditions,
                token_ref=state.token_ref,
                expiration=state.expiration,
                now=now,
            )
        except Exception as e:
            self.logger.warning(
                f"Failed to report status of ManagedIdentity {identity.key}: {e}",
                resource_name=identity.name,
                namespace=identity.namespace,
                error_type=type(e).__name__,
            )

    async def _sync(
        self, identity: ManagedIdentity, state: _PassState, now: datetime
    ) -> ReconcileResult:
        try:
            await self.principal_manager.ensure(self.spoke_namespace, identity.name)
        except OperatorError as e:
            state.condition(
                CONDITION_TOKEN_REPORTED,
                CONDITION_FALSE,
                REASON_SERVICE_ACCOUNT_FAILED,
                str(e),
            )
            raise

        try:
            record = await self.credential_store.get(identity.namespace, identity.name)
        except OperatorError as e:
            state.condition(
                CONDITION_SECRET_CREATED,
                CONDITION_FALSE,
                REASON_SECRET_SYNC_FAILED,
                str(e),
            )
            raise ReconciliationError(
                f"failed to get token secret: {e}",
                retryable=e.retryable,
                delay=e.delay,
                cause=e,
            ) from e

        rotation_reason = await self._rotation_reason(identity, record, now)
        if rotation_reason is None:
            return await self._keep_token(identity, record, state, now)
        return await self._rotate_token(identity, rotation_reason, state, now)

    async def _rotation_reason(
        self,
        identity: ManagedIdentity,
        record: CredentialRecord | None,
        now: datetime,
    ) -> str | None:
        """Decide whether the stored token has to be replaced, and why."""
        if record is None or not record.token:
            return ROTATION_INITIAL

        if (
            record.principal_namespace is not None
            and record.principal_namespace != self.spoke_namespace
        ):
            return ROTATION_NAMESPACE_CHANGED

        expiring, last_refresh = self._token_times(identity)
        if expiring is not None and last_refresh is not None:
            if self.scheduler.is_due(now, expiring, last_refresh):
                return ROTATION_EXPIRING

        valid = await self.token_validator.is_valid(
            record.token, self.spoke_namespace, identity.name
        )
        if not valid:
            return ROTATION_INVALID
        return None

    @staticmethod
    def _token_times(
        identity: ManagedIdentity,
    ) -> tuple[datetime | None, datetime | None]:
        status = identity.status
        last_refresh = (
            status.token_secret_ref.last_refresh_timestamp
            if status.token_secret_ref is not None
            else None
        )
        return status.expiration_timestamp, last_refresh

    async def _keep_token(
        self,
        identity: ManagedIdentity,
        record: CredentialRecord,
        state: _PassState,
        now: datetime,
    ) -> ReconcileResult:
        owned_labels = record_labels(self.spoke_namespace, identity.name)
        stale = record.ca_data != self.trust_anchor or any(
            record.labels.get(k) != v for k, v in owned_labels.items()
        )
        if stale:
            # Same token, refreshed CA bundle and labels
            await self._persist(identity, record.token, state)

        state.condition(
            CONDITION_TOKEN_REPORTED,
            CONDITION_TRUE,
            REASON_TOKEN_REPORTED,
            "The token is valid and reported to the hub",
        )
        state.condition(
            CONDITION_SECRET_CREATED,
            CONDITION_TRUE,
            REASON_SECRET_CREATED,
            f"The token is stored in secret {identity.name}",
        )

        expiring, last_refresh = self._token_times(identity)
        if expiring is None or last_refresh is None:
            expiring, last_refresh = now + identity.rotation_validity, now
        requeue_after = self.scheduler.next_check(now, expiring, last_refresh)

        self.logger.debug(
            f"Token of ManagedIdentity {identity.key} is valid, "
            f"next check in {requeue_after}",
            resource_name=identity.name,
            namespace=identity.namespace,
            requeue_after=requeue_after.total_seconds(),
        )
        return ReconcileResult(requeue_after=requeue_after)

    async def _rotate_token(
        self,
        identity: ManagedIdentity,
        reason: str,
        state: _PassState,
        now: datetime,
    ) -> ReconcileResult:
        try:
            credential = await self.token_issuer.request(
                self.spoke_namespace, identity.name, identity.rotation_validity
            )
        except OperatorError as e:
            state.condition(
                CONDITION_TOKEN_REPORTED,
                CONDITION_FALSE,
                REASON_TOKEN_REQUEST_FAILED,
                str(e),
            )
            raise ReconciliationError(
                f"failed to sync token: {e}",
                retryable=e.retryable,
                delay=e.delay,
                cause=e,
            ) from e

        await self._persist(identity, credential.token, state)

        expiration = credential.expiration_timestamp
        state.token_ref = SecretRef(name=identity.name, last_refresh_timestamp=now)
        state.expiration = expiration
        state.condition(
            CONDITION_TOKEN_REPORTED,
            CONDITION_TRUE,
            REASON_TOKEN_REFRESHED,
            f"The token was refreshed ({reason})",
        )
        state.condition(
            CONDITION_SECRET_CREATED,
            CONDITION_TRUE,
            REASON_SECRET_CREATED,
            f"The token is stored in secret {identity.name}",
        )

        metrics_collector.record_token_rotation(
            identity.namespace, identity.name, reason, expiration.timestamp()
        )
        self.logger.log_token_rotation(
            resource_name=identity.name,
            namespace=identity.namespace,
            reason=reason,
            expiration=expiration,
        )
        return ReconcileResult(
            requeue_after=self.scheduler.next_check(now, expiration, now)
        )

    async def _persist(
        self, identity: ManagedIdentity, token: str, state: _PassState
    ) -> None:
        try:
            await self.credential_store.persist(
                identity.namespace,
                identity.name,
                token,
                self.trust_anchor,
                self.spoke_namespace,
                identity.name,
            )
        except OperatorError as e:
            state.condition(
                CONDITION_SECRET_CREATED,
                CONDITION_FALSE,
                REASON_SECRET_SYNC_FAILED,
                str(e),
            )
            raise ReconciliationError(
                f"failed to save token secret: {e}",
                retryable=e.retryable,
                delay=e.delay,
                cause=e,
            ) from e
