"""
ManagedIdentity handlers - Drives reconciliation of ManagedIdentity resources.

Each ManagedIdentity in the watched hub namespace gets one kopf daemon. The
daemon is the scheduler: it runs a reconciliation pass, sleeps for the
requested delay and repeats. Because there is exactly one daemon per
resource, passes for the same resource never overlap.

A spec change wakes the daemon early. When the resource is deleted its
daemon stops, and the DELETED watch event triggers one final pass that
finds the resource gone and cleans up the spoke ServiceAccount.
"""

import asyncio
import logging
from typing import Any

import kopf

from managed_identity_agent.constants import (
    CLEANUP_ATTEMPTS,
    MANAGED_IDENTITY_GROUP,
    MANAGED_IDENTITY_PLURAL,
    MANAGED_IDENTITY_VERSION,
)
from managed_identity_agent.errors import OperatorError
from managed_identity_agent.services import TokenReconciler

logger = logging.getLogger(__name__)

# Wakeup events of running daemons, keyed by "namespace/name"
_wakeups: dict[str, asyncio.Event] = {}


def _key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def request_reconcile(namespace: str, name: str) -> bool:
    """
    Wake up the daemon of a ManagedIdentity.

    Returns:
        True if a running daemon was signalled
    """
    event = _wakeups.get(_key(namespace, name))
    if event is None:
        return False
    event.set()
    return True


async def wait_for_next_pass(
    wakeup: asyncio.Event,
    stopped: kopf.DaemonStopped,
    delay: float | None,
) -> None:
    """
    Sleep until the delay elapses, a wakeup is requested or the daemon stops.

    A delay of None waits for a wakeup or stop only.
    """
    waiters = [
        asyncio.ensure_future(wakeup.wait()),
        asyncio.ensure_future(stopped.wait()),
    ]
    try:
        await asyncio.wait(
            waiters, timeout=delay, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for waiter in waiters:
            waiter.cancel()
    wakeup.clear()


async def run_pass(reconciler: TokenReconciler, namespace: str, name: str) -> float | None:
    """
    Run one reconciliation pass and return the delay before the next one.

    Retryable errors are retried after the error's delay; permanent errors
    wait for the next spec change.
    """
    try:
        result = await reconciler.reconcile(namespace, name)
    except OperatorError as e:
        if e.retryable:
            return float(e.delay)
        logger.warning(
            f"ManagedIdentity {namespace}/{name} needs attention, "
            f"waiting for a spec change: {e}"
        )
        return None

    if result.requeue_after is None:
        return None
    return result.requeue_after.total_seconds()


@kopf.daemon(
    MANAGED_IDENTITY_PLURAL,
    group=MANAGED_IDENTITY_GROUP,
    version=MANAGED_IDENTITY_VERSION,
    cancellation_timeout=10.0,
)
async def managed_identity_daemon(
    name: str,
    namespace: str,
    stopped: kopf.DaemonStopped,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Keep the token of one ManagedIdentity current for as long as it exists.

    Args:
        name: Name of the ManagedIdentity
        namespace: Hub namespace of the ManagedIdentity
        stopped: Kopf stop flag for this daemon
        memo: Operator memo holding the reconciler
    """
    key = _key(namespace, name)
    wakeup = _wakeups.setdefault(key, asyncio.Event())
    reconciler: TokenReconciler = memo.reconciler
    logger.info(f"Started token daemon for ManagedIdentity {key}")

    try:
        while not stopped:
            delay = await run_pass(reconciler, namespace, name)
            if stopped:
                break
            await wait_for_next_pass(wakeup, stopped, delay)
    finally:
        if _wakeups.get(key) is wakeup:
            del _wakeups[key]
        logger.info(f"Stopped token daemon for ManagedIdentity {key}")


@kopf.on.update(
    MANAGED_IDENTITY_PLURAL,
    group=MANAGED_IDENTITY_GROUP,
    version=MANAGED_IDENTITY_VERSION,
    field="spec",
)
async def managed_identity_spec_changed(
    name: str, namespace: str, **kwargs: Any
) -> None:
    """Reconcile right away when the requested rotation changes."""
    if request_reconcile(namespace, name):
        logger.debug(f"Spec of ManagedIdentity {namespace}/{name} changed, waking daemon")


@kopf.on.event(
    MANAGED_IDENTITY_PLURAL,
    group=MANAGED_IDENTITY_GROUP,
    version=MANAGED_IDENTITY_VERSION,
)
async def managed_identity_event(
    event: dict[str, Any],
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """
    Clean up after a deleted ManagedIdentity.

    Watch events are not retried by kopf, so the cleanup pass is retried
    here a bounded number of times.
    """
    if event.get("type") != "DELETED":
        return

    reconciler: TokenReconciler = memo.reconciler
    for attempt in range(1, CLEANUP_ATTEMPTS + 1):
        try:
            await reconciler.reconcile(namespace, name)
            return
        except OperatorError as e:
            if not e.retryable or attempt == CLEANUP_ATTEMPTS:
                logger.error(
                    f"Giving up cleanup of ManagedIdentity {namespace}/{name} "
                    f"after {attempt} attempt(s): {e}"
                )
                return
            await asyncio.sleep(e.delay)
