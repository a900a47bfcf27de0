"""
Base reconciler class providing common patterns for resource reconciliation.

This module defines the BaseReconciler class that wraps every pass with
correlation-id logging, metrics and error normalization. Subclasses only
implement do_reconcile.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta

from kubernetes.client.rest import ApiException

from ..errors import (
    KubernetesAPIError,
    OperatorError,
    TemporaryError,
)
from ..observability.logging import OperatorLogger


@dataclass
class ReconcileResult:
    """
    Outcome of a successful pass.

    requeue_after is the delay before the resource has to be looked at
    again; None means no scheduled follow-up.
    """

    requeue_after: timedelta | None = None


class BaseReconciler(ABC):
    """
    Base class for resource reconcilers.

    Provides common patterns for:
    - Correlation ids and start/success/error log lines
    - Reconciliation metrics
    - Normalizing unexpected exceptions into OperatorError
    """

    resource_type = "resource"

    def __init__(self):
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Main reconciliation entry point with metrics tracking.

        Args:
            namespace: Resource namespace
            name: Resource name

        Returns:
            When to reconcile again

        Raises:
            OperatorError: If the pass failed; unexpected exceptions are
                wrapped so callers only ever see this hierarchy
        """
        from ..observability.metrics import metrics_collector

        start_time = time.time()

        self.logger.log_reconciliation_start(
            resource_type=self.resource_type, resource_name=name, namespace=namespace
        )

        async with metrics_collector.track_reconciliation(namespace=namespace):
            try:
                result = await self.do_reconcile(namespace, name)

            except OperatorError as e:
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    namespace=namespace,
                    error=e,
                    duration=time.time() - start_time,
                )
                raise

            except ApiException as e:
                http_status = getattr(e, "status", None)
                error = KubernetesAPIError(
                    message=str(e),
                    reason=getattr(e, "reason", None),
                    status=http_status,
                    # 5xx errors are retryable
                    retryable=http_status is None or http_status >= 500,
                    cause=e,
                )
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    namespace=namespace,
                    error=error,
                    duration=time.time() - start_time,
                )
                raise error from e

            except Exception as e:
                # Wrap unexpected errors as temporary to allow retry
                error = TemporaryError(
                    f"Unexpected error during reconciliation: {str(e)}", cause=e
                )
                self.logger.log_reconciliation_error(
                    resource_type=self.resource_type,
                    resource_name=name,
                    namespace=namespace,
                    error=error,
                    duration=time.time() - start_time,
                )
                raise error from e

        requeue_after = (
            result.requeue_after.total_seconds()
            if result.requeue_after is not None
            else None
        )
        self.logger.log_reconciliation_success(
            resource_type=self.resource_type,
            resource_name=name,
            namespace=namespace,
            duration=time.time() - start_time,
            requeue_after=requeue_after,
        )
        return result

    @abstractmethod
    async def do_reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """
        Perform the actual reconciliation pass.

        Args:
            namespace: Resource namespace
            name: Resource name

        Returns:
            When to reconcile again
        """
