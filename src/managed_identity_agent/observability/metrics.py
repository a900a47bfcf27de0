"""
Prometheus metrics for the managed identity agent.

Reconciliation passes are counted and timed per hub namespace. Token
rotations carry the reason that triggered them, and the expiry of the most
recently issued token is exported so alerts can fire before it lapses.
"""

import logging
import time
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Registry served on /metrics, created on first use
_metrics_registry: CollectorRegistry | None = None

RECONCILIATION_TOTAL = Counter(
    "managed_identity_agent_reconciliation_total",
    "Total number of reconciliation attempts",
    ["namespace", "result"],
    registry=None,  # Registered in get_metrics_registry()
)

RECONCILIATION_DURATION = Histogram(
    "managed_identity_agent_reconciliation_duration_seconds",
    "Time spent on reconciliation passes",
    ["namespace"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "managed_identity_agent_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["namespace", "error_type", "retryable"],
    registry=None,
)

TOKEN_ROTATIONS_TOTAL = Counter(
    "managed_identity_agent_token_rotations_total",
    "Total number of tokens issued and stored",
    ["namespace", "reason"],
    registry=None,
)

TOKEN_EXPIRES_TIMESTAMP = Gauge(
    "managed_identity_agent_token_expires_timestamp",
    "Unix timestamp when the stored token expires",
    ["namespace", "name"],
    registry=None,
)

PRINCIPAL_CLEANUPS_TOTAL = Counter(
    "managed_identity_agent_principal_cleanups_total",
    "Total number of ServiceAccounts deleted after their ManagedIdentity was removed",
    ["namespace"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry
    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in [
            RECONCILIATION_TOTAL,
            RECONCILIATION_DURATION,
            RECONCILIATION_ERRORS,
            TOKEN_ROTATIONS_TOTAL,
            TOKEN_EXPIRES_TIMESTAMP,
            PRINCIPAL_CLEANUPS_TOTAL,
        ]:
            _metrics_registry.register(metric)
    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the managed identity agent."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, namespace: str):
        """
        Context manager to track a reconciliation pass.

        Args:
            namespace: Hub namespace of the ManagedIdentity
        """
        start_time = time.time()
        result = "unknown"
        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            retryable = "true" if getattr(e, "retryable", False) else "false"
            RECONCILIATION_ERRORS.labels(
                namespace=namespace,
                error_type=type(e).__name__,
                retryable=retryable,
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(namespace=namespace, result=result).inc()
            RECONCILIATION_DURATION.labels(namespace=namespace).observe(
                time.time() - start_time
            )

    def record_token_rotation(
        self, namespace: str, name: str, reason: str, expires_at: float
    ) -> None:
        """
        Record a token rotation and the new expiry.

        Args:
            namespace: Hub namespace of the ManagedIdentity
            name: Name of the ManagedIdentity
            reason: Why the token was rotated
            expires_at: Unix timestamp of the new token's expiry
        """
        TOKEN_ROTATIONS_TOTAL.labels(namespace=namespace, reason=reason).inc()
        TOKEN_EXPIRES_TIMESTAMP.labels(namespace=namespace, name=name).set(expires_at)

    def record_principal_cleanup(self, namespace: str) -> None:
        PRINCIPAL_CLEANUPS_TOTAL.labels(namespace=namespace).inc()


class MetricsServer:
    """Serves /metrics for Prometheus and /healthz for the liveness probe."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None

        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        try:
            payload = generate_latest(get_metrics_registry())
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )
        return Response(body=payload, content_type=CONTENT_TYPE_LATEST)

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def start(self) -> None:
        """Bind the listener on host and port."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()
        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Serving metrics on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Close the listener, logging instead of raising on failure."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None
            if self.runner:
                await self.runner.cleanup()
                self.runner = None
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")
            return
        logger.info("Metrics server stopped")


metrics_collector = MetricsCollector()
