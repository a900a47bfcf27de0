"""
Structured logging for the managed identity agent.

Every reconciliation pass gets a short correlation id stored in a context
variable, so all log lines of one pass, including those of the hub and spoke
clients it calls, can be grouped. In JSON mode the structured ``extra``
fields of a record are emitted as top-level keys.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Scraped endpoints, too noisy for access logs
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/metrics"})

# Record attributes copied into the JSON payload
STRUCTURED_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "spoke_namespace",
    "rotation_reason",
    "requeue_after",
    "expiration",
)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class HealthProbeFilter(logging.Filter):
    """Drops access log lines for the metrics and liveness endpoints."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(path in message for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Stamps each record with the correlation id of the current pass."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = correlation_id.get()
        if not current:
            current = generate_correlation_id()
            correlation_id.set(current)
        record.correlation_id = current
        return True


class StructuredFormatter(logging.Formatter):
    """Formats records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        for name in STRUCTURED_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Replace the root handlers with one stream handler for the agent.

    Args:
        log_level: Root log level name
        enable_json_formatting: Emit JSON instead of plain text
        correlation_id_enabled: Stamp records with the pass correlation id
        log_health_probes: Keep access log lines of /healthz and /metrics
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if enable_json_formatting:
        handler.setFormatter(StructuredFormatter())
    elif correlation_id_enabled:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for noisy in ("kopf", "kubernetes", "urllib3", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger with helpers for the lines every reconciliation pass emits.

    Keyword arguments of the plain level methods become structured fields.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self, resource_type: str, resource_name: str, namespace: str
    ) -> str:
        """Start a pass under a fresh correlation id and return it."""
        corr_id = generate_correlation_id()
        correlation_id.set(corr_id)
        self.logger.debug(
            f"Starting reconciliation for {resource_type} {namespace}/{resource_name}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )
        return corr_id

    def log_reconciliation_success(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        duration: float,
        requeue_after: float | None = None,
    ) -> None:
        self.logger.info(
            f"Reconciled {resource_type} {namespace}/{resource_name}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "duration": duration,
                "requeue_after": requeue_after,
            },
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        self.logger.error(
            f"Reconciliation failed for {resource_type} {namespace}/{resource_name}: "
            f"{error}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
        )

    def log_token_rotation(
        self,
        resource_name: str,
        namespace: str,
        reason: str,
        expiration: datetime,
    ) -> None:
        """Log that a new token was issued and stored."""
        self.logger.info(
            f"Rotated token for managed identity {namespace}/{resource_name} "
            f"(reason: {reason})",
            extra={
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "token_rotation",
                "rotation_reason": reason,
                "expiration": expiration.isoformat(),
            },
        )

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, extra=kwargs)
