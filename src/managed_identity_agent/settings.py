"""Centralized agent settings using pydantic-settings.

This module provides a single source of truth for all agent configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_REFRESH_BUFFER_SECONDS,
    DEFAULT_REFRESH_FRACTION,
    DEFAULT_REQUEST_TIMEOUT,
)


class Settings(BaseSettings):
    """Agent configuration loaded from environment variables.

    All settings have sensible defaults for in-cluster use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Cluster wiring
    cluster_name: str = Field(
        default="",
        description="Name of this managed cluster; its namespace on the hub is watched",
        validation_alias="CLUSTER_NAME",
    )
    hub_kubeconfig: str = Field(
        default="",
        description="Path to the hub kubeconfig (empty = in-cluster/default config)",
        validation_alias="HUB_KUBECONFIG",
    )
    spoke_kubeconfig: str = Field(
        default="",
        description="Path to the spoke kubeconfig (empty = in-cluster/default config)",
        validation_alias="SPOKE_KUBECONFIG",
    )
    spoke_namespace: str = Field(
        default="open-cluster-management-managed-identity",
        description="Namespace on the spoke where ServiceAccounts are created",
        validation_alias="SPOKE_NAMESPACE",
    )
    spoke_ca_file: str = Field(
        default="",
        description="CA bundle of the spoke API server (empty = taken from spoke config)",
        validation_alias="SPOKE_CA_FILE",
    )

    # Token issuance
    token_audiences: str = Field(
        default="",
        description="Comma-separated token audiences (empty = API server default)",
        validation_alias="TOKEN_AUDIENCES",
    )
    refresh_fraction: float = Field(
        default=DEFAULT_REFRESH_FRACTION,
        description="Fraction of the token lifetime after which it is rotated",
        validation_alias="REFRESH_FRACTION",
    )
    refresh_buffer_seconds: float = Field(
        default=DEFAULT_REFRESH_BUFFER_SECONDS,
        description="Delay added to every refresh check",
        validation_alias="REFRESH_BUFFER_SECONDS",
    )

    # Remote call behavior
    request_timeout_seconds: int = Field(
        default=DEFAULT_REQUEST_TIMEOUT,
        description="Timeout applied to every Kubernetes API call",
        validation_alias="REQUEST_TIMEOUT_SECONDS",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )

    @field_validator("refresh_fraction")
    @classmethod
    def validate_refresh_fraction(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("refresh_fraction must be in (0, 1]")
        return v

    @field_validator("refresh_buffer_seconds")
    @classmethod
    def validate_refresh_buffer(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("refresh_buffer_seconds must be positive")
        return v

    @property
    def audiences(self) -> list[str]:
        """Parse token audiences from comma-separated string."""
        return [a.strip() for a in self.token_audiences.split(",") if a.strip()]


# Global settings instance - initialized once at module import
settings = Settings()
