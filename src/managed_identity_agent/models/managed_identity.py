"""
Pydantic models for ManagedIdentity resources.

This module defines type-safe data models for the ManagedIdentity custom
resource that lives on the hub cluster: its specification (requested token
lifetime) and its status (token secret reference, expiration and conditions).
"""

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..constants import DEFAULT_ROTATION_VALIDITY

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|h|m|s)")
_DURATION_UNITS = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "µs": 1e-6,
    "ns": 1e-9,
}


def parse_duration(value: str) -> timedelta:
    """
    Parse a Go-style duration string such as ``8640h0m0s`` or ``1h30m``.

    Args:
        value: Duration string

    Returns:
        Parsed duration

    Raises:
        ValueError: If the string is not a valid positive duration
    """
    text = value.strip()
    if not text:
        raise ValueError("duration must not be empty")

    position = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"invalid duration '{value}'")
    if seconds <= 0:
        raise ValueError(f"duration '{value}' must be positive")
    return timedelta(seconds=seconds)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way Kubernetes serializes metav1.Time."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class RotationSpec(BaseModel):
    """Token rotation settings of a ManagedIdentity."""

    model_config = {"populate_by_name": True}

    validity: timedelta = Field(
        default_factory=lambda: parse_duration(DEFAULT_ROTATION_VALIDITY),
        description="Requested lifetime of an issued token",
    )

    @field_validator("validity", mode="before")
    @classmethod
    def parse_validity(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_duration(v)
        if isinstance(v, int | float):
            if v <= 0:
                raise ValueError("validity must be positive")
            return timedelta(seconds=v)
        return v


class ManagedIdentitySpec(BaseModel):
    """Specification of a ManagedIdentity resource."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    rotation: RotationSpec = Field(default_factory=RotationSpec)


class SecretRef(BaseModel):
    """Reference to the hub secret holding the issued token."""

    model_config = {"populate_by_name": True}

    name: str = Field(..., description="Name of the credential secret")
    last_refresh_timestamp: datetime | None = Field(
        None,
        alias="lastRefreshTimestamp",
        description="When the token in the secret was last refreshed",
    )


class Condition(BaseModel):
    """Status condition following Kubernetes metav1.Condition conventions."""

    model_config = {"populate_by_name": True}

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = Field(None, alias="lastTransitionTime")


class ManagedIdentityStatus(BaseModel):
    """Observed state of a ManagedIdentity, written only by the agent."""

    model_config = {"populate_by_name": True, "extra": "allow"}

    token_secret_ref: SecretRef | None = Field(None, alias="tokenSecretRef")
    expiration_timestamp: datetime | None = Field(None, alias="expirationTimestamp")
    conditions: list[Condition] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Condition | None:
        """Get a specific status condition."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(
        self,
        condition_type: str,
        condition_status: str,
        reason: str,
        message: str,
        now: datetime | None = None,
    ) -> None:
        """
        Add or update a status condition by type.

        Each type has exactly one entry. An existing entry is updated in
        place; its transition time only moves when the status value changes.
        """
        now = now or datetime.now(UTC)
        existing = self.get_condition(condition_type)
        if existing is None:
            self.conditions.append(
                Condition(
                    type=condition_type,
                    status=condition_status,
                    reason=reason,
                    message=message,
                    last_transition_time=now,
                )
            )
            return

        if existing.status != condition_status or existing.last_transition_time is None:
            existing.last_transition_time = now
        existing.status = condition_status
        existing.reason = reason
        existing.message = message

    def to_api(self) -> dict[str, Any]:
        """Serialize to the camelCase structure stored on the resource."""
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        if self.token_secret_ref is not None:
            ref = data["tokenSecretRef"]
            if self.token_secret_ref.last_refresh_timestamp is not None:
                ref["lastRefreshTimestamp"] = format_timestamp(
                    self.token_secret_ref.last_refresh_timestamp
                )
        if self.expiration_timestamp is not None:
            data["expirationTimestamp"] = format_timestamp(self.expiration_timestamp)
        for raw, condition in zip(data["conditions"], self.conditions, strict=True):
            if condition.last_transition_time is not None:
                raw["lastTransitionTime"] = format_timestamp(
                    condition.last_transition_time
                )
        return data


class ManagedIdentity(BaseModel):
    """
    A ManagedIdentity declaration fetched from the hub.

    The resource namespace on the hub is the namespace of the managed cluster
    that owns it.
    """

    model_config = {"populate_by_name": True}

    name: str
    namespace: str
    uid: str | None = None
    resource_version: str | None = None
    spec: ManagedIdentitySpec = Field(default_factory=ManagedIdentitySpec)
    status: ManagedIdentityStatus = Field(default_factory=ManagedIdentityStatus)
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @classmethod
    def from_resource(cls, obj: dict[str, Any]) -> "ManagedIdentity":
        """Build the model from a custom object returned by the API server."""
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
            spec=ManagedIdentitySpec.model_validate(obj.get("spec") or {}),
            status=ManagedIdentityStatus.model_validate(obj.get("status") or {}),
            raw=obj,
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def rotation_validity(self) -> timedelta:
        return self.spec.rotation.validity
