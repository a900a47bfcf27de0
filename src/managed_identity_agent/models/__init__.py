"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- ManagedIdentity specifications and status
- Issued credentials and the hub secrets that store them
"""

from .credential import Credential, CredentialRecord, record_labels
from .managed_identity import (
    Condition,
    ManagedIdentity,
    ManagedIdentitySpec,
    ManagedIdentityStatus,
    RotationSpec,
    SecretRef,
    format_timestamp,
    parse_duration,
)

__all__ = [
    "Condition",
    "Credential",
    "CredentialRecord",
    "ManagedIdentity",
    "ManagedIdentitySpec",
    "ManagedIdentityStatus",
    "RotationSpec",
    "SecretRef",
    "format_timestamp",
    "parse_duration",
    "record_labels",
]
