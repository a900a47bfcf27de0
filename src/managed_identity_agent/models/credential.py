"""
Models for issued credentials and the hub secrets that store them.

A Credential is the short-lived value returned by the spoke cluster's
TokenRequest API. It is never stored on its own: the agent always wraps it
into a CredentialRecord (a hub Secret holding the token together with the
spoke CA bundle).
"""

import base64
from datetime import datetime

from kubernetes import client
from pydantic import BaseModel, Field

from ..constants import (
    LABEL_IS_MANAGED_IDENTITY,
    LABEL_MANAGED_IDENTITY_NAME,
    LABEL_MANAGED_IDENTITY_NAMESPACE,
    LABEL_TRUE,
    SECRET_CA_KEY,
    SECRET_TOKEN_KEY,
)


class Credential(BaseModel):
    """A freshly issued token and its absolute expiration time."""

    token: str = Field(..., repr=False)
    expiration_timestamp: datetime


class CredentialRecord(BaseModel):
    """Hub-side secret holding a token and the trust anchor of the spoke."""

    namespace: str
    name: str
    token: str | None = Field(None, repr=False)
    ca_data: bytes | None = Field(None, repr=False)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    resource_version: str | None = None

    @classmethod
    def from_secret(cls, secret: client.V1Secret) -> "CredentialRecord":
        """Decode a V1Secret read from the hub."""
        data = secret.data or {}
        token = data.get(SECRET_TOKEN_KEY)
        ca_data = data.get(SECRET_CA_KEY)
        return cls(
            namespace=secret.metadata.namespace,
            name=secret.metadata.name,
            token=base64.b64decode(token).decode() if token else None,
            ca_data=base64.b64decode(ca_data) if ca_data else None,
            labels=dict(secret.metadata.labels or {}),
            annotations=dict(secret.metadata.annotations or {}),
            resource_version=secret.metadata.resource_version,
        )

    @property
    def principal_namespace(self) -> str | None:
        """Spoke namespace of the ServiceAccount the token was minted for."""
        return self.labels.get(LABEL_MANAGED_IDENTITY_NAMESPACE)


def record_labels(principal_namespace: str, principal_name: str) -> dict[str, str]:
    """Labels the agent owns on every credential secret."""
    return {
        LABEL_IS_MANAGED_IDENTITY: LABEL_TRUE,
        LABEL_MANAGED_IDENTITY_NAMESPACE: principal_namespace,
        LABEL_MANAGED_IDENTITY_NAME: principal_name,
    }
