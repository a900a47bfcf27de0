"""
Constants used throughout the managed identity agent.

This module defines all constant values used by the agent including:
- ManagedIdentity custom resource coordinates
- Resource labels used as ownership markers
- Status condition types and reasons
- Credential secret data keys
- Token refresh defaults
"""

# ManagedIdentity custom resource coordinates (hub cluster)
MANAGED_IDENTITY_GROUP = "authentication.open-cluster.io"
MANAGED_IDENTITY_VERSION = "v1beta1"
MANAGED_IDENTITY_PLURAL = "managedidentities"
MANAGED_IDENTITY_KIND = "ManagedIdentity"

# Label constants for resource identification and ownership
# The is-managed-identity label is the sole gate for deleting a ServiceAccount
LABEL_IS_MANAGED_IDENTITY = "authentication.open-cluster.io/is-managed-identity"
LABEL_MANAGED_IDENTITY_NAMESPACE = (
    "authentication.open-cluster.io/managed-identity-namespace"
)
LABEL_MANAGED_IDENTITY_NAME = "authentication.open-cluster.io/managed-identity-name"
LABEL_TRUE = "true"

# Condition type constants
CONDITION_TOKEN_REPORTED = "TokenReported"
CONDITION_SECRET_CREATED = "SecretCreated"

# Condition status constants
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

# Condition reasons
REASON_TOKEN_REPORTED = "TokenReported"
REASON_TOKEN_REFRESHED = "TokenRefreshed"
REASON_TOKEN_REQUEST_FAILED = "TokenRequestFailed"
REASON_SERVICE_ACCOUNT_FAILED = "ServiceAccountEnsureFailed"
REASON_SECRET_CREATED = "SecretCreated"
REASON_SECRET_SYNC_FAILED = "SecretSyncFailed"
REASON_RECONCILE_FAILED = "ReconcileFailed"

# Credential secret data keys (match kubernetes.io/service-account-token)
SECRET_TOKEN_KEY = "token"
SECRET_CA_KEY = "ca.crt"

# ServiceAccount username prefix reported by TokenReview
SERVICE_ACCOUNT_USERNAME_PREFIX = "system:serviceaccount:"

# Token refresh defaults
# Rotate at 80% of the credential lifetime, re-check 5s after the threshold
DEFAULT_REFRESH_FRACTION = 0.8
DEFAULT_REFRESH_BUFFER_SECONDS = 5.0
DEFAULT_ROTATION_VALIDITY = "8640h"

# Timeout and retry constants (in seconds)
DEFAULT_REQUEST_TIMEOUT = 30
DEFAULT_ERROR_REQUEUE = 30
CONFLICT_REQUEUE = 5
CLEANUP_ATTEMPTS = 3

# Rotation reasons used for metrics and logs
ROTATION_INITIAL = "initial"
ROTATION_EXPIRING = "expiring"
ROTATION_INVALID = "invalid"
ROTATION_NAMESPACE_CHANGED = "namespace-changed"
