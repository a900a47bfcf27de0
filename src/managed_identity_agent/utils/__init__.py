"""
Utils package - Kubernetes-facing building blocks of the agent.

Contains helper modules for:
- ManagedIdentity access on the hub (identity_store)
- ServiceAccounts, token requests and token reviews on the spoke
- Credential secrets on the hub (credential_store)
- Refresh scheduling and client construction
"""

from managed_identity_agent.utils.credential_store import CredentialStore
from managed_identity_agent.utils.identity_store import ManagedIdentityStore
from managed_identity_agent.utils.principal_manager import (
    PrincipalManager,
    is_managed_service_account,
)
from managed_identity_agent.utils.refresh import RefreshScheduler
from managed_identity_agent.utils.token_issuer import TokenIssuer
from managed_identity_agent.utils.token_validator import (
    TokenValidator,
    service_account_username,
)

__all__ = [
    "CredentialStore",
    "ManagedIdentityStore",
    "PrincipalManager",
    "is_managed_service_account",
    "RefreshScheduler",
    "TokenIssuer",
    "TokenValidator",
    "service_account_username",
]
