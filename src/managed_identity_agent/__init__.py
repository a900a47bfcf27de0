"""
Managed Identity Agent - A Kubernetes operator that keeps delegated
ServiceAccount tokens fresh across a hub and a spoke cluster.

The agent provides:
- ServiceAccount provisioning on the spoke cluster for each ManagedIdentity
- Token issuance, validation and proactive rotation
- Credential secrets (token + CA) on the hub cluster
- Status conditions reflecting the latest reconciliation outcome
"""

__version__ = "0.1.0"
