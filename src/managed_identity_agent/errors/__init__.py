"""
Error handling module for the managed identity agent.

This module provides an error hierarchy that integrates with kopf
and provides clear categorization for different types of failures.
"""

from .operator_errors import (
    ConfigurationError,
    ConflictError,
    KubernetesAPIError,
    OperatorError,
    PrincipalError,
    ReconciliationError,
    TemporaryError,
    TokenRequestError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "TemporaryError",
    "KubernetesAPIError",
    "ConflictError",
    "PrincipalError",
    "TokenRequestError",
    "ReconciliationError",
    "ConfigurationError",
]
