"""
Service layer for the managed identity agent.

This module provides the reconciler and status services that hold the
business logic, separated from the kopf handler layer.
"""

from .base_reconciler import BaseReconciler, ReconcileResult
from .status_reporter import ConditionUpdate, StatusReporter
from .token_reconciler import TokenReconciler

__all__ = [
    "BaseReconciler",
    "ReconcileResult",
    "ConditionUpdate",
    "StatusReporter",
    "TokenReconciler",
]
