"""Applies execution plans through resource handlers."""

from groundplan.execution.executor import Executor, RetryPolicy
from groundplan.execution.models import OperationResult, OperationStatus, RunResult

__all__ = [
    "Executor",
    "OperationResult",
    "OperationStatus",
    "RetryPolicy",
    "RunResult",
]
