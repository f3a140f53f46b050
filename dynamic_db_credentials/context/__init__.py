"""Context management for lifecycle operations."""

from .execution_context import ExecutionContext
from .operation_context import OperationContext, OperationHandler, operation
from .service_decorators import guarded

__all__ = [
    "ExecutionContext",
    "OperationContext",
    "OperationHandler",
    "guarded",
    "operation",
]
