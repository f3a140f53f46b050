"""
Service layer decorators.
"""

from functools import wraps
from typing import Any, Callable, TypeVar, cast

from .execution_context import ExecutionContext

F = TypeVar("F", bound=Callable[..., Any])


def guarded(operation_name: str):
    """
    Hold the service's ConnectionGuard for the whole call.

    The wrapped method must take the ExecutionContext as its ``context``
    keyword (or second positional) argument; it may be None.

    Usage:
        @guarded("new_user")
        def new_user(self, request, context=None):
            ...
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            context = kwargs.get("context")
            if context is None and len(args) > 1 and isinstance(args[1], ExecutionContext):
                context = args[1]

            with self.guard.hold(context, operation_name):
                return func(self, *args, **kwargs)

        return cast(F, wrapper)

    return decorator
