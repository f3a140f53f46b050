"""
Exclusive lock serializing lifecycle operations over the shared connection.
"""

import threading
from contextlib import contextmanager
from typing import Optional

from ..context.execution_context import ExecutionContext
from ..utils.logger import get_logger

# Upper bound on one wait so cancellation is noticed while queued
_POLL_INTERVAL = 0.05


class ConnectionGuard:
    """
    Mutual exclusion over the connection producer.

    Create, update, delete, initialize and close each hold the guard for their
    whole duration, so no two of them ever share the connection's transaction
    state.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.logger = get_logger()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    def _acquire(self, context: Optional[ExecutionContext], operation: str) -> None:
        if context is None:
            self._lock.acquire()
            return

        while True:
            context.check(operation)
            remaining = context.remaining()
            wait = _POLL_INTERVAL if remaining is None else min(_POLL_INTERVAL, remaining)
            if self._lock.acquire(timeout=wait):
                if context.done:
                    self._lock.release()
                    context.check(operation)
                return

    @contextmanager
    def hold(self, context: Optional[ExecutionContext] = None, operation: str = "operation"):
        """
        Hold the guard for the duration of the block.

        Args:
            context: Deadline and cancellation to honour while waiting
            operation: Operation name for logs and errors

        Raises:
            OperationCancelledError: If the context ends before the guard is free
        """
        self._acquire(context, operation)
        self.logger.debug("Connection guard acquired", extra={"operation": operation})
        try:
            yield
        finally:
            self._lock.release()
            self.logger.debug("Connection guard released", extra={"operation": operation})
