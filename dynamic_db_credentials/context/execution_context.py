"""
Deadline and cancellation carried through every lifecycle operation.

An ExecutionContext is checked before the connection guard is acquired and
before each statement. While a transaction is open, interrupt_on_cancel()
arms a callback that aborts the in-flight driver call as soon as the context
is cancelled or its deadline passes.
"""

import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

from ..exceptions import OperationCancelledError


class ExecutionContext:
    """Caller-supplied deadline and cancellation signal."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Seconds from now until the deadline, or None for no deadline
        """
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self._cancelled = threading.Event()
        self._expired = False
        self._lock = threading.RLock()
        self._callbacks: List[Callable[[], None]] = []

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None without a deadline."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self._expired:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def cancel(self) -> None:
        """Cancel the operation; aborts the in-flight statement if one is running."""
        self._cancelled.set()
        self._fire()

    def _expire(self) -> None:
        self._expired = True
        self._fire()

    def _fire(self) -> None:
        # Callbacks run under the lock so none outlives its interrupt_on_cancel block
        with self._lock:
            for callback in list(self._callbacks):
                callback()

    def check(self, operation: str = "operation") -> None:
        """
        Raise if the operation may not continue.

        Raises:
            OperationCancelledError: If cancelled or past the deadline
        """
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled", operation=operation)
        if self.expired:
            raise OperationCancelledError(
                f"{operation} exceeded its deadline", operation=operation, reason="deadline"
            )

    @contextmanager
    def interrupt_on_cancel(self, callback: Callable[[], None]):
        """
        Call callback if the context is cancelled or expires inside the block.

        Args:
            callback: Aborts the in-flight work, e.g. a DBAPI connection's cancel()
        """
        with self._lock:
            self._callbacks.append(callback)

        timer = None
        remaining = self.remaining()
        if remaining is not None:
            timer = threading.Timer(remaining, self._expire)
            timer.daemon = True
            timer.start()

        try:
            yield self
        finally:
            if timer is not None:
                timer.cancel()
            with self._lock:
                self._callbacks.remove(callback)
