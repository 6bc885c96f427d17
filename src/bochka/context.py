"""Cancellable, deadline-bearing execution context.

An ``ExecutionContext`` is handed to every blocking lifecycle call
(``start``, ``close``, readiness probes, docker CLI invocations). It answers
two questions: how much time is left, and has the owner given up?

Architecture::

    ExecutionContext.background()          no deadline, cancellable
          │
          └── .with_timeout(30.0)          child: deadline = min(parent, now+30)
                 │                          cancelled when parent is cancelled
                 └── .with_timeout(5.0)    shortest deadline wins

Blocking code never calls ``time.sleep`` directly. It calls
``ctx.sleep(delay)``, which wakes early on cancellation and raises
``ContextCancelled`` / ``DeadlineExceeded`` instead of hanging.

Example:
    >>> ctx = ExecutionContext.background().with_timeout(30.0)
    >>> ctx.remaining() <= 30.0
    True
    >>> ctx.cancel()
    >>> ctx.done()
    True
"""

from __future__ import annotations

import threading
import time

from bochka.errors import ContextCancelled, DeadlineExceeded


class ExecutionContext:
    """Run-scoped execution context with an optional absolute deadline.

    Deadlines use the monotonic clock. Cancellation propagates from parent to
    children, never the other way round.
    """

    def __init__(
        self,
        deadline: float | None = None,
        timeout_seconds: float | None = None,
        parent: ExecutionContext | None = None,
        operation: str = "operation",
    ) -> None:
        self.deadline = deadline
        self.timeout_seconds = timeout_seconds
        self.parent = parent
        self.operation = operation
        self.start_time = time.monotonic()
        self._cancelled = threading.Event()
        self._children: list[ExecutionContext] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> ExecutionContext:
        """Root context: never expires, only cancelled explicitly."""
        return cls(operation="background")

    def with_timeout(self, seconds: float, operation: str | None = None) -> ExecutionContext:
        """Derive a child whose deadline is ``seconds`` from now, capped by ours."""
        if seconds < 0:
            raise ValueError(f"Timeout must be non-negative, got {seconds}")
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return ExecutionContext(
            deadline=deadline,
            timeout_seconds=seconds,
            parent=self,
            operation=operation or self.operation,
        )

    def with_cancel(self, operation: str | None = None) -> ExecutionContext:
        """Derive a child that shares our deadline but can be cancelled on its own."""
        return ExecutionContext(
            deadline=self.deadline,
            timeout_seconds=self.timeout_seconds,
            parent=self,
            operation=operation or self.operation,
        )

    def _attach(self, child: ExecutionContext) -> None:
        with self._lock:
            self._children.append(child)
            cancelled = self._cancelled.is_set()
        if cancelled:
            child.cancel()

    def _detach(self, child: ExecutionContext) -> None:
        with self._lock:
            if child in self._children:
                self._children.remove(child)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel this context and every context derived from it. Idempotent.

        A cancelled context detaches from its parent, so a long-lived root
        does not hold on to finished children.
        """
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            children = list(self._children)
        for child in children:
            child.cancel()
        if self.parent is not None:
            self.parent._detach(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds until the deadline (negative once past), or None without one."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def is_expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        """True once cancelled or past the deadline."""
        return self.cancelled or self.is_expired()

    def err(self) -> ContextCancelled | None:
        """The error ``check()`` would raise, or None while still live."""
        if self.cancelled:
            return ContextCancelled(f"Operation '{self.operation}' was cancelled")
        if self.is_expired():
            return DeadlineExceeded(
                timeout=self.timeout_seconds,
                elapsed=self.elapsed,
                operation=self.operation,
            )
        return None

    def check(self, operation: str | None = None) -> None:
        """Raise if the context is done.

        Raises:
            ContextCancelled: If cancelled.
            DeadlineExceeded: If the deadline has passed.
        """
        error = self.err()
        if error is None:
            return
        if operation:
            error.with_context(operation=operation)
        raise error

    # ------------------------------------------------------------------
    # Blocking helpers
    # ------------------------------------------------------------------

    def bounded(self, seconds: float) -> float:
        """Clamp a timeout to the time left on the deadline (never below zero)."""
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return max(0.0, min(seconds, remaining))

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; wake and raise early when the context ends."""
        self.check()
        self._cancelled.wait(self.bounded(seconds))
        self.check()

    def __enter__(self) -> ExecutionContext:
        return self

    def __exit__(self, *args) -> None:
        self.cancel()

    def __repr__(self) -> str:
        remaining = self.remaining()
        left = "inf" if remaining is None else f"{remaining:.2f}s"
        return f"ExecutionContext(operation={self.operation!r}, remaining={left}, cancelled={self.cancelled})"


__all__ = ["ExecutionContext"]
