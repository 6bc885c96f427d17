"""Structured error types for bochka.

Every failure the lifecycle can surface maps to one class in a small
hierarchy rooted at ``BochkaError``. Each error carries a category, an
optional ``ErrorContext`` with the container / network / service it concerns,
and the chained runtime exception as ``cause``.

Architecture::

    BochkaError (category, context, cause)
    ├── ConfigurationError     CONFIG       malformed override (reserved)
    ├── NetworkCreationError   NETWORK      runtime cannot allocate a network
    ├── StartError             START        create / readiness / port parse
    ├── TerminationError       TERMINATION  stop / remove failed
    ├── DockerCommandError     RUNTIME      docker CLI exited non-zero
    └── DockerNotFoundError    RUNTIME      no docker CLI on PATH

    ContextCancelled (BochkaError, CANCELLED)
    └── DeadlineExceeded (also TimeoutError)

Propagation:
    Nothing is retried. A failed container start points at the environment
    (missing image, port already bound, daemon down) rather than a blip.
    ``StartError`` and ``TerminationError`` expose ``cancelled`` so callers can
    tell a deadline or a cancel apart from a runtime fault.

Example:
    >>> err = StartError("container did not become ready", service="postgres")
    >>> err.category.value
    'START'
    >>> err.context.service
    'postgres'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard categories for classification in logs and reports."""

    CONFIG = "CONFIG"
    NETWORK = "NETWORK"
    START = "START"
    TERMINATION = "TERMINATION"
    RUNTIME = "RUNTIME"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    service: str | None = None
    container: str | None = None
    network: str | None = None
    image: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["service", "container", "network", "image"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BochkaError(Exception):
    """Base exception for all bochka errors.

    Subclasses set ``default_category``. Keyword arguments that are not one
    of the known parameters are accepted as ``ErrorContext`` fields, so call
    sites can write ``StartError("...", service="nats", cause=exc)``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
        **context_fields: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause
        if context_fields:
            self.with_context(**context_fields)
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BochkaError:
        """Add context fields; unknown keys land in ``metadata``."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    @property
    def cancelled(self) -> bool:
        """True when the error was caused by context cancellation or deadline."""
        if self.category == ErrorCategory.CANCELLED:
            return True
        return isinstance(self.cause, ContextCancelled)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "cancelled": self.cancelled,
        }
        if ctx := self.context.to_dict():
            result["context"] = ctx
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


class ConfigurationError(BochkaError):
    """Malformed configuration override. Reserved for future validation."""

    default_category = ErrorCategory.CONFIG


class NetworkCreationError(BochkaError):
    """The runtime could not allocate an isolated, attachable network."""

    default_category = ErrorCategory.NETWORK


class StartError(BochkaError):
    """Container creation failed, readiness timed out, or the port was unparsable."""

    default_category = ErrorCategory.START


class TerminationError(BochkaError):
    """The runtime failed to stop or remove a container or network."""

    default_category = ErrorCategory.TERMINATION


class DockerNotFoundError(BochkaError):
    """Raised when the Docker CLI is not available."""

    default_category = ErrorCategory.RUNTIME


class DockerCommandError(BochkaError):
    """A docker CLI invocation exited non-zero or timed out."""

    default_category = ErrorCategory.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        args: list[str] | None = None,
        exit_code: int = -1,
        stdout: str = "",
        stderr: str = "",
        **kwargs: Any,
    ) -> None:
        self.command = list(args or [])
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        if stderr:
            message += f"\nStderr: {stderr[:500]}"
        super().__init__(message, **kwargs)


class ContextCancelled(BochkaError):
    """The execution context was cancelled by its owner."""

    default_category = ErrorCategory.CANCELLED


class DeadlineExceeded(ContextCancelled, TimeoutError):
    """The execution context passed its absolute deadline."""

    def __init__(self, timeout: float | None, elapsed: float | None = None, operation: str = "operation"):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation
        msg = f"Operation '{operation}' exceeded its deadline"
        if timeout is not None:
            msg += f" of {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"
        super().__init__(msg)


__all__ = [
    "BochkaError",
    "ConfigurationError",
    "ContextCancelled",
    "DeadlineExceeded",
    "DockerCommandError",
    "DockerNotFoundError",
    "ErrorCategory",
    "ErrorContext",
    "NetworkCreationError",
    "StartError",
    "TerminationError",
]
