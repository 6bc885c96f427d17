"""Where the orchestrator reports container logs and teardown problems.

The orchestrator never raises from ``print_logs``; it hands text to a
``Reporter``. The default ``LogReporter`` forwards to structlog. Tests pass a
``RecordingReporter`` and assert on what was captured.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from bochka.logging import get_logger


@runtime_checkable
class Reporter(Protocol):
    def info(self, message: str, **fields: Any) -> None: ...

    def warning(self, message: str, **fields: Any) -> None: ...


class LogReporter:
    """Reporter backed by a structlog logger."""

    def __init__(self, name: str = "bochka.report") -> None:
        self._logger = get_logger(name)

    def info(self, message: str, **fields: Any) -> None:
        self._logger.info(message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._logger.warning(message, **fields)


@dataclass
class RecordingReporter:
    """Keeps every report in memory."""

    infos: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    warnings: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def info(self, message: str, **fields: Any) -> None:
        self.infos.append((message, fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.warnings.append((message, fields))


__all__ = ["LogReporter", "RecordingReporter", "Reporter"]
