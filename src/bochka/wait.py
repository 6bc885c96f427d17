"""Readiness probes for started containers.

A container that is "running" is not necessarily serving. Each service
declares what ready looks like as a ``WaitStrategy``; the runtime starts the
container and the service blocks on ``wait_until_ready`` before resolving its
endpoint.

Strategies:
    LogStrategy            a line (regex) appears N times in the container log
    ListeningPortStrategy  the mapped port accepts TCP from the host AND the
                           port is listening inside the container
    AllStrategy            every child strategy, under one shared deadline

Polling backs off exponentially (0.1s doubling to 1s) and sleeps on the
execution context, so cancellation interrupts a wait immediately.

Example::

    strategy = for_all(
        for_log("database system is ready to accept connections"),
        for_listening_port(5432),
    ).with_deadline(30.0)
    strategy.wait_until_ready(ctx, container)
"""

from __future__ import annotations

import re
import socket
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from bochka.errors import BochkaError, ContextCancelled, DeadlineExceeded, StartError
from bochka.logging import get_logger

if TYPE_CHECKING:
    from bochka.context import ExecutionContext
    from bochka.runtime import Container

logger = get_logger(__name__)

DEFAULT_STARTUP_TIMEOUT = 60.0
INITIAL_POLL_INTERVAL = 0.1
MAX_POLL_INTERVAL = 1.0

_DEAD_STATES = frozenset({"exited", "dead", "not_found"})
_SHELL_MISSING_EXIT_CODES = frozenset({126, 127})

# Port check that works on minimal images: /proc first, then nc, then bash.
_INTERNAL_PORT_CHECK = (
    "true && ("
    "cat /proc/net/tcp* | awk '{{print $2}}' | grep -i :{port:04x} || "
    "nc -vz -w 1 localhost {port} || "
    "/bin/sh -c '</dev/tcp/localhost/{port}'"
    ")"
)


@runtime_checkable
class WaitStrategy(Protocol):
    """Blocks until the target container is ready or raises ``StartError``."""

    def wait_until_ready(self, ctx: ExecutionContext, target: Container) -> None: ...


class _PollingStrategy:
    """Shared polling loop with exponential backoff."""

    description = "condition"

    def __init__(self, startup_timeout: float = DEFAULT_STARTUP_TIMEOUT) -> None:
        self.startup_timeout = startup_timeout

    def with_startup_timeout(self, seconds: float) -> _PollingStrategy:
        self.startup_timeout = seconds
        return self

    def _poll(self, ctx: ExecutionContext, target: Container) -> bool:
        raise NotImplementedError

    def wait_until_ready(self, ctx: ExecutionContext, target: Container) -> None:
        probe_ctx = ctx.with_timeout(self.startup_timeout, operation=f"wait:{self.description}")
        delay = INITIAL_POLL_INTERVAL
        started = time.monotonic()
        try:
            while True:
                probe_ctx.check()
                if self._poll(probe_ctx, target):
                    logger.debug("wait.satisfied", container=target.name, probe=self.description)
                    return
                probe_ctx.sleep(delay)
                delay = min(delay * 2, MAX_POLL_INTERVAL)
        except ContextCancelled as exc:
            reason = "deadline exceeded" if isinstance(exc, DeadlineExceeded) else "cancelled"
            raise StartError(
                f"{target.name} not ready: {self.description} not satisfied "
                f"after {time.monotonic() - started:.1f}s ({reason})",
                container=target.name,
                cause=exc,
            ) from exc
        finally:
            probe_ctx.cancel()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description!r}, startup_timeout={self.startup_timeout})"


class LogStrategy(_PollingStrategy):
    """Ready once ``pattern`` has matched ``occurrences`` times in the log.

    Fails fast when the container has exited: no amount of waiting will make
    a dead container print its ready line.
    """

    def __init__(
        self,
        pattern: str,
        occurrences: int = 1,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
    ) -> None:
        super().__init__(startup_timeout)
        self.pattern = pattern
        self.occurrences = occurrences
        self._regex = re.compile(pattern, re.MULTILINE)
        self.description = f"log {pattern!r}"

    def _poll(self, ctx: ExecutionContext, target: Container) -> bool:
        text = target.logs(ctx).read()
        if len(self._regex.findall(text)) >= self.occurrences:
            return True
        state = target.status(ctx)
        if state in _DEAD_STATES:
            tail = "\n".join(text.splitlines()[-20:])
            raise StartError(
                f"{target.name} stopped ({state}) before logging {self.pattern!r}\n{tail}",
                container=target.name,
            )
        return False


class ListeningPortStrategy(_PollingStrategy):
    """Ready once ``port`` accepts connections from the host and inside the container."""

    def __init__(self, port: int, startup_timeout: float = DEFAULT_STARTUP_TIMEOUT) -> None:
        super().__init__(startup_timeout)
        self.port = port
        self.description = f"port {port}/tcp"

    def _poll(self, ctx: ExecutionContext, target: Container) -> bool:
        return self._external_check(ctx, target) and self._internal_check(ctx, target)

    def _external_check(self, ctx: ExecutionContext, target: Container) -> bool:
        try:
            host = target.host(ctx)
            mapped = int(target.mapped_port(ctx, self.port))
        except (BochkaError, ValueError):
            ctx.check()
            return False
        try:
            with socket.create_connection((host, mapped), timeout=ctx.bounded(1.0)):
                return True
        except OSError:
            return False

    def _internal_check(self, ctx: ExecutionContext, target: Container) -> bool:
        command = ["/bin/sh", "-c", _INTERNAL_PORT_CHECK.format(port=self.port)]
        result = target.exec(ctx, command)
        if result.exit_code in _SHELL_MISSING_EXIT_CODES:
            raise StartError(
                f"{target.name}: no shell available to check port {self.port} "
                f"(exit {result.exit_code})",
                container=target.name,
            )
        return result.exit_code == 0


class AllStrategy:
    """Runs child strategies in order under one shared deadline."""

    def __init__(self, *strategies: WaitStrategy, deadline: float | None = None) -> None:
        self.strategies = list(strategies)
        self.deadline = deadline

    def with_deadline(self, seconds: float) -> AllStrategy:
        self.deadline = seconds
        return self

    def wait_until_ready(self, ctx: ExecutionContext, target: Container) -> None:
        shared = ctx if self.deadline is None else ctx.with_timeout(self.deadline, operation="wait:all")
        started = time.monotonic()
        try:
            for strategy in self.strategies:
                strategy.wait_until_ready(shared, target)
        finally:
            if shared is not ctx:
                shared.cancel()
        logger.debug(
            "wait.all_satisfied",
            container=target.name,
            probes=len(self.strategies),
            elapsed=round(time.monotonic() - started, 3),
        )

    def __repr__(self) -> str:
        return f"AllStrategy({self.strategies!r}, deadline={self.deadline})"


def for_log(pattern: str, occurrences: int = 1, startup_timeout: float = DEFAULT_STARTUP_TIMEOUT) -> LogStrategy:
    return LogStrategy(pattern, occurrences=occurrences, startup_timeout=startup_timeout)


def for_listening_port(port: int, startup_timeout: float = DEFAULT_STARTUP_TIMEOUT) -> ListeningPortStrategy:
    return ListeningPortStrategy(port, startup_timeout=startup_timeout)


def for_all(*strategies: WaitStrategy) -> AllStrategy:
    return AllStrategy(*strategies)


__all__ = [
    "AllStrategy",
    "ListeningPortStrategy",
    "LogStrategy",
    "WaitStrategy",
    "for_all",
    "for_listening_port",
    "for_log",
]
