"""Lifecycle orchestrator for one backing service per test.

``Bochka`` binds together a composed configuration, an execution context
with the configured deadline, a network (borrowed or created), and exactly
one service adapter. It owns nothing it did not create: a network handed in
through ``with_network`` is left in place on ``close``.

State machine::

    CONSTRUCTED ──start()──► STARTING ──ok──► READY ──close()──► CLOSED
                                 │
                                 └──error──► FAILED ──close()──► CLOSED

Example::

    ctx = ExecutionContext.background()
    with new_postgres(ctx, with_port("5555")) as pg:
        dsn = pg.service.connection_url()
        ...

    # Two services on one network
    db = new_postgres(ctx)
    bus = new_nats(ctx, with_network(db.network))
    db.start(); bus.start()
    ...
    bus.close(); db.close()      # borrower first, creator last
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Generic, TypeVar

from bochka.config import Override, compose
from bochka.context import ExecutionContext
from bochka.errors import BochkaError, StartError
from bochka.logging import get_logger
from bochka.nats import NatsService
from bochka.network import NetworkHandle, provision_network, remove_network
from bochka.postgres import PostgresService
from bochka.reporting import LogReporter, Reporter
from bochka.runtime import ContainerRuntime, DockerRuntime
from bochka.service import BaseContainerService

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseContainerService)


class LifecycleState(str, Enum):
    CONSTRUCTED = "constructed"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class Bochka(Generic[T]):
    """Owns one service adapter, its deadline and (possibly) its network.

    Args:
        service_cls: Adapter class, e.g. ``PostgresService``.
        ctx: Parent execution context; cancelling it aborts ``start``.
        *overrides: Configuration overrides, applied in order over the
            adapter's defaults.
        runtime: Container runtime; a ``DockerRuntime`` when omitted.
        reporter: Destination for ``print_logs``; structlog when omitted.

    Raises:
        NetworkCreationError: If no network was supplied and one cannot be
            created.
    """

    def __init__(
        self,
        service_cls: type[T],
        ctx: ExecutionContext,
        *overrides: Override,
        runtime: ContainerRuntime | None = None,
        reporter: Reporter | None = None,
    ) -> None:
        self.config = compose(*overrides, base=service_cls.defaults())
        self.runtime = runtime if runtime is not None else DockerRuntime()
        self.reporter = reporter if reporter is not None else LogReporter()
        self.context = ctx.with_timeout(self.config.timeout, operation=service_cls.SERVICE_NAME)

        if self.config.network is not None:
            self._network = self.config.network
            self._owns_network = False
        else:
            self._network = provision_network(self.context, self.runtime)
            self._owns_network = True

        self._service: T = service_cls(self.config, self._network, self.runtime)
        self._state = LifecycleState.CONSTRUCTED

    @property
    def service(self) -> T:
        return self._service

    @property
    def network(self) -> NetworkHandle:
        return self._network

    @property
    def owns_network(self) -> bool:
        return self._owns_network

    @property
    def state(self) -> LifecycleState:
        return self._state

    def network_name(self) -> str:
        return self._network.name

    def start(self) -> None:
        """Start the service under this orchestrator's deadline.

        Raises:
            StartError: See ``BaseContainerService.start``.
        """
        self._state = LifecycleState.STARTING
        try:
            self._service.start(self.context)
        except StartError:
            self._state = LifecycleState.FAILED
            raise
        self._state = LifecycleState.READY

    def close(self) -> None:
        """Terminate the container, remove an owned network, cancel the context.

        The context is cancelled and the state becomes ``CLOSED`` even when
        termination fails; the error still propagates. Network removal is
        skipped when the container could not be removed.

        Raises:
            TerminationError: If the container or owned network cannot be removed.
        """
        try:
            self._service.close()
            if self._owns_network:
                remove_network(self._termination_context(), self.runtime, self._network)
        finally:
            self.context.cancel()
            self._state = LifecycleState.CLOSED
        logger.debug("bochka.closed", service=self._service.SERVICE_NAME, network=self._network.name)

    def print_logs(self) -> None:
        """Report the container's log output. Failures are reported as warnings."""
        alias = self._service.host_alias()
        container = self._service.get_container()
        if container is None:
            self.reporter.warning(f"failed to get {alias} container logs: container was never created")
            return
        ctx = self.context if not self.context.done() else self._termination_context()
        try:
            logs = container.logs(ctx).read()
        except (BochkaError, OSError) as exc:
            self.reporter.warning(f"failed to get {alias} container logs: {exc}", service=alias)
            return
        self.reporter.info(f"{alias} container logs:\n{logs}", service=alias)

    def _termination_context(self) -> ExecutionContext:
        return ExecutionContext.background().with_timeout(
            self.runtime.settings.termination_timeout, operation="terminate"
        )

    def __enter__(self) -> Bochka[T]:
        try:
            self.start()
        except StartError:
            self.close()
            raise
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Bochka({type(self._service).__name__}, state={self._state.value}, "
            f"network={self._network.name!r})"
        )


def new_postgres(ctx: ExecutionContext, *overrides: Override, **kwargs: Any) -> Bochka[PostgresService]:
    """Orchestrator for a PostgreSQL service (not yet started)."""
    return Bochka(PostgresService, ctx, *overrides, **kwargs)


def new_nats(ctx: ExecutionContext, *overrides: Override, **kwargs: Any) -> Bochka[NatsService]:
    """Orchestrator for a NATS service (not yet started)."""
    return Bochka(NatsService, ctx, *overrides, **kwargs)


__all__ = ["Bochka", "LifecycleState", "new_nats", "new_postgres"]
