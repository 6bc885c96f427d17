"""Capability contract shared by every backing service.

``ContainerService`` is the structural protocol the orchestrator programs
against. ``BaseContainerService`` implements the start algorithm once;
adapters (``PostgresService``, ``NatsService``) only declare their identity
(image, alias, internal port, ready line) and domain accessors.

Start algorithm::

    0. context already done      -> StartError (cancelled), runtime untouched
    1. env = adapter defaults | caller extra_env_vars   (caller wins)
    2. ContainerSpec(image:version, command, exposed port, readiness,
                     port binding, network + alias, session labels)
    3. runtime.run(spec)         -> StartError on failure, no retry
    4. store handle, then wait for readiness
    5. resolve host + mapped port, parse port into 1..65535
    6. store host + port

Example::

    service = PostgresService(config, network, runtime)
    service.start(ctx)
    service.endpoint()   # Endpoint(host='localhost', port=49153, ...)
    service.close()
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, runtime_checkable

from bochka.config import ServiceConfig
from bochka.context import ExecutionContext
from bochka.errors import BochkaError, StartError, TerminationError
from bochka.logging import get_logger
from bochka.runtime import ContainerSpec, PortBinding
from bochka.wait import WaitStrategy, for_all, for_listening_port, for_log

if TYPE_CHECKING:
    from bochka.network import NetworkHandle
    from bochka.runtime import Container, ContainerRuntime

logger = get_logger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """Resolved connection coordinates of a started service."""

    host: str
    port: int
    network_alias: str
    network_name: str
    user: str = ""
    password: str = ""
    database: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@runtime_checkable
class ContainerService(Protocol):
    """What every backing service exposes, whatever runs inside it."""

    def start(self, ctx: ExecutionContext) -> None: ...

    def close(self, ctx: ExecutionContext | None = None) -> None: ...

    def host(self) -> str: ...

    def port(self) -> int: ...

    def host_alias(self) -> str: ...

    def network_name(self) -> str: ...

    def get_container(self) -> Container | None: ...

    def endpoint(self) -> Endpoint: ...


class BaseContainerService:
    """Shared lifecycle for single-container services.

    Subclasses set the class attributes and may override ``_default_env``,
    ``_command`` and ``_wait_strategy``.
    """

    SERVICE_NAME: ClassVar[str] = "service"
    HOST_ALIAS: ClassVar[str] = ""
    INTERNAL_PORT: ClassVar[int] = 0
    READY_LOG: ClassVar[str] = ""
    DEFAULT_IMAGE: ClassVar[str] = ""
    DEFAULT_VERSION: ClassVar[str] = "latest"
    LOG_STARTUP_TIMEOUT: ClassVar[float] = 60.0

    def __init__(
        self,
        config: ServiceConfig,
        network: NetworkHandle,
        runtime: ContainerRuntime,
    ) -> None:
        self.config = config
        self.network = network
        self.runtime = runtime
        self._container: Container | None = None
        self._host = ""
        self._port = 0

    @classmethod
    def defaults(cls) -> ServiceConfig:
        """Base configuration the caller's overrides are folded over."""
        return ServiceConfig(image=cls.DEFAULT_IMAGE, version=cls.DEFAULT_VERSION)

    # ------------------------------------------------------------------
    # Adapter hooks
    # ------------------------------------------------------------------

    def _default_env(self) -> dict[str, str]:
        return {}

    def _command(self) -> list[str]:
        return []

    def _wait_strategy(self) -> WaitStrategy:
        return for_all(
            for_log(self.READY_LOG, startup_timeout=self.LOG_STARTUP_TIMEOUT),
            for_listening_port(self.INTERNAL_PORT),
        ).with_deadline(self.config.timeout)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def container_spec(self) -> ContainerSpec:
        """Declarative request for this service's container."""
        env = {**self._default_env(), **self.config.extra_env_vars}
        bindings = []
        if self.config.host_port:
            bindings.append(PortBinding(container_port=self.INTERNAL_PORT, host_port=self.config.host_port))
        prefix = self.runtime.settings.label_prefix
        return ContainerSpec(
            image=self.config.image_ref,
            name=f"{prefix}-{self.SERVICE_NAME}-{uuid.uuid4().hex[:8]}",
            command=self._command(),
            exposed_ports=[self.INTERNAL_PORT],
            env=env,
            waiting_for=self._wait_strategy(),
            networks=[self.network.name],
            network_aliases={self.network.name: [self.HOST_ALIAS]},
            port_bindings=bindings,
            labels={f"{prefix}.service": self.SERVICE_NAME},
        )

    def start(self, ctx: ExecutionContext) -> None:
        """Start the container, wait until ready, resolve the endpoint.

        Raises:
            StartError: On any failure. ``cancelled`` is set when the context
                was cancelled or its deadline passed.
        """
        if ctx.done():
            cause = ctx.err()
            raise StartError(
                f"{self.SERVICE_NAME} start aborted: {cause}", service=self.SERVICE_NAME, cause=cause
            ) from cause

        spec = self.container_spec()
        log = logger.bind(service=self.SERVICE_NAME, image=spec.image, network=self.network.name)
        log.info("service.starting", host_port=self.config.host_port or "ephemeral")

        try:
            container = self.runtime.run(spec, ctx)
        except BochkaError as exc:
            raise StartError(
                f"failed to start {self.SERVICE_NAME} container: {exc.message}",
                service=self.SERVICE_NAME,
                image=spec.image,
                cause=exc,
            ) from exc
        self._container = container

        try:
            if spec.waiting_for is not None:
                spec.waiting_for.wait_until_ready(ctx, container)
            host = container.host(ctx)
            raw_port = container.mapped_port(ctx, self.INTERNAL_PORT)
        except StartError as exc:
            raise exc.with_context(service=self.SERVICE_NAME, image=spec.image)
        except BochkaError as exc:
            raise StartError(
                f"{self.SERVICE_NAME} did not become ready: {exc.message}",
                service=self.SERVICE_NAME,
                container=container.name,
                cause=exc,
            ) from exc

        self._host = host
        self._port = self._parse_port(raw_port, container.name)
        log.info("service.ready", container=container.name, host=self._host, port=self._port)

    def _parse_port(self, raw: str, container_name: str) -> int:
        try:
            port = int(str(raw).strip())
        except ValueError:
            port = 0
        if not 1 <= port <= 65535:
            raise StartError(
                f"{self.SERVICE_NAME}: runtime reported invalid port {raw!r}",
                service=self.SERVICE_NAME,
                container=container_name,
            )
        return port

    def close(self, ctx: ExecutionContext | None = None) -> None:
        """Terminate the container. No-op if none was ever created.

        Raises:
            TerminationError: If the runtime fails to remove the container.
        """
        if self._container is None:
            return
        if ctx is None:
            ctx = ExecutionContext.background().with_timeout(
                self.runtime.settings.termination_timeout, operation=f"{self.SERVICE_NAME}.close"
            )
        try:
            self._container.terminate(ctx)
        except TerminationError as exc:
            raise exc.with_context(service=self.SERVICE_NAME)
        except BochkaError as exc:
            raise TerminationError(
                f"failed to terminate {self.SERVICE_NAME}: {exc.message}",
                service=self.SERVICE_NAME,
                container=self._container.name,
                cause=exc,
            ) from exc

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def host(self) -> str:
        return self._host

    def port(self) -> int:
        return self._port

    def host_alias(self) -> str:
        return self.HOST_ALIAS

    def network_name(self) -> str:
        return self.network.name

    def get_container(self) -> Container | None:
        return self._container

    def endpoint(self) -> Endpoint:
        return Endpoint(
            host=self._host,
            port=self._port,
            network_alias=self.HOST_ALIAS,
            network_name=self.network.name,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(image={self.config.image_ref!r}, host={self._host!r}, port={self._port})"


__all__ = ["BaseContainerService", "ContainerService", "Endpoint"]
