"""In-memory container runtime for unit tests.

``StubRuntime`` implements the ``ContainerRuntime`` protocol without Docker.
Each "container" opens a real TCP listener on 127.0.0.1 so the listening-port
probe can connect to it, and reports a log containing whatever ready line
the service waits for.

.. code-block:: text

    StubRuntime behavior:

    run(spec)
      ├── ready=True   → logs contain every line in ready_logs
      └── ready=False  → logs never match, readiness times out

    Inject failures:
      runtime.fail_network = True         → create_network() raises DockerCommandError
      runtime.fail_run = True             → run() raises DockerCommandError
      runtime.fail_terminate = True       → terminate() raises TerminationError
      runtime.fail_remove_network = True  → remove_network() raises DockerCommandError
      runtime.exited = True               → container status is "exited"
      runtime.port_override = "abc"       → mapped_port() returns it verbatim

    Track usage:
      runtime.run_count / terminate_count / network_create_count / network_remove_count
      runtime.specs        → every ContainerSpec passed to run()
      runtime.networks     → live networks by name

Example:
    >>> runtime = StubRuntime()
    >>> pg = new_postgres(ExecutionContext.background(), runtime=runtime)   # doctest: +SKIP
    >>> pg.start()                                                          # doctest: +SKIP
    >>> runtime.run_count                                                   # doctest: +SKIP
    1
"""

from __future__ import annotations

import io
import socket
import uuid
from typing import TYPE_CHECKING, TextIO

from bochka.config import RuntimeSettings
from bochka.errors import DockerCommandError, TerminationError
from bochka.network import NetworkHandle, network_name
from bochka.runtime import ContainerSpec, ExecResult

if TYPE_CHECKING:
    from bochka.context import ExecutionContext

DEFAULT_READY_LOGS = (
    "database system is ready to accept connections",
    "Server is ready",
)


class StubContainer:
    """A fake running container backed by a local TCP listener."""

    def __init__(self, runtime: StubRuntime, spec: ContainerSpec) -> None:
        self.runtime = runtime
        self.spec = spec
        self.id = uuid.uuid4().hex[:12]
        self.name = spec.name or f"stub-{self.id[:8]}"
        self.terminated = False
        self.exec_calls: list[list[str]] = []
        self._listeners: dict[int, socket.socket] = {}
        for port in spec.exposed_ports:
            binding = spec.binding_for(port)
            listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(("127.0.0.1", int(binding.host_port or 0)))
            listener.listen(8)
            self._listeners[port] = listener

    def host(self, ctx: ExecutionContext) -> str:
        return "127.0.0.1"

    def mapped_port(self, ctx: ExecutionContext, port: int) -> str:
        if self.runtime.port_override is not None:
            return self.runtime.port_override
        listener = self._listeners.get(port)
        if listener is None:
            raise DockerCommandError(f"port {port}/tcp is not published for {self.name}", container=self.name)
        return str(listener.getsockname()[1])

    def logs(self, ctx: ExecutionContext) -> TextIO:
        lines = [f"{self.name} starting"]
        if self.runtime.ready:
            lines.extend(self.runtime.ready_logs)
        return io.StringIO("\n".join(lines) + "\n")

    def exec(self, ctx: ExecutionContext, command: list[str]) -> ExecResult:
        self.exec_calls.append(command)
        return ExecResult(exit_code=self.runtime.exec_exit_code)

    def status(self, ctx: ExecutionContext) -> str:
        if self.terminated:
            return "not_found"
        return "exited" if self.runtime.exited else "running"

    def terminate(self, ctx: ExecutionContext) -> None:
        self.runtime.terminate_count += 1
        if self.runtime.fail_terminate:
            raise TerminationError(f"stub refused to remove {self.name}", container=self.name)
        self.close_listeners()
        self.terminated = True
        self.runtime.containers.pop(self.name, None)

    def close_listeners(self) -> None:
        for listener in self._listeners.values():
            listener.close()
        self._listeners.clear()


class StubRuntime:
    """In-memory ``ContainerRuntime``. No containers, no daemon."""

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        ready: bool = True,
        ready_logs: tuple[str, ...] = DEFAULT_READY_LOGS,
    ) -> None:
        self.settings = settings or RuntimeSettings(termination_timeout=5.0)
        self.ready = ready
        self.ready_logs = ready_logs

        self.fail_network = False
        self.fail_run = False
        self.fail_terminate = False
        self.fail_remove_network = False
        self.exited = False
        self.port_override: str | None = None
        self.exec_exit_code = 0

        self.run_count = 0
        self.terminate_count = 0
        self.network_create_count = 0
        self.network_remove_count = 0

        self.specs: list[ContainerSpec] = []
        self.containers: dict[str, StubContainer] = {}
        self.networks: dict[str, NetworkHandle] = {}

    def create_network(
        self, ctx: ExecutionContext, name: str | None = None, attachable: bool = True
    ) -> NetworkHandle:
        ctx.check("network.create")
        self.network_create_count += 1
        if self.fail_network:
            raise DockerCommandError("stub network create failed", args=["network", "create"], exit_code=1)
        handle = NetworkHandle(
            name=name or network_name(self.settings.network_prefix),
            id=uuid.uuid4().hex[:12],
            attachable=attachable,
            labels={f"{self.settings.label_prefix}.session": self.settings.session_id},
        )
        self.networks[handle.name] = handle
        return handle

    def remove_network(self, ctx: ExecutionContext, handle: NetworkHandle) -> None:
        self.network_remove_count += 1
        if self.fail_remove_network:
            raise DockerCommandError("stub network rm failed", args=["network", "rm"], exit_code=1)
        self.networks.pop(handle.name, None)

    def run(self, spec: ContainerSpec, ctx: ExecutionContext) -> StubContainer:
        ctx.check("run")
        self.run_count += 1
        self.specs.append(spec)
        if self.fail_run:
            raise DockerCommandError(
                f"stub run failed for {spec.image}", args=["run", spec.image], exit_code=125
            )
        container = StubContainer(self, spec)
        self.containers[container.name] = container
        return container

    def close(self) -> None:
        """Release listeners of containers that were never terminated."""
        for container in list(self.containers.values()):
            container.close_listeners()
        self.containers.clear()


__all__ = ["StubContainer", "StubRuntime"]
