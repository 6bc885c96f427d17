"""Container runtime boundary.

The lifecycle code never talks to Docker directly. It hands a declarative
``ContainerSpec`` to a ``ContainerRuntime`` and gets back a ``Container``
handle exposing ``host``, ``mapped_port``, ``logs``, ``exec``, ``status`` and
``terminate``. ``DockerRuntime`` implements that boundary on top of the
``docker`` CLI; ``bochka.testing.StubRuntime`` implements it in memory.

Key Concepts:
    ContainerSpec: image, command, exposed ports, environment, readiness
        strategy, networks with per-network aliases, host port bindings,
        labels.
    DockerRuntime: subprocess wrapper around the docker CLI. Every call is
        bounded by the execution context's remaining time.
    DockerContainer: handle for one running container.

Architecture Decisions:
    - subprocess, not docker-py: works with any runtime that ships a
      ``docker`` CLI (Docker Desktop, Colima, Podman's docker shim, CI).
    - Label-based tracking: every container and network gets
      ``<prefix>.session`` / ``<prefix>.service`` labels so
      ``cleanup_orphans()`` can sweep leftovers from a crashed run.
    - Readiness is not the runtime's job. ``run()`` returns as soon as the
      container is started; the caller applies ``spec.waiting_for``.

Example::

    runtime = DockerRuntime()
    container = runtime.run(spec, ctx)
    spec.waiting_for.wait_until_ready(ctx, container)
    port = container.mapped_port(ctx, 5432)
    container.terminate(ctx)
"""

from __future__ import annotations

import io
import json
import shutil
import subprocess
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, TextIO, runtime_checkable

from bochka.config import RuntimeSettings
from bochka.errors import BochkaError, DeadlineExceeded, DockerCommandError, DockerNotFoundError, TerminationError
from bochka.logging import get_logger
from bochka.network import NetworkHandle, network_name

if TYPE_CHECKING:
    from bochka.context import ExecutionContext
    from bochka.wait import WaitStrategy

logger = get_logger(__name__)

_NOT_FOUND_MARKERS = ("no such container", "no such object", "not found", "no such network")


# ---------------------------------------------------------------------------
# Declarative container specification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortBinding:
    """Host-side binding for a container port. Empty ``host_port`` = ephemeral."""

    container_port: int
    host_port: str = ""
    host_ip: str = "0.0.0.0"
    protocol: str = "tcp"

    def publish_arg(self) -> str:
        """Value for ``docker run --publish``."""
        return f"{self.host_ip}:{self.host_port}:{self.container_port}/{self.protocol}"


@dataclass
class ContainerSpec:
    """Everything the runtime needs to create and start one container."""

    image: str
    name: str = ""
    command: list[str] = field(default_factory=list)
    exposed_ports: list[int] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    waiting_for: WaitStrategy | None = None
    networks: list[str] = field(default_factory=list)
    network_aliases: dict[str, list[str]] = field(default_factory=dict)
    port_bindings: list[PortBinding] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)

    def binding_for(self, port: int) -> PortBinding:
        """Explicit binding for ``port``, or an ephemeral one on all interfaces."""
        for binding in self.port_bindings:
            if binding.container_port == port:
                return binding
        return PortBinding(container_port=port)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command executed inside a container."""

    exit_code: int
    output: str = ""


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Container(Protocol):
    """Opaque handle for a started container."""

    id: str
    name: str

    def host(self, ctx: ExecutionContext) -> str: ...

    def mapped_port(self, ctx: ExecutionContext, port: int) -> str: ...

    def logs(self, ctx: ExecutionContext) -> TextIO: ...

    def exec(self, ctx: ExecutionContext, command: list[str]) -> ExecResult: ...

    def status(self, ctx: ExecutionContext) -> str: ...

    def terminate(self, ctx: ExecutionContext) -> None: ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """What the lifecycle needs from a container engine."""

    settings: RuntimeSettings

    def create_network(
        self, ctx: ExecutionContext, name: str | None = None, attachable: bool = True
    ) -> NetworkHandle: ...

    def remove_network(self, ctx: ExecutionContext, handle: NetworkHandle) -> None: ...

    def run(self, spec: ContainerSpec, ctx: ExecutionContext) -> Container: ...


# ---------------------------------------------------------------------------
# Docker CLI implementation
# ---------------------------------------------------------------------------


class DockerContainer:
    """A container started by ``DockerRuntime``."""

    def __init__(self, runtime: DockerRuntime, container_id: str, name: str, image: str) -> None:
        self.runtime = runtime
        self.id = container_id
        self.name = name
        self.image = image

    def host(self, ctx: ExecutionContext) -> str:
        return self.runtime.settings.resolved_host()

    def mapped_port(self, ctx: ExecutionContext, port: int) -> str:
        """Host port Docker published for ``port``, as the CLI printed it.

        ``docker port`` prints one line per address family, e.g.
        ``0.0.0.0:49153`` and ``[::]:49153``; the first one wins.
        """
        result = self.runtime._run_docker(ctx, ["port", self.name, f"{port}/tcp"])
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise DockerCommandError(
                f"port {port}/tcp is not published for {self.name}", container=self.name
            )
        return lines[0].rsplit(":", 1)[-1]

    def logs(self, ctx: ExecutionContext) -> TextIO:
        """Full log output so far (stdout followed by stderr)."""
        result = self.runtime._run_docker(ctx, ["logs", self.name])
        return io.StringIO(result.stdout + result.stderr)

    def exec(self, ctx: ExecutionContext, command: list[str]) -> ExecResult:
        result = self.runtime._run_docker(ctx, ["exec", self.name, *command], check=False)
        return ExecResult(exit_code=result.returncode, output=result.stdout + result.stderr)

    def status(self, ctx: ExecutionContext) -> str:
        """Container state (running, exited, ...), or ``not_found``."""
        result = self.runtime._run_docker(
            ctx, ["inspect", "--format", "{{.State.Status}}", self.name], check=False
        )
        return result.stdout.strip() if result.returncode == 0 else "not_found"

    def terminate(self, ctx: ExecutionContext) -> None:
        """Stop and remove the container and its anonymous volumes.

        A container that is already gone counts as terminated.

        Raises:
            TerminationError: If Docker refuses to remove it.
        """
        try:
            self.runtime._run_docker(ctx, ["rm", "--force", "--volumes", self.name])
        except DockerCommandError as exc:
            if _is_not_found(exc.stderr):
                logger.debug("container.already_removed", container=self.name)
                return
            raise TerminationError(
                f"failed to terminate container {self.name}", container=self.name, cause=exc
            ) from exc
        logger.info("container.terminated", container=self.name, image=self.image)

    def __repr__(self) -> str:
        return f"DockerContainer(name={self.name!r}, id={self.id!r})"


class DockerRuntime:
    """Container runtime backed by the ``docker`` CLI.

    Parameters
    ----------
    settings
        Runtime settings; ``RuntimeSettings.from_env()`` when omitted.

    Raises
    ------
    DockerNotFoundError
        If the docker CLI is not on PATH.
    """

    def __init__(self, settings: RuntimeSettings | None = None) -> None:
        self.settings = settings or RuntimeSettings.from_env()
        self._docker_cmd = self._find_docker(self.settings)

    @staticmethod
    def _find_docker(settings: RuntimeSettings) -> str:
        """Find the docker CLI binary."""
        docker = settings.resolved_docker_cmd()
        if docker is None:
            raise DockerNotFoundError(
                f"Docker CLI {settings.docker_cmd!r} not found on PATH. "
                "Install Docker or set BOCHKA_DOCKER_CMD."
            )
        return docker

    @staticmethod
    def is_docker_available(docker_cmd: str = "docker") -> bool:
        """Check if Docker is installed and the daemon is running."""
        docker = shutil.which(docker_cmd)
        if docker is None:
            return False
        try:
            result = subprocess.run(
                [docker, "info"],
                capture_output=True,
                timeout=10,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, OSError):
            return False

    @property
    def session_labels(self) -> dict[str, str]:
        return {f"{self.settings.label_prefix}.session": self.settings.session_id}

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def create_network(
        self,
        ctx: ExecutionContext,
        name: str | None = None,
        attachable: bool = True,
    ) -> NetworkHandle:
        """Create a bridge network and return its handle."""
        name = name or network_name(self.settings.network_prefix)
        labels = self.session_labels
        cmd = ["network", "create", "--driver", "bridge"]
        if attachable:
            cmd.append("--attachable")
        for key, value in labels.items():
            cmd.extend(["--label", f"{key}={value}"])
        cmd.append(name)
        result = self._run_docker(ctx, cmd)
        return NetworkHandle(
            name=name,
            id=result.stdout.strip()[:12],
            attachable=attachable,
            labels=labels,
        )

    def remove_network(self, ctx: ExecutionContext, handle: NetworkHandle) -> None:
        """Remove a network. One that is already gone counts as removed."""
        try:
            self._run_docker(ctx, ["network", "rm", handle.name])
        except DockerCommandError as exc:
            if _is_not_found(exc.stderr):
                return
            raise

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def run(self, spec: ContainerSpec, ctx: ExecutionContext) -> DockerContainer:
        """Create and start a container from ``spec`` (detached).

        Only the first network is attached by ``docker run``; any further
        networks are connected afterwards with their aliases.
        """
        name = spec.name or f"{self.settings.label_prefix}-{uuid.uuid4().hex[:8]}"
        cmd = ["run", "--detach", "--name", name]

        for key, value in {**self.session_labels, **spec.labels}.items():
            cmd.extend(["--label", f"{key}={value}"])

        for key, value in spec.env.items():
            cmd.extend(["--env", f"{key}={value}"])

        for port in spec.exposed_ports:
            cmd.extend(["--expose", f"{port}/tcp"])
            cmd.extend(["--publish", spec.binding_for(port).publish_arg()])

        if spec.networks:
            first = spec.networks[0]
            cmd.extend(["--network", first])
            for alias in spec.network_aliases.get(first, []):
                cmd.extend(["--network-alias", alias])

        cmd.append(spec.image)
        cmd.extend(spec.command)

        ctx.check("run")
        try:
            result = self._run_docker(ctx, cmd)
            container = DockerContainer(self, result.stdout.strip()[:12], name, spec.image)
            logger.info("container.started", container=name, container_id=container.id, image=spec.image)

            for extra in spec.networks[1:]:
                connect = ["network", "connect"]
                for alias in spec.network_aliases.get(extra, []):
                    connect.extend(["--alias", alias])
                self._run_docker(ctx, [*connect, extra, name])
        except BochkaError:
            # The daemon may have created the container before the CLI failed.
            self._discard(name)
            raise

        return container

    def _discard(self, name: str) -> None:
        """Best-effort removal of a container whose start failed."""
        try:
            result = self._run_docker(None, ["rm", "--force", "--volumes", name], check=False)
        except BochkaError as exc:
            logger.warning("container.discard_failed", container=name, error=str(exc))
            return
        if result.returncode == 0:
            logger.info("container.discarded", container=name)

    def list_containers(self, session_id: str | None = None) -> list[dict]:
        """List bochka containers, optionally only those of one session."""
        cmd = [
            "ps", "--all",
            "--filter", f"label={self.settings.label_prefix}.session",
            "--format", "{{json .}}",
        ]
        if session_id:
            cmd.extend(["--filter", f"label={self.settings.label_prefix}.session={session_id}"])

        result = self._run_docker(None, cmd, check=False)
        containers = []
        for line in result.stdout.strip().splitlines():
            if line.strip():
                try:
                    containers.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("docker.ps.unparsable", line=line)
        return containers

    def cleanup_orphans(self, session_id: str | None = None) -> int:
        """Remove leftover bochka containers and networks.

        Returns the number of containers removed.
        """
        removed = 0
        for c in self.list_containers(session_id):
            name = c.get("Names", "")
            if name:
                self._run_docker(None, ["rm", "--force", "--volumes", name], check=False)
                removed += 1

        label = f"{self.settings.label_prefix}.session"
        if session_id:
            label += f"={session_id}"
        result = self._run_docker(
            None,
            ["network", "ls", "--filter", f"label={label}", "--format", "{{.Name}}"],
            check=False,
        )
        for network in result.stdout.strip().splitlines():
            if network.strip():
                self._run_docker(None, ["network", "rm", network.strip()], check=False)

        if removed:
            logger.info("cleanup.complete", containers_removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run_docker(
        self,
        ctx: ExecutionContext | None,
        args: list[str],
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a docker CLI command bounded by the context's remaining time.

        Raises:
            ContextCancelled / DeadlineExceeded: If ``ctx`` is done before or
                while the command runs.
            DockerCommandError: On non-zero exit when ``check`` is set.
        """
        timeout = self.settings.command_timeout
        if ctx is not None:
            ctx.check(args[0])
            timeout = ctx.bounded(timeout)
        cmd = [self._docker_cmd, *args]
        logger.debug("docker.exec", cmd=" ".join(cmd), timeout=round(timeout, 2))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            if ctx is not None and ctx.done():
                error = ctx.err() or DeadlineExceeded(timeout, operation=args[0])
                raise error from exc
            raise DockerCommandError(
                f"Docker command timed out after {timeout:.0f}s: {' '.join(args)}", args=args
            ) from exc
        except OSError as exc:
            raise DockerNotFoundError(f"Failed to execute {self._docker_cmd}: {exc}", cause=exc) from exc
        if check and result.returncode != 0:
            raise DockerCommandError(
                f"Docker command failed (exit {result.returncode}): {' '.join(args)}",
                args=args,
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result


def _is_not_found(stderr: str) -> bool:
    text = stderr.lower()
    return any(marker in text for marker in _NOT_FOUND_MARKERS)


__all__ = [
    "Container",
    "ContainerRuntime",
    "ContainerSpec",
    "DockerContainer",
    "DockerRuntime",
    "ExecResult",
    "PortBinding",
]
