"""pytest plugin: fixtures for container-backed tests.

Registered through the ``pytest11`` entry point, so installing bochka is
enough. Tests that need a real Docker daemon carry ``@pytest.mark.docker``
and are skipped when the daemon is unreachable.

Fixtures:
    bochka_context     function  background ExecutionContext, cancelled on teardown
    bochka_runtime     session   DockerRuntime; sweeps the session's leftovers at exit
    bochka_network     function  fresh attachable network, removed on teardown
    postgres_service   function  started Bochka[PostgresService] on bochka_network
    nats_service       function  started Bochka[NatsService] on bochka_network

Example::

    @pytest.mark.docker
    def test_insert(postgres_service):
        with psycopg.connect(postgres_service.service.connection_url()) as conn:
            ...
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from bochka.config import RuntimeSettings, with_network
from bochka.context import ExecutionContext
from bochka.logging import configure_logging, get_logger
from bochka.nats import NatsService
from bochka.network import NetworkHandle, provision_network, remove_network
from bochka.orchestrator import Bochka, new_nats, new_postgres
from bochka.postgres import PostgresService
from bochka.runtime import DockerRuntime

logger = get_logger(__name__)

_docker_available: bool | None = None


def _docker_is_available() -> bool:
    global _docker_available
    if _docker_available is None:
        _docker_available = DockerRuntime.is_docker_available(RuntimeSettings.from_env().docker_cmd)
    return _docker_available


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("bochka", "container-backed fixtures")
    group.addoption(
        "--bochka-log-level",
        action="store",
        default=None,
        help="Configure bochka's structlog output at this level (DEBUG, INFO, ...)",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "docker: requires a running Docker daemon")
    level = config.getoption("--bochka-log-level")
    if level:
        configure_logging(level=level, json_format=False)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    docker_items = [item for item in items if item.get_closest_marker("docker")]
    if not docker_items or _docker_is_available():
        return
    skip = pytest.mark.skip(reason="Docker daemon not available")
    for item in docker_items:
        item.add_marker(skip)


@pytest.fixture
def bochka_context() -> Iterator[ExecutionContext]:
    ctx = ExecutionContext.background()
    yield ctx
    ctx.cancel()


@pytest.fixture(scope="session")
def bochka_runtime() -> Iterator[DockerRuntime]:
    if not _docker_is_available():
        pytest.skip("Docker daemon not available")
    runtime = DockerRuntime()
    yield runtime
    removed = runtime.cleanup_orphans(runtime.settings.session_id)
    if removed:
        logger.warning("session.orphans_removed", count=removed, session=runtime.settings.session_id)


@pytest.fixture
def bochka_network(bochka_context: ExecutionContext, bochka_runtime: DockerRuntime) -> Iterator[NetworkHandle]:
    handle = provision_network(bochka_context, bochka_runtime)
    yield handle
    remove_network(ExecutionContext.background().with_timeout(30.0), bochka_runtime, handle)


@pytest.fixture
def postgres_service(
    bochka_context: ExecutionContext,
    bochka_runtime: DockerRuntime,
    bochka_network: NetworkHandle,
) -> Iterator[Bochka[PostgresService]]:
    pg = new_postgres(bochka_context, with_network(bochka_network), runtime=bochka_runtime)
    with pg:
        yield pg


@pytest.fixture
def nats_service(
    bochka_context: ExecutionContext,
    bochka_runtime: DockerRuntime,
    bochka_network: NetworkHandle,
) -> Iterator[Bochka[NatsService]]:
    nats = new_nats(bochka_context, with_network(bochka_network), runtime=bochka_runtime)
    with nats:
        yield nats
