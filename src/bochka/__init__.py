"""bochka: disposable backing services in Docker for tests.

Start a PostgreSQL or NATS container per test, wait until it is actually
serving, hand back host/port/credentials, and remove everything afterwards.

Example::

    from bochka import ExecutionContext, new_postgres, with_port

    with new_postgres(ExecutionContext.background(), with_port("5555")) as pg:
        dsn = pg.service.connection_url()
"""

from bochka.config import (
    RuntimeSettings,
    ServiceConfig,
    compose,
    with_custom_image,
    with_env_var,
    with_env_vars,
    with_network,
    with_port,
    with_timeout,
)
from bochka.context import ExecutionContext
from bochka.errors import (
    BochkaError,
    ConfigurationError,
    ContextCancelled,
    DeadlineExceeded,
    DockerCommandError,
    DockerNotFoundError,
    ErrorCategory,
    NetworkCreationError,
    StartError,
    TerminationError,
)
from bochka.nats import NatsService
from bochka.network import NetworkHandle, provision_network, remove_network
from bochka.orchestrator import Bochka, LifecycleState, new_nats, new_postgres
from bochka.postgres import PostgresService
from bochka.runtime import ContainerSpec, DockerRuntime, PortBinding
from bochka.service import BaseContainerService, ContainerService, Endpoint
from bochka.wait import for_all, for_listening_port, for_log

__version__ = "0.1.0"

__all__ = [
    "BaseContainerService",
    "Bochka",
    "BochkaError",
    "ConfigurationError",
    "ContainerService",
    "ContainerSpec",
    "ContextCancelled",
    "DeadlineExceeded",
    "DockerCommandError",
    "DockerNotFoundError",
    "DockerRuntime",
    "Endpoint",
    "ErrorCategory",
    "ExecutionContext",
    "LifecycleState",
    "NatsService",
    "NetworkCreationError",
    "NetworkHandle",
    "PortBinding",
    "PostgresService",
    "RuntimeSettings",
    "ServiceConfig",
    "StartError",
    "TerminationError",
    "compose",
    "for_all",
    "for_listening_port",
    "for_log",
    "new_nats",
    "new_postgres",
    "provision_network",
    "remove_network",
    "with_custom_image",
    "with_env_var",
    "with_env_vars",
    "with_network",
    "with_port",
    "with_timeout",
]
