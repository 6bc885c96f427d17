"""Isolated container networks.

Each test run that starts several services puts them on one attachable
bridge network so they can address each other by alias (``postgres``,
``nats``). The orchestrator that creates a network owns it and removes it on
``close``. A network supplied via ``with_network`` stays with the caller.

Example:
    >>> handle = provision_network(ctx, runtime)          # doctest: +SKIP
    >>> pg = new_postgres(ctx, with_network(handle))      # doctest: +SKIP
    >>> nats = new_nats(ctx, with_network(handle))        # doctest: +SKIP
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bochka.errors import BochkaError, NetworkCreationError, TerminationError
from bochka.logging import get_logger

if TYPE_CHECKING:
    from bochka.context import ExecutionContext
    from bochka.runtime import ContainerRuntime

logger = get_logger(__name__)


@dataclass(frozen=True)
class NetworkHandle:
    """One isolated virtual network."""

    name: str
    id: str = ""
    attachable: bool = True
    labels: dict[str, str] = field(default_factory=dict, compare=False, hash=False)


def network_name(prefix: str = "bochka") -> str:
    """Unique network name ``<prefix>-<12 hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def provision_network(
    ctx: ExecutionContext,
    runtime: ContainerRuntime,
    name: str | None = None,
) -> NetworkHandle:
    """Create an attachable network for this run.

    Raises:
        NetworkCreationError: If the runtime cannot allocate the network, or
            the context is already done.
    """
    try:
        ctx.check("network.create")
        handle = runtime.create_network(ctx, name=name, attachable=True)
    except NetworkCreationError:
        raise
    except BochkaError as exc:
        raise NetworkCreationError(f"failed to create network: {exc.message}", network=name, cause=exc) from exc
    except OSError as exc:
        raise NetworkCreationError(f"failed to create network: {exc}", network=name, cause=exc) from exc
    logger.info("network.created", network=handle.name, network_id=handle.id)
    return handle


def remove_network(ctx: ExecutionContext, runtime: ContainerRuntime, handle: NetworkHandle) -> None:
    """Remove a network this process created.

    Raises:
        TerminationError: If the runtime refuses (e.g. containers still attached).
    """
    try:
        runtime.remove_network(ctx, handle)
    except TerminationError:
        raise
    except BochkaError as exc:
        raise TerminationError(
            f"failed to remove network {handle.name}: {exc.message}", network=handle.name, cause=exc
        ) from exc
    logger.info("network.removed", network=handle.name)


__all__ = ["NetworkHandle", "network_name", "provision_network", "remove_network"]
