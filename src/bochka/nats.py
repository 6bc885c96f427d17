"""NATS message broker with JetStream enabled.

No credentials; other containers on the same network reach it as
``nats:4222``.
"""

from __future__ import annotations

from typing import ClassVar

from bochka.service import BaseContainerService


class NatsService(BaseContainerService):
    """A NATS server (``nats-server -js``) in a container."""

    SERVICE_NAME: ClassVar[str] = "nats"
    HOST_ALIAS: ClassVar[str] = "nats"
    INTERNAL_PORT: ClassVar[int] = 4222
    READY_LOG: ClassVar[str] = "Server is ready"
    DEFAULT_IMAGE: ClassVar[str] = "docker.io/library/nats"
    DEFAULT_VERSION: ClassVar[str] = "2-alpine"
    LOG_STARTUP_TIMEOUT: ClassVar[float] = 30.0

    def _command(self) -> list[str]:
        return ["nats-server", "-js"]

    def connection_url(self, internal: bool = False) -> str:
        """``nats://`` URL; ``internal=True`` targets the network alias."""
        if internal:
            return f"nats://{self.HOST_ALIAS}:{self.INTERNAL_PORT}"
        return f"nats://{self.host()}:{self.port()}"


__all__ = ["NatsService"]
