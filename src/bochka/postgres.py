"""PostgreSQL backing service.

Credentials are fixed so fixtures stay predictable across test suites:
user ``test``, password ``12345``, database ``testdb``. Other containers on
the same network reach it as ``postgres:5432``.
"""

from __future__ import annotations

from typing import ClassVar

from bochka.service import BaseContainerService, Endpoint

POSTGRES_USER = "test"
POSTGRES_PASSWORD = "12345"
POSTGRES_DB = "testdb"


class PostgresService(BaseContainerService):
    """A PostgreSQL server in a container."""

    SERVICE_NAME: ClassVar[str] = "postgres"
    HOST_ALIAS: ClassVar[str] = "postgres"
    INTERNAL_PORT: ClassVar[int] = 5432
    READY_LOG: ClassVar[str] = "database system is ready to accept connections"
    DEFAULT_IMAGE: ClassVar[str] = "postgres"
    DEFAULT_VERSION: ClassVar[str] = "17.5"

    def _default_env(self) -> dict[str, str]:
        return {
            "POSTGRES_USER": POSTGRES_USER,
            "POSTGRES_PASSWORD": POSTGRES_PASSWORD,
            "POSTGRES_DB": POSTGRES_DB,
        }

    def user(self) -> str:
        return POSTGRES_USER

    def password(self) -> str:
        return POSTGRES_PASSWORD

    def db_name(self) -> str:
        return POSTGRES_DB

    def connection_url(self, internal: bool = False) -> str:
        """``postgresql://`` URL for a client on the host.

        With ``internal=True`` the URL points at the network alias and the
        container port instead, for clients running in a sibling container.
        """
        if internal:
            host, port = self.HOST_ALIAS, self.INTERNAL_PORT
        else:
            host, port = self.host(), self.port()
        return f"postgresql://{self.user()}:{self.password()}@{host}:{port}/{self.db_name()}"

    def endpoint(self) -> Endpoint:
        return Endpoint(
            host=self.host(),
            port=self.port(),
            network_alias=self.HOST_ALIAS,
            network_name=self.network_name(),
            user=self.user(),
            password=self.password(),
            database=self.db_name(),
        )


__all__ = ["POSTGRES_DB", "POSTGRES_PASSWORD", "POSTGRES_USER", "PostgresService"]
