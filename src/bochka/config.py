"""Configuration models for bochka.

Two pydantic models live here:

``ServiceConfig``
    Per-service, per-run configuration: image, version, host port, startup
    timeout, extra environment, and an optional shared network. Frozen once
    composed. Built by ``compose()``, which folds an ordered sequence of
    override functions over the adapter's defaults.

``RuntimeSettings``
    Process-wide knobs for talking to Docker (CLI binary, host override,
    label and network prefixes, per-command timeouts). ``from_env()`` reads
    ``BOCHKA_*`` variables so CI can tune them without code changes.

Override precedence:
    ``compose()``: later overrides win on scalar fields; ``with_env_var`` and
    ``with_env_vars`` merge key by key so repeated calls accumulate.
    ``RuntimeSettings.from_env()``: kwargs > env vars > field defaults.

Example:
    >>> cfg = compose(with_port("5555"), with_env_var("TZ", "UTC"), with_env_var("TZ", "CET"))
    >>> cfg.host_port, cfg.extra_env_vars["TZ"], cfg.timeout
    ('5555', 'CET', 30.0)
"""

from __future__ import annotations

import os
import shutil
import uuid
from collections.abc import Callable, Mapping
from datetime import timedelta
from types import MappingProxyType
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from bochka.network import NetworkHandle

DEFAULT_TIMEOUT = 30.0


class ServiceConfig(BaseModel):
    """Immutable configuration for one backing-service container."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: str = Field(default="", description="Image repository, e.g. 'postgres'")
    version: str = Field(default="latest", description="Image tag")
    host_port: str = Field(
        default="",
        description="Fixed host-side port; empty means an ephemeral port chosen by Docker",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        description="Seconds allowed for the whole start sequence",
    )
    extra_env_vars: Mapping[str, str] = Field(
        default_factory=lambda: MappingProxyType({}),
        description="Environment merged over the adapter defaults (these win); read-only",
    )
    network: NetworkHandle | None = Field(
        default=None,
        description="Pre-existing network to join; created when absent",
    )

    @field_validator("extra_env_vars", mode="after")
    @classmethod
    def _freeze_env(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))

    @property
    def image_ref(self) -> str:
        """Full image reference ``image:version``."""
        return f"{self.image}:{self.version}" if self.version else self.image


Override = Callable[[ServiceConfig], ServiceConfig]


def compose(*overrides: Override, base: ServiceConfig | None = None) -> ServiceConfig:
    """Fold ``overrides`` in order over ``base`` (defaults when omitted)."""
    config = base if base is not None else ServiceConfig()
    for override in overrides:
        config = override(config)
    return config


# ---------------------------------------------------------------------------
# Override functions
# ---------------------------------------------------------------------------


def with_custom_image(image: str, version: str | None = None) -> Override:
    """Replace the image (and tag, when given)."""

    def apply(config: ServiceConfig) -> ServiceConfig:
        update: dict[str, Any] = {"image": image}
        if version is not None:
            update["version"] = version
        return config.model_copy(update=update)

    return apply


def with_network(network: NetworkHandle) -> Override:
    """Join an existing network instead of creating one. The caller keeps ownership."""

    def apply(config: ServiceConfig) -> ServiceConfig:
        return config.model_copy(update={"network": network})

    return apply


def with_port(host_port: str | int) -> Override:
    """Bind the service to a fixed host port instead of an ephemeral one."""

    def apply(config: ServiceConfig) -> ServiceConfig:
        return config.model_copy(update={"host_port": str(host_port)})

    return apply


def with_timeout(timeout: float | timedelta) -> Override:
    """Override the default 30s start bound."""
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)

    def apply(config: ServiceConfig) -> ServiceConfig:
        return config.model_copy(update={"timeout": seconds})

    return apply


def with_env_var(key: str, value: str) -> Override:
    """Set one environment variable; merges with earlier env overrides."""
    return with_env_vars({key: value})


def with_env_vars(env: Mapping[str, str]) -> Override:
    """Merge a mapping into the environment; on conflict these values win."""
    snapshot = dict(env)

    def apply(config: ServiceConfig) -> ServiceConfig:
        merged = MappingProxyType({**config.extra_env_vars, **snapshot})
        return config.model_copy(update={"extra_env_vars": merged})

    return apply


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


class RuntimeSettings(BaseModel):
    """Settings for the Docker runtime wrapper.

    Example::

        settings = RuntimeSettings.from_env(label_prefix="myproject")
        runtime = DockerRuntime(settings)
    """

    docker_cmd: str = Field(default="docker", description="Docker CLI binary name or path")
    host_override: str | None = Field(
        default=None,
        description="Host to reach published ports on (auto-detected when unset)",
    )
    label_prefix: str = Field(default="bochka", description="Prefix for container labels")
    network_prefix: str = Field(default="bochka", description="Prefix for network names")
    command_timeout: float = Field(default=120.0, description="Upper bound for a single docker CLI call")
    termination_timeout: float = Field(default=30.0, description="Bound for close() without a context")
    session_id: str = Field(default="", description="Identifier stamped on every resource (auto-generated)")

    @model_validator(mode="after")
    def _set_defaults(self) -> RuntimeSettings:
        if not self.session_id:
            self.session_id = uuid.uuid4().hex[:12]
        return self

    def resolved_docker_cmd(self) -> str | None:
        """Absolute path of the docker CLI, or None when it is not installed."""
        return shutil.which(self.docker_cmd)

    def resolved_host(self) -> str:
        """Host on which published container ports are reachable.

        ``host_override`` wins; otherwise the host of a ``tcp://`` ``DOCKER_HOST``;
        otherwise ``localhost``.
        """
        if self.host_override:
            return self.host_override
        docker_host = os.environ.get("DOCKER_HOST", "")
        if docker_host.startswith(("tcp://", "http://", "https://")):
            parsed = urlparse(docker_host)
            if parsed.hostname:
                return parsed.hostname
        return "localhost"

    @classmethod
    def from_env(cls, **overrides: Any) -> RuntimeSettings:
        """Create settings from BOCHKA_* environment variables."""
        env_map = {
            "docker_cmd": "BOCHKA_DOCKER_CMD",
            "host_override": "BOCHKA_HOST_OVERRIDE",
            "label_prefix": "BOCHKA_LABEL_PREFIX",
            "network_prefix": "BOCHKA_NETWORK_PREFIX",
            "command_timeout": "BOCHKA_COMMAND_TIMEOUT",
            "termination_timeout": "BOCHKA_TERMINATION_TIMEOUT",
            "session_id": "BOCHKA_SESSION_ID",
        }
        values: dict[str, Any] = {}
        for field_name, env_var in env_map.items():
            env_val = os.environ.get(env_var)
            if env_val is not None:
                if field_name in ("command_timeout", "termination_timeout"):
                    values[field_name] = float(env_val)
                else:
                    values[field_name] = env_val
        values.update(overrides)
        return cls(**values)


__all__ = [
    "DEFAULT_TIMEOUT",
    "Override",
    "RuntimeSettings",
    "ServiceConfig",
    "compose",
    "with_custom_image",
    "with_env_var",
    "with_env_vars",
    "with_network",
    "with_port",
    "with_timeout",
]
