"""Router configuration for feedrouter."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any

from feedrouter._constants import (
    DEFAULT_HOST,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_PORT,
    DEFAULT_STABLE_READS,
    SOURCE_URL,
)
from feedrouter.exceptions import RouterConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _first_env(env: Mapping[str, str], *names: str) -> tuple[str, str] | None:
    """Return ``(name, value)`` for the first variable in *names* that is set."""
    for name in names:
        value = env.get(name)
        if value is not None and value.strip():
            return name, value.strip()
    return None


def _parse_number(name: str, raw: str, kind: type[int] | type[float]) -> Any:
    try:
        return kind(raw)
    except ValueError as exc:
        raise RouterConfigError(f"{name} must be numeric, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class RouterConfig:
    """Router configuration.

    Parameters
    ----------
    source_url : str
        URL of the published two-column CSV (key,value with a header row).
    host : str
        Interface the HTTP/WebSocket server binds to.
    port : int
        Listen port.
    poll_interval_ms : int
        Delay between the end of one poll cycle and the start of the next.
    stable_reads : int
        Number of consecutive identical reads required before a changed
        value is committed and broadcast.
    cache_bust : bool
        Append a ``t=<epoch ms>`` query parameter to every fetch so
        intermediate caches cannot serve a stale export.
    fetch_timeout : float or None
        Total timeout in seconds for one upstream fetch.  ``None`` keeps
        the aiohttp session default.
    """

    source_url: str = SOURCE_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    stable_reads: int = DEFAULT_STABLE_READS
    cache_bust: bool = True
    fetch_timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.source_url or not self.source_url.strip():
            raise RouterConfigError("source_url must be non-empty")
        if not 0 <= self.port <= 65535:
            raise RouterConfigError(f"port must be between 0 and 65535, got {self.port}")
        if self.poll_interval_ms <= 0:
            raise RouterConfigError(f"poll_interval_ms must be positive, got {self.poll_interval_ms}")
        if self.stable_reads < 1:
            raise RouterConfigError(f"stable_reads must be >= 1, got {self.stable_reads}")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise RouterConfigError(f"fetch_timeout must be positive, got {self.fetch_timeout}")

    @property
    def poll_interval(self) -> float:
        """Poll delay in seconds."""
        return self.poll_interval_ms / 1000.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> RouterConfig:
        """Create configuration from environment variables.

        Reads the ``FEEDROUTER_*`` variables and, for compatibility with
        existing deployments, the bare ``PORT``, ``POLL_MS`` and
        ``REQUIRE_STABLE_READS`` names.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        env
            Mapping to read instead of :data:`os.environ`.
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RouterConfig
            Populated configuration.

        Raises
        ------
        RouterConfigError
            If a variable cannot be parsed or a value is out of range.
        """
        source = os.environ if env is None else env
        config_kwargs: dict[str, Any] = {}

        found = _first_env(source, "FEEDROUTER_SOURCE_URL")
        if found is not None:
            config_kwargs["source_url"] = found[1]

        found = _first_env(source, "FEEDROUTER_HOST")
        if found is not None:
            config_kwargs["host"] = found[1]

        _NUMERIC_ENV_MAP: dict[str, tuple[tuple[str, ...], type[int] | type[float]]] = {
            "port": (("FEEDROUTER_PORT", "PORT"), int),
            "poll_interval_ms": (("FEEDROUTER_POLL_MS", "POLL_MS"), int),
            "stable_reads": (("FEEDROUTER_STABLE_READS", "REQUIRE_STABLE_READS"), int),
            "fetch_timeout": (("FEEDROUTER_FETCH_TIMEOUT",), float),
        }
        for field_name, (names, kind) in _NUMERIC_ENV_MAP.items():
            if field_name in overrides:
                continue
            found = _first_env(source, *names)
            if found is not None:
                config_kwargs[field_name] = _parse_number(found[0], found[1], kind)

        if "cache_bust" not in overrides:
            config_kwargs["cache_bust"] = _env_bool(source.get("FEEDROUTER_CACHE_BUST"), True)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
