"""Resolution of the column whitelist each pipeline stage accepts."""

from __future__ import annotations

import json
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

import redis
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..models.tables import table_columns
from ..utils.config import TECHNICAL_COLUMNS, GlobalSettings, ServiceConfiguration
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"stage": "whitelist"})

Stage = Literal["staging", "detail"]


def cache_key(source_type: str) -> str:
    return f"cdr.tmp_columns.{source_type.lower()}"


class ColumnCache(Protocol):
    """Minimal TTL cache used to remember introspected staging columns."""

    def get(self, key: str) -> list[str] | None: ...

    def put(self, key: str, columns: list[str], ttl_seconds: int) -> None: ...

    def forget(self, key: str) -> None: ...


class MemoryColumnCache:
    """Process-local cache used when no Redis URL is configured."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, list[str]]] = {}

    def get(self, key: str) -> list[str] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, columns = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(key, None)
            return None
        return list(columns)

    def put(self, key: str, columns: list[str], ttl_seconds: int) -> None:
        self._entries[key] = (time.monotonic() + ttl_seconds, list(columns))

    def forget(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisColumnCache:
    """Redis-backed cache shared by every pipeline process."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisColumnCache:
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=2))

    def get(self, key: str) -> list[str] | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            logger.warning("Column cache unavailable, treating '%s' as a miss: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt column cache entry '%s'", key)
            return None
        if not isinstance(value, list):
            logger.warning("Discarding corrupt column cache entry '%s'", key)
            return None
        return [str(item) for item in value]

    def put(self, key: str, columns: list[str], ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, json.dumps(columns))
        except redis.RedisError as exc:
            logger.warning("Unable to store column cache entry '%s': %s", key, exc)

    def forget(self, key: str) -> None:
        """Delete ``key``; unlike reads and writes, a Redis failure is raised to the caller."""

        self._client.delete(key)


def build_column_cache(settings: GlobalSettings) -> ColumnCache:
    """Return a Redis cache when configured, otherwise a process-local one."""

    if settings.redis_url:
        return RedisColumnCache.from_url(settings.redis_url)
    return MemoryColumnCache()


@dataclass(slots=True)
class WhitelistResult:
    """Outcome of checking a header against a stage whitelist."""

    valid: bool
    unknown_columns: list[str] = field(default_factory=list)
    permissive: bool = False


class WhitelistResolver:
    """Answer which input columns a source type accepts at a given stage.

    Staging columns come from introspecting the staging table (``dynamic``
    mode) and are cached per source type. When introspection fails or finds
    nothing the resolver accepts every column. Detail-stage checks always use
    the keys of the configured column mapping.
    """

    def __init__(
        self,
        engine: Engine,
        service_config: ServiceConfiguration,
        cache: ColumnCache,
        *,
        mode: Literal["dynamic", "permissive", "strict"] = "dynamic",
        ttl_seconds: int = 86400,
    ) -> None:
        self._engine = engine
        self._service_config = service_config
        self._cache = cache
        self.mode = mode
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(
        cls,
        engine: Engine,
        service_config: ServiceConfiguration,
        cache: ColumnCache,
        settings: GlobalSettings,
    ) -> WhitelistResolver:
        return cls(
            engine,
            service_config,
            cache,
            mode=settings.tmp_whitelist_mode,
            ttl_seconds=settings.whitelist_cache_ttl_seconds,
        )

    def fetch_staging_columns(self, source_type: str) -> list[str]:
        """Introspect the staging table, raising on database errors."""

        source = self._service_config.source(source_type)
        return table_columns(self._engine, source.tmp_table)

    def staging_columns(self, source_type: str) -> list[str]:
        """Return cached staging columns, an empty list meaning "accept all"."""

        key = cache_key(source_type)
        cached = self._cache.get(key)
        if cached:
            return cached

        try:
            columns = self.fetch_staging_columns(source_type)
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to introspect staging columns for '%s', falling back to permissive mode: %s",
                source_type,
                exc,
            )
            return []

        if columns:
            self._cache.put(key, columns, self.ttl_seconds)
            logger.info("Cached %d staging columns for '%s'", len(columns), source_type)
        return columns

    def refresh(self, source_type: str) -> list[str]:
        """Drop and rebuild the cached staging columns for ``source_type``."""

        key = cache_key(source_type)
        self._cache.forget(key)
        columns = self.fetch_staging_columns(source_type)
        if columns:
            self._cache.put(key, columns, self.ttl_seconds)
        return columns

    def clear(self, source_type: str) -> None:
        self._cache.forget(cache_key(source_type))

    def cached(self, source_type: str) -> list[str] | None:
        return self._cache.get(cache_key(source_type))

    def allowed_columns(self, source_type: str, stage: Stage = "staging") -> set[str] | None:
        """Return the accepted column set, or ``None`` when every column is accepted."""

        if stage == "detail" or self.mode == "strict":
            return set(self._service_config.source(source_type).mapping)
        if self.mode == "permissive":
            return None
        columns = self.staging_columns(source_type)
        return set(columns) if columns else None

    def validate(
        self,
        header: Sequence[str],
        source_type: str,
        stage: Stage = "staging",
    ) -> WhitelistResult:
        allowed = self.allowed_columns(source_type, stage)
        if allowed is None:
            logger.warning(
                "Whitelist for '%s' is permissive; accepting all columns", source_type
            )
            return WhitelistResult(valid=True, permissive=True)

        unknown = [
            col for col in header if col not in allowed and col not in TECHNICAL_COLUMNS
        ]
        return WhitelistResult(valid=not unknown, unknown_columns=unknown)
