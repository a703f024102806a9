"""Tests for the staging/detail column whitelist resolver."""

from __future__ import annotations

import json
import logging
from types import SimpleNamespace

import pytest
import redis
from sqlalchemy import Engine, create_engine

from cdr_ingestor.pipeline import whitelist
from cdr_ingestor.pipeline.whitelist import (
    MemoryColumnCache,
    RedisColumnCache,
    WhitelistResolver,
    build_column_cache,
    cache_key,
)
from cdr_ingestor.utils.config import GlobalSettings, ServiceConfiguration
from tests.fixtures.synthetic.cdr_fixtures import MMG_STAGING_COLUMNS, OCC_HEADER


class FakeRedis:
    """In-memory stand-in for the handful of redis commands the cache uses."""

    def __init__(self, *, broken: bool = False) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.broken = broken

    def get(self, key: str) -> str | None:
        if self.broken:
            raise redis.ConnectionError("connection refused")
        return self.values.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        if self.broken:
            raise redis.ConnectionError("connection refused")
        self.values[key] = value
        self.ttls[key] = ttl

    def delete(self, key: str) -> None:
        if self.broken:
            raise redis.ConnectionError("connection refused")
        self.values.pop(key, None)


def _resolver(engine: Engine, service_config: ServiceConfiguration, **kwargs) -> WhitelistResolver:
    cache = kwargs.pop("cache", None) or MemoryColumnCache()
    return WhitelistResolver(engine, service_config, cache, **kwargs)


def test_cache_key_is_lowercase() -> None:
    assert cache_key("OCC") == "cdr.tmp_columns.occ"


def test_dynamic_mode_introspects_and_caches(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    cache = MemoryColumnCache()
    resolver = _resolver(engine, service_config, cache=cache)

    columns = resolver.staging_columns("MMG")

    assert columns == [*MMG_STAGING_COLUMNS, "SOURCE_FILE", "SOURCE_DIR", "LOAD_TS"]
    assert cache.get(cache_key("mmg")) == columns
    assert resolver.cached("mmg") == columns


def test_valid_header_passes(engine: Engine, service_config: ServiceConfiguration) -> None:
    resolver = _resolver(engine, service_config)

    result = resolver.validate(list(OCC_HEADER), "OCC")

    assert result.valid
    assert result.unknown_columns == []
    assert not result.permissive


def test_unknown_columns_are_reported_in_header_order(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    resolver = _resolver(engine, service_config)

    result = resolver.validate(["ZETA", "MSISDN", "ALPHA", "SOURCE_FILE"], "MMG")

    assert not result.valid
    assert result.unknown_columns == ["ZETA", "ALPHA"]


def test_header_is_compared_verbatim(engine: Engine, service_config: ServiceConfiguration) -> None:
    """No sanitization happens before the whitelist comparison."""

    resolver = _resolver(engine, service_config)

    result = resolver.validate(["session_id", "MSISDN"], "MMG")

    assert result.unknown_columns == ["session_id"]


def test_cached_columns_are_used_without_introspection(
    service_config: ServiceConfiguration,
) -> None:
    cache = MemoryColumnCache()
    cache.put(cache_key("mmg"), ["ONLY"], 60)
    broken_engine = create_engine("sqlite:////nonexistent/dir/cdr.sqlite")
    resolver = _resolver(broken_engine, service_config, cache=cache)

    assert resolver.validate(["ONLY"], "MMG").valid
    assert resolver.validate(["OTHER"], "MMG").unknown_columns == ["OTHER"]


def test_introspection_failure_falls_back_to_permissive(
    service_config: ServiceConfiguration,
    caplog: pytest.LogCaptureFixture,
) -> None:
    broken_engine = create_engine("sqlite:////nonexistent/dir/cdr.sqlite")
    cache = MemoryColumnCache()
    resolver = _resolver(broken_engine, service_config, cache=cache)

    with caplog.at_level(logging.ERROR):
        result = resolver.validate(["ANYTHING"], "OCC")

    assert result.valid
    assert result.permissive
    assert cache.get(cache_key("occ")) is None
    assert "falling back to permissive mode" in caplog.text


def test_missing_staging_table_is_permissive_and_not_cached(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    config = service_config.model_copy(deep=True)
    config.sources["mmg"].tmp_table = "RA_T_TMP_MISSING"
    cache = MemoryColumnCache()
    resolver = _resolver(engine, config, cache=cache)

    assert resolver.validate(["X"], "MMG").permissive
    assert cache.get(cache_key("mmg")) is None


def test_permissive_mode_accepts_everything(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    resolver = _resolver(engine, service_config, mode="permissive")

    result = resolver.validate(["WHATEVER"], "OCC")

    assert result.valid
    assert result.permissive


def test_strict_mode_uses_mapping_keys(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    resolver = _resolver(engine, service_config, mode="strict")

    assert resolver.validate(list(OCC_HEADER), "OCC").valid
    assert resolver.validate(["NOT_MAPPED"], "OCC").unknown_columns == ["NOT_MAPPED"]


def test_detail_stage_uses_mapping_keys(
    engine: Engine,
    service_config: ServiceConfiguration,
) -> None:
    resolver = _resolver(engine, service_config, mode="permissive")

    allowed = resolver.allowed_columns("OCC", stage="detail")

    assert allowed == set(service_config.source("occ").mapping)


def test_refresh_and_clear(engine: Engine, service_config: ServiceConfiguration) -> None:
    cache = MemoryColumnCache()
    cache.put(cache_key("mmg"), ["STALE"], 60)
    resolver = _resolver(engine, service_config, cache=cache)

    columns = resolver.refresh("MMG")

    assert "STALE" not in columns
    assert resolver.cached("MMG") == columns

    resolver.clear("MMG")
    assert resolver.cached("MMG") is None


def test_memory_cache_entries_expire(monkeypatch: pytest.MonkeyPatch) -> None:
    now = [100.0]
    monkeypatch.setattr(whitelist, "time", SimpleNamespace(monotonic=lambda: now[0]))
    cache = MemoryColumnCache()

    cache.put("key", ["A"], 10)

    now[0] = 105.0
    assert cache.get("key") == ["A"]
    now[0] = 110.0
    assert cache.get("key") is None


class TestRedisColumnCache:
    def test_round_trip_sets_ttl(self) -> None:
        client = FakeRedis()
        cache = RedisColumnCache(client)

        cache.put("cdr.tmp_columns.occ", ["A", "B"], 86400)

        assert client.ttls["cdr.tmp_columns.occ"] == 86400
        assert cache.get("cdr.tmp_columns.occ") == ["A", "B"]

        cache.forget("cdr.tmp_columns.occ")
        assert cache.get("cdr.tmp_columns.occ") is None

    def test_unavailable_redis_is_a_miss(self) -> None:
        cache = RedisColumnCache(FakeRedis(broken=True))

        cache.put("key", ["A"], 10)

        assert cache.get("key") is None

    def test_forget_reports_unavailable_redis(self) -> None:
        cache = RedisColumnCache(FakeRedis(broken=True))

        with pytest.raises(redis.RedisError):
            cache.forget("key")

    def test_corrupt_entries_are_ignored(self) -> None:
        client = FakeRedis()
        client.values["bad-json"] = "{not json"
        client.values["not-a-list"] = json.dumps({"a": 1})
        cache = RedisColumnCache(client)

        assert cache.get("bad-json") is None
        assert cache.get("not-a-list") is None

    def test_resolver_falls_back_to_introspection_when_redis_down(
        self,
        engine: Engine,
        service_config: ServiceConfiguration,
    ) -> None:
        resolver = _resolver(engine, service_config, cache=RedisColumnCache(FakeRedis(broken=True)))

        result = resolver.validate(MMG_STAGING_COLUMNS, "MMG")

        assert result.valid
        assert not result.permissive


def test_build_column_cache_selects_backend(settings: GlobalSettings) -> None:
    assert isinstance(build_column_cache(settings), MemoryColumnCache)

    with_redis = settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})
    assert isinstance(build_column_cache(with_redis), RedisColumnCache)
