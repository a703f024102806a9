"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine, MetaData

from cdr_ingestor.models.base import get_engine, get_session_factory, reset_engine
from cdr_ingestor.models.repository import IngestionLedger
from cdr_ingestor.models.tables import build_detail_table, build_staging_table
from cdr_ingestor.pipeline.orchestrator import CdrPipeline
from cdr_ingestor.pipeline.whitelist import MemoryColumnCache, WhitelistResolver
from cdr_ingestor.storage.local_store import LocalFileStore
from cdr_ingestor.utils.config import (
    GlobalSettings,
    ServiceConfiguration,
    SourceConfig,
    clear_settings_cache,
    get_service_configuration,
    get_settings,
)
from tests.fixtures.synthetic.cdr_fixtures import MMG_STAGING_COLUMNS, FakeTransport

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> Iterator[None]:
    """Point CDR_DATABASE_URL at a throwaway SQLite file and reset cached state."""

    db_path = tmp_path_factory.mktemp("sqlite-db") / "cdr.sqlite"
    monkeypatch.setenv("CDR_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("CDR_CONFIG_DIR", str(CONFIG_DIR))
    monkeypatch.delenv("CDR_REDIS_URL", raising=False)
    monkeypatch.delenv("CDR_CONFIG_PROFILE", raising=False)
    monkeypatch.delenv("CDR_ENVIRONMENT", raising=False)

    get_settings(reload=True)
    get_service_configuration(reload=True)
    yield
    reset_engine()
    clear_settings_cache()


@pytest.fixture
def settings() -> GlobalSettings:
    return get_settings()


@pytest.fixture
def service_config(settings: GlobalSettings) -> ServiceConfiguration:
    return get_service_configuration(settings)


@pytest.fixture
def occ_source(service_config: ServiceConfiguration) -> SourceConfig:
    return service_config.source("occ")


@pytest.fixture
def engine(service_config: ServiceConfiguration) -> Engine:
    """Shared engine with the ledger plus OCC and MMG staging/detail tables created."""

    engine = get_engine()
    metadata = MetaData()
    occ = service_config.source("occ")
    build_staging_table(occ.tmp_table, list(occ.mapping), metadata)
    build_detail_table(occ, metadata)
    build_staging_table(service_config.source("mmg").tmp_table, MMG_STAGING_COLUMNS, metadata)
    metadata.create_all(engine)
    return engine


@pytest.fixture
def ledger(engine: Engine) -> IngestionLedger:
    return IngestionLedger(get_session_factory(engine))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store(tmp_path: Path) -> LocalFileStore:
    return LocalFileStore(tmp_path / "storage")


@pytest.fixture
def make_pipeline(
    settings: GlobalSettings,
    service_config: ServiceConfiguration,
    engine: Engine,
    ledger: IngestionLedger,
    transport: FakeTransport,
    store: LocalFileStore,
) -> Callable[..., CdrPipeline]:
    """Factory building a pipeline over the fake transport with settings overrides."""

    def _factory(**overrides: Any) -> CdrPipeline:
        mode = overrides.pop("tmp_whitelist_mode", "dynamic")
        effective = settings.model_copy(update={"batch_size": 2, **overrides})
        resolver = WhitelistResolver(engine, service_config, MemoryColumnCache(), mode=mode)
        return CdrPipeline(
            settings=effective,
            service_config=service_config,
            transport=transport,
            store=store,
            engine=engine,
            resolver=resolver,
            ledger=ledger,
        )

    return _factory
