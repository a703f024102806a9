"""Alembic environment configuration for CDR_Ingestor."""

from __future__ import annotations

import logging
from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context  # type: ignore[import-untyped]
from cdr_ingestor.models.base import Base
from cdr_ingestor.models.load_audit import LoadAudit  # noqa: F401
from cdr_ingestor.utils.config import ensure_runtime_configuration, get_settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

# Staging and detail tables are built from configuration and migrated explicitly,
# so only the ledger is tracked for autogenerate.
target_metadata = Base.metadata


def get_database_url() -> str:
    """Return the database URL from runtime settings, validating the source configuration."""

    settings = get_settings()
    ensure_runtime_configuration(settings)
    return settings.database_url or "sqlite:///./cdr_ingestor.db"


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode configured with just a database URL."""

    url = get_database_url()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        compare_server_default=True,
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode using an Engine connection."""

    url = get_database_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    logger.info("Running migrations against %s", connectable.url.render_as_string())

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
            transaction_per_migration=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
