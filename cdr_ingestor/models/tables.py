"""Core table definitions for staging and detail stores built from configuration."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import (
    Column,
    Connection,
    DateTime,
    Engine,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    func,
    inspect,
)
from sqlalchemy.sql import column as sql_column
from sqlalchemy.sql import table as sql_table
from sqlalchemy.sql.expression import TableClause
from sqlalchemy.types import TypeEngine

from ..utils.config import TECHNICAL_COLUMNS, ColumnRule, ColumnType, SourceConfig

STAGING_VALUE_LENGTH = 4000
DEFAULT_DETAIL_STRING_LENGTH = 255
START_HOUR_COLUMN = "START_HOUR"


def _technical_columns() -> list[Column]:
    return [
        Column("SOURCE_FILE", String(255), nullable=False, index=True),
        Column("SOURCE_DIR", String(32), nullable=False),
        Column("LOAD_TS", DateTime, nullable=False, server_default=func.current_timestamp()),
    ]


def build_staging_table(
    name: str,
    columns: Iterable[str],
    metadata: MetaData | None = None,
) -> Table:
    """Return a staging table of untyped text columns plus the technical columns."""

    metadata = metadata if metadata is not None else MetaData()
    data_columns = [
        Column(col, String(STAGING_VALUE_LENGTH), nullable=True)
        for col in columns
        if col not in TECHNICAL_COLUMNS
    ]
    return Table(name, metadata, *data_columns, *_technical_columns())


def _detail_type(rule: ColumnRule) -> TypeEngine:
    if rule.type is ColumnType.NUMBER:
        return Numeric(38, 10)
    if rule.type is ColumnType.TIMESTAMP:
        return DateTime()
    return String(rule.max_length or DEFAULT_DETAIL_STRING_LENGTH)


def build_detail_table(source: SourceConfig, metadata: MetaData | None = None) -> Table:
    """Return the detail table for a source type, keyed uniquely by its dedup column."""

    metadata = metadata if metadata is not None else MetaData()
    columns: list[Column] = [Column("ID", Integer, primary_key=True, autoincrement=True)]
    names: set[str] = set()
    for rule in source.mapping.values():
        if rule.detail_column is None or rule.detail_column in names:
            continue
        names.add(rule.detail_column)
        columns.append(Column(rule.detail_column, _detail_type(rule), nullable=True))

    columns.append(Column(START_HOUR_COLUMN, Integer, nullable=True))
    if source.start_time_column not in names:
        columns.append(Column(source.start_time_column, String(64), nullable=True))
    columns.append(Column(source.dedup_column, String(255), nullable=False, unique=True))
    columns.extend(_technical_columns())
    return Table(source.detail_table, metadata, *columns)


def table_columns(bind: Engine | Connection, name: str) -> list[str]:
    """Introspect the current column names of ``name`` (upper-cased)."""

    inspector = inspect(bind)
    return [str(col["name"]).upper() for col in inspector.get_columns(name)]


def lightweight_table(name: str, columns: Iterable[str]) -> TableClause:
    """Build a selectable for an externally managed table without reflection."""

    return sql_table(name, *(sql_column(col) for col in columns))
