"""Mapping-driven transformation of staged rows into deduplicated detail records."""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from sqlalchemy import Connection, Engine, and_, delete, func, insert, select
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import TransformationError
from ..models.tables import START_HOUR_COLUMN, build_detail_table, lightweight_table, table_columns
from ..utils.config import CleanTransform, ColumnRule, ColumnType, SourceConfig
from ..utils.logging import file_context, setup_logger

logger = setup_logger(__name__, context={"stage": "transform"})

TimestampUnit = Literal["seconds", "milliseconds"]
CleanupStrategy = Literal["on_success", "on_error", "never"]

EPOCH = datetime(1970, 1, 1)
KEY_LOOKUP_CHUNK = 500

_NUMERIC = re.compile(r"[+-]?[0-9]+(\.[0-9]+)?")
_DIGITS = re.compile(r"[0-9]+")
_MSISDN_NOISE = str.maketrans("", "", "\r\n\t ")


def clean_value(raw: str | None, transform: CleanTransform) -> str | None:
    """Apply a cleaning transform to a staged text value."""

    if raw is None:
        return None
    if transform is CleanTransform.TRIM:
        return raw.strip()
    if transform is CleanTransform.UPPER:
        return raw.strip().upper()
    if transform is CleanTransform.CLEAN_MSISDN:
        return raw.translate(_MSISDN_NOISE)
    return raw


def epoch_to_datetime(value: str, unit: TimestampUnit) -> datetime:
    """Convert an epoch count to a naive UTC timestamp."""

    count = int(value)
    if unit == "milliseconds":
        return EPOCH + timedelta(milliseconds=count)
    return EPOCH + timedelta(seconds=count)


def coerce_value(cleaned: str | None, rule: ColumnRule, unit: TimestampUnit) -> Any:
    """Coerce a cleaned value to the rule's semantic type (``None`` when not representable)."""

    if cleaned is None or cleaned == "":
        return None
    if rule.type is ColumnType.NUMBER:
        if not _NUMERIC.fullmatch(cleaned):
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    if rule.type is ColumnType.TIMESTAMP:
        if not _DIGITS.fullmatch(cleaned):
            return None
        try:
            return epoch_to_datetime(cleaned, unit)
        except OverflowError:
            return None
    if rule.max_length is not None:
        return cleaned[: rule.max_length]
    return cleaned


def compute_dedup_key(row: Mapping[str, Any], keys: Sequence[str]) -> str | None:
    """Return the first non-empty trimmed value among ``keys``."""

    for key in keys:
        value = row.get(key)
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed:
            return trimmed
    return None


class RowTransformer:
    """Per-row rules derived from one source type's column mapping."""

    def __init__(self, source: SourceConfig, timestamp_unit: TimestampUnit = "seconds") -> None:
        self.source = source
        self.timestamp_unit = timestamp_unit

    @property
    def input_columns(self) -> list[str]:
        names = list(self.source.mapping)
        for extra in (*self.source.dedup_keys, self.source.start_time_column):
            if extra not in names:
                names.append(extra)
        return names

    def _cleaned(self, row: Mapping[str, Any], column: str, rule: ColumnRule) -> str | None:
        cleaned = clean_value(row.get(column), rule.transform)
        if (cleaned is None or cleaned == "") and not rule.required and rule.default is not None:
            return rule.default
        return cleaned

    def rejection_reason(self, row: Mapping[str, Any]) -> str | None:
        """Return why ``row`` must not reach the detail store, or ``None`` when it passes."""

        for column, rule in self.source.mapping.items():
            if rule.required:
                cleaned = clean_value(row.get(column), rule.transform)
                if cleaned is None or not cleaned.strip():
                    return f"required column {column} is empty"
            if rule.type is ColumnType.TIMESTAMP:
                raw = row.get(column)
                if raw is None or not _DIGITS.fullmatch(raw):
                    return f"timestamp column {column} is not numeric"
                try:
                    epoch_to_datetime(raw, self.timestamp_unit)
                except OverflowError:
                    return f"timestamp column {column} is out of range"
        if compute_dedup_key(row, self.source.dedup_keys) is None:
            return "dedup key is empty"
        return None

    def transform(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Build the detail record for a row that passed :meth:`rejection_reason`."""

        record: dict[str, Any] = {}
        for column, rule in self.source.mapping.items():
            if rule.detail_column is None:
                continue
            record[rule.detail_column] = coerce_value(
                self._cleaned(row, column, rule), rule, self.timestamp_unit
            )

        start_column = self.source.start_time_column
        start_rule = self.source.mapping[start_column]
        started_at = coerce_value(
            clean_value(row.get(start_column), start_rule.transform),
            start_rule,
            self.timestamp_unit,
        )
        record[START_HOUR_COLUMN] = started_at.hour if started_at is not None else None
        record.setdefault(start_column, row.get(start_column))
        record[self.source.dedup_column] = compute_dedup_key(row, self.source.dedup_keys)
        return record


@dataclass(slots=True)
class TransformStats:
    """Row accounting for one file's transform."""

    staged: int = 0
    passing: int = 0
    inserted: int = 0
    skipped_existing: int = 0

    @property
    def rejected(self) -> int:
        return self.staged - self.passing

    def summary(self) -> str:
        text = f"TMP:{self.staged} DETAIL:{self.inserted} REJECTED:{self.rejected}"
        if self.skipped_existing:
            text += f" EXISTING:{self.skipped_existing}"
        return text

    def as_dict(self) -> dict[str, int]:
        return {
            "staged": self.staged,
            "passing": self.passing,
            "inserted": self.inserted,
            "skipped_existing": self.skipped_existing,
            "rejected": self.rejected,
        }


def _chunks(values: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class TransformEngine:
    """Move one file's staged rows into the detail store with insert-if-absent semantics."""

    def __init__(
        self,
        engine: Engine,
        source_type: str,
        source: SourceConfig,
        *,
        timestamp_unit: TimestampUnit = "seconds",
        cleanup_strategy: CleanupStrategy = "on_success",
        batch_size: int = 2000,
    ) -> None:
        self._engine = engine
        self.source_type = source_type
        self.source = source
        self.cleanup_strategy = cleanup_strategy
        self.batch_size = batch_size
        self.rows = RowTransformer(source, timestamp_unit)
        self.detail = build_detail_table(source)

    def _staging(self, connection: Connection):
        columns = table_columns(connection, self.source.tmp_table)
        return lightweight_table(self.source.tmp_table, columns), set(columns)

    def _purge(self, connection: Connection, file_name: str, source_dir: str) -> int:
        staging = lightweight_table(self.source.tmp_table, ["SOURCE_FILE", "SOURCE_DIR"])
        result = connection.execute(
            delete(staging).where(
                staging.c.SOURCE_FILE == file_name, staging.c.SOURCE_DIR == source_dir
            )
        )
        return result.rowcount or 0

    def _existing_keys(self, connection: Connection, keys: Sequence[str]) -> set[str]:
        dedup = self.detail.c[self.source.dedup_column]
        found: set[str] = set()
        for chunk in _chunks(keys, KEY_LOOKUP_CHUNK):
            found.update(connection.scalars(select(dedup).where(dedup.in_(chunk))))
        return found

    def _insert_batch(
        self,
        connection: Connection,
        records: list[dict[str, Any]],
        stats: TransformStats,
    ) -> None:
        dedup_column = self.source.dedup_column
        existing = self._existing_keys(connection, [record[dedup_column] for record in records])
        fresh = [record for record in records if record[dedup_column] not in existing]
        stats.skipped_existing += len(records) - len(fresh)
        if fresh:
            connection.execute(insert(self.detail), fresh)
            stats.inserted += len(fresh)

    def transform_file(self, file_name: str, source_dir: str) -> TransformStats:
        """Transform the staged rows of ``file_name`` and return the row accounting.

        Raises:
            TransformationError: The source type has no mapping, or the read or
                insert failed; the detail transaction is rolled back.
        """

        log_extra = {**file_context(source_dir, file_name), "stage": "transform"}
        stats = TransformStats()
        try:
            if not self.source.transformable:
                raise TransformationError(
                    f"{self.source_type.upper()} transformation not implemented"
                )
            with self._engine.begin() as connection:
                staging, available = self._staging(connection)
                scope = and_(
                    staging.c.SOURCE_FILE == file_name, staging.c.SOURCE_DIR == source_dir
                )
                stats.staged = connection.scalar(
                    select(func.count()).select_from(staging).where(scope)
                ) or 0
                if stats.staged == 0:
                    logger.warning("No staged rows to transform", extra=log_extra)
                    return stats

                read_columns = [col for col in self.rows.input_columns if col in available]
                result = connection.execute(
                    select(*(staging.c[col] for col in read_columns))
                    .where(scope)
                    .execution_options(yield_per=self.batch_size)
                )

                seen: set[str] = set()
                for partition in result.partitions():
                    records: list[dict[str, Any]] = []
                    for row in partition:
                        values = row._mapping
                        if self.rows.rejection_reason(values) is not None:
                            continue
                        stats.passing += 1
                        record = self.rows.transform(values)
                        record["SOURCE_FILE"] = file_name
                        record["SOURCE_DIR"] = source_dir
                        key = record[self.source.dedup_column]
                        if key in seen:
                            stats.skipped_existing += 1
                            continue
                        seen.add(key)
                        records.append(record)
                    if records:
                        self._insert_batch(connection, records, stats)

                if stats.rejected:
                    logger.warning(
                        "%d/%d staged rows rejected", stats.rejected, stats.staged, extra=log_extra
                    )

                if self.cleanup_strategy == "on_success":
                    self._purge(connection, file_name, source_dir)
                    logger.info("Cleaned staged rows", extra=log_extra)
        except TransformationError as exc:
            self._after_failure(exc, file_name, source_dir, log_extra)
            raise
        except Exception as exc:
            self._after_failure(exc, file_name, source_dir, log_extra)
            raise TransformationError(
                f"Transform staging->detail failed for {file_name}: {exc}"
            ) from exc

        logger.info("Transform complete: %s", stats.summary(), extra=log_extra)
        return stats

    def _after_failure(
        self, exc: Exception, file_name: str, source_dir: str, log_extra: dict
    ) -> None:
        logger.error("Transform failed: %s", exc, extra=log_extra)
        if self.cleanup_strategy != "on_error":
            return
        try:
            with self._engine.begin() as connection:
                self._purge(connection, file_name, source_dir)
        except SQLAlchemyError as purge_exc:
            logger.error(
                "Unable to purge staged rows after failure: %s", purge_exc, extra=log_extra
            )
