"""Batched, parameter-bound loading of validated rows into a staging table."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from sqlalchemy import Connection, TextClause, delete, text
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import LoadError
from ..models.tables import lightweight_table
from ..utils.logging import file_context, setup_logger

logger = setup_logger(__name__, context={"stage": "stage_load"})

DEFAULT_BATCH_SIZE = 2000


class BulkStagingLoader:
    """Insert one file's rows into its staging table in fixed-size batches.

    Each batch is a single multi-row ``INSERT`` whose values are bound as
    ``:p{row}_{col}`` parameters. The statement for a given row count is built
    once and reused, so a load compiles at most two statements: the full batch
    and the trailing partial one. ``LOAD_TS`` is filled by the database clock.
    """

    def __init__(
        self,
        *,
        table: str,
        columns: Sequence[str],
        source_dir: str,
        file_name: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_every: int = 50000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.table = table
        self.columns = list(columns)
        self.source_dir = source_dir
        self.file_name = file_name
        self.batch_size = batch_size
        self.progress_every = progress_every
        self._statements: dict[tuple[str, int], TextClause] = {}
        self._log_extra = {**file_context(source_dir, file_name), "stage": "stage_load"}

    @property
    def bind_columns(self) -> list[str]:
        return [*self.columns, "SOURCE_FILE", "SOURCE_DIR"]

    def build_insert_sql(
        self,
        row_count: int,
        dialect_name: str,
        quote: Callable[[str], str],
    ) -> str:
        """Return the SQL text inserting ``row_count`` rows for ``dialect_name``."""

        bind_columns = self.bind_columns
        column_list = ", ".join(quote(col) for col in [*bind_columns, "LOAD_TS"])
        table_name = quote(self.table)
        now_expr = "SYSDATE" if dialect_name == "oracle" else "CURRENT_TIMESTAMP"

        value_groups = []
        for row in range(row_count):
            placeholders = [f":p{row}_{col}" for col in range(len(bind_columns))]
            placeholders.append(now_expr)
            value_groups.append(f"({', '.join(placeholders)})")

        if dialect_name == "oracle":
            into = " ".join(
                f"INTO {table_name} ({column_list}) VALUES {group}" for group in value_groups
            )
            return f"INSERT ALL {into} SELECT 1 FROM DUAL"
        return f"INSERT INTO {table_name} ({column_list}) VALUES {', '.join(value_groups)}"

    def _statement(self, connection: Connection, row_count: int) -> TextClause:
        dialect = connection.dialect
        key = (dialect.name, row_count)
        statement = self._statements.get(key)
        if statement is None:
            sql = self.build_insert_sql(row_count, dialect.name, dialect.identifier_preparer.quote)
            statement = text(sql)
            self._statements[key] = statement
        return statement

    def _flush(self, connection: Connection, batch: list[list[str | None]]) -> None:
        params: dict[str, str | None] = {}
        for row_index, row in enumerate(batch):
            for col_index, value in enumerate(row):
                params[f"p{row_index}_{col_index}"] = value
        connection.execute(self._statement(connection, len(batch)), params)

    def purge(self, connection: Connection) -> int:
        """Delete rows left by an earlier attempt at the same file."""

        staging = lightweight_table(self.table, ["SOURCE_FILE", "SOURCE_DIR"])
        statement = delete(staging).where(
            staging.c.SOURCE_FILE == self.file_name,
            staging.c.SOURCE_DIR == self.source_dir,
        )
        try:
            result = connection.execute(statement)
        except SQLAlchemyError as exc:
            raise LoadError(f"Failed to purge stale staged rows: {exc}") from exc
        purged = result.rowcount or 0
        if purged:
            logger.warning(
                "Purged %d stale staged rows from %s", purged, self.table, extra=self._log_extra
            )
        return purged

    def load(self, connection: Connection, rows: Iterable[Sequence[str]]) -> int:
        """Insert ``rows`` and return how many were written.

        Must run inside the caller's transaction; any failure leaves the
        transaction to be rolled back so no partial file remains staged.
        """

        width = len(self.columns)
        batch: list[list[str | None]] = []
        count = 0
        try:
            for fields in rows:
                if len(fields) != width:
                    raise LoadError(
                        f"Row {count + 1} has {len(fields)} values for {width} staging columns"
                    )
                batch.append([*fields, self.file_name, self.source_dir])
                count += 1

                if len(batch) >= self.batch_size:
                    self._flush(connection, batch)
                    batch = []

                if count % self.progress_every == 0:
                    logger.info("... %d rows loaded", count, extra=self._log_extra)

            if batch:
                self._flush(connection, batch)
        except SQLAlchemyError as exc:
            raise LoadError(f"Staging insert failed after {count} rows: {exc}") from exc

        logger.info("Loaded %d rows into %s", count, self.table, extra=self._log_extra)
        return count
