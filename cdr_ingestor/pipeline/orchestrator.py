"""Per-file state machine driving CDR files from the remote area to the detail store."""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import (
    ConfigurationError,
    CsvInvalidError,
    DownloadError,
    FileProcessingError,
    IdentifierError,
    LoadError,
    TransformationError,
    TransportError,
    WhitelistError,
)
from ..models.base import get_engine, get_session_factory
from ..models.load_audit import FileStatus
from ..models.repository import FileIdentity, IngestionLedger
from ..monitoring.metrics import (
    observe_file_duration,
    record_file_error,
    record_file_outcome,
    record_row_counts,
)
from ..storage.local_store import LocalFileStore, err_path, inbound_path, out_path, tmp_path
from ..storage.transport import RemoteTransport
from ..utils.config import GlobalSettings, ServiceConfiguration, get_service_configuration
from ..utils.csv_reader import StrictRecordReader
from ..utils.identifiers import resolve_staging_identifiers
from ..utils.logging import file_context, log_file_outcome, setup_logger
from .staging import BulkStagingLoader
from .transform import TransformEngine, TransformStats
from .whitelist import WhitelistResolver, build_column_cache

logger = setup_logger(__name__, context={"stage": "pipeline"})


class FileOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"
    SKIPPED = "SKIPPED"


@dataclass(slots=True)
class FileResult:
    """What happened to one remote file during a sweep."""

    source_dir: str
    file_name: str
    file_size: int | None
    outcome: FileOutcome
    message: str | None = None
    rows_validated: int = 0
    rows_staged: int = 0
    transform: TransformStats | None = None


@dataclass(slots=True)
class RunSummary:
    """Results of one full sweep across source categories."""

    results: list[FileResult] = field(default_factory=list)
    failed_categories: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_categories

    def count(self, outcome: FileOutcome) -> int:
        return sum(1 for result in self.results if result.outcome is outcome)


@contextmanager
def stage_guard(error_cls: type[FileProcessingError]) -> Iterator[None]:
    """Re-raise unclassified failures inside a step as that step's error kind."""

    try:
        yield
    except FileProcessingError:
        raise
    except Exception as exc:
        raise error_cls.from_exception(exc) from exc


class CdrPipeline:
    """Drive every file of every source category through the ingestion state machine.

    All collaborators are passed in explicitly so a sweep can run against FTP,
    a local directory, or an in-memory fake with the same code path.
    """

    def __init__(
        self,
        *,
        settings: GlobalSettings,
        service_config: ServiceConfiguration,
        transport: RemoteTransport,
        store: LocalFileStore,
        engine: Engine,
        resolver: WhitelistResolver,
        ledger: IngestionLedger,
        remote_paths: Mapping[str, str] | None = None,
        delete_after_success: bool | None = None,
    ) -> None:
        self.settings = settings
        self.service_config = service_config
        self.transport = transport
        self.store = store
        self.engine = engine
        self.resolver = resolver
        self.ledger = ledger
        self.remote_paths = {
            category.upper(): path
            for category, path in (remote_paths or settings.remote_paths).items()
        }
        self.delete_after_success = (
            settings.delete_after_success if delete_after_success is None else delete_after_success
        )

    @classmethod
    def from_settings(
        cls,
        settings: GlobalSettings,
        transport: RemoteTransport,
        *,
        remote_paths: Mapping[str, str] | None = None,
        delete_after_success: bool | None = None,
    ) -> CdrPipeline:
        """Build a pipeline wired to the configured database, cache and local store."""

        engine = get_engine()
        service_config = get_service_configuration(settings)
        resolver = WhitelistResolver.from_settings(
            engine, service_config, build_column_cache(settings), settings
        )
        return cls(
            settings=settings,
            service_config=service_config,
            transport=transport,
            store=LocalFileStore(settings.local_root),
            engine=engine,
            resolver=resolver,
            ledger=IngestionLedger(get_session_factory(engine)),
            remote_paths=remote_paths,
            delete_after_success=delete_after_success,
        )

    def run(self) -> RunSummary:
        """Sweep every source category in order; one category's failure never blocks another."""

        summary = RunSummary()
        for category, remote_base in self.remote_paths.items():
            logger.info(
                "=== SOURCE %s (%s) ===", category, remote_base, extra={"source_dir": category}
            )
            try:
                summary.results.extend(self.process_category(category, remote_base))
            except (TransportError, ConfigurationError, SQLAlchemyError) as exc:
                logger.error(
                    "Source %s aborted: %s", category, exc, extra={"source_dir": category}
                )
                summary.failed_categories[category] = str(exc)

        logger.info(
            "Sweep finished: success=%d error=%d skipped=%d failed_categories=%d",
            summary.count(FileOutcome.SUCCESS),
            summary.count(FileOutcome.ERROR),
            summary.count(FileOutcome.SKIPPED),
            len(summary.failed_categories),
        )
        return summary

    def process_category(self, category: str, remote_base: str) -> list[FileResult]:
        """Process the candidate files of one category in listing order.

        Raises:
            TransportError: The remote area could not be listed.
            ConfigurationError: No source mapping exists for the category.
        """

        self.service_config.source(category.lower())
        remote_files = self.transport.list_files(remote_base)
        if not remote_files:
            logger.warning("No files found in %s", remote_base, extra={"source_dir": category})
            return []

        extension = self.settings.file_extension
        results = []
        for remote_path in remote_files:
            if not PurePosixPath(remote_path).name.lower().endswith(extension):
                continue
            results.append(self.process_file(category, remote_path))
        return results

    def process_file(self, category: str, remote_path: str) -> FileResult:
        """Run one remote file through the state machine and return its outcome."""

        file_name = PurePosixPath(remote_path).name
        try:
            file_size = self.transport.size(remote_path)
        except TransportError as exc:
            logger.debug("Size lookup failed for %s: %s", remote_path, exc)
            file_size = None

        log_extra = file_context(category, file_name, file_size)
        if not file_size or file_size <= 0:
            logger.warning("Skip (size unknown/0): %s", remote_path, extra=log_extra)
            return FileResult(category, file_name, file_size, FileOutcome.SKIPPED, "size unknown/0")

        identity = FileIdentity(category, file_name, file_size)
        if self.ledger.already_succeeded(identity):
            logger.info("SKIP already SUCCESS: %s", file_name, extra=log_extra)
            return FileResult(category, file_name, file_size, FileOutcome.SKIPPED, "already SUCCESS")

        self.ledger.record_seen(identity)
        started = time.perf_counter()
        try:
            result = self._execute(identity, remote_path)
        except FileProcessingError as exc:
            result = self._fail(identity, exc)
        except SQLAlchemyError:
            raise
        except Exception as exc:
            logger.exception("Unclassified failure for %s", file_name, extra=log_extra)
            result = self._fail(identity, TransformationError.from_exception(exc))
        finally:
            observe_file_duration(time.perf_counter() - started)
        return result

    def _download(self, identity: FileIdentity, remote_path: str) -> None:
        temp = tmp_path(identity.file_name)
        try:
            with self.transport.open_read_stream(remote_path) as stream:
                written = self.store.write_stream(temp, stream)
            if written != identity.file_size:
                raise DownloadError(
                    f"Size mismatch: local={written} expected={identity.file_size}"
                )
            self.store.move(temp, inbound_path(identity.source_dir, identity.file_name))
        finally:
            self.store.delete(temp)

    def _execute(self, identity: FileIdentity, remote_path: str) -> FileResult:
        category = identity.source_dir
        source_type = category.lower()
        source = self.service_config.source(source_type)
        settings = self.settings
        log_extra = file_context(category, identity.file_name, identity.file_size)

        with stage_guard(DownloadError):
            self._download(identity, remote_path)
        logger.info("Downloaded %s", remote_path, extra={**log_extra, "stage": "download"})

        inbound = self.store.absolute_path(inbound_path(category, identity.file_name))
        reader = StrictRecordReader(
            inbound, delimiter=settings.csv_delimiter, enclosure=settings.csv_enclosure
        )
        with reader:
            with stage_guard(CsvInvalidError):
                header = reader.read_header()
                validated: int | None = None
                if settings.validation_mode == "two_pass":
                    with StrictRecordReader(
                        inbound, delimiter=settings.csv_delimiter, enclosure=settings.csv_enclosure
                    ) as first_pass:
                        validated = first_pass.validate_all()

            with stage_guard(WhitelistError):
                check = self.resolver.validate(header, source_type, "staging")
                if not check.valid:
                    raise WhitelistError(check.unknown_columns)

            with stage_guard(IdentifierError):
                columns = resolve_staging_identifiers(header)

            if validated is not None:
                self.ledger.mark_status(identity, FileStatus.VALIDATED)

            loader = BulkStagingLoader(
                table=source.tmp_table,
                columns=columns,
                source_dir=category,
                file_name=identity.file_name,
                batch_size=settings.batch_size,
                progress_every=settings.progress_every_rows,
            )
            with stage_guard(LoadError):
                with self.engine.begin() as connection:
                    loader.purge(connection)
                    staged = loader.load(connection, reader.rows())
                    if staged != reader.rows_read or (validated is not None and staged != validated):
                        raise LoadError(
                            f"Row count mismatch rows_csv={validated or reader.rows_read} "
                            f"rows_db={staged}"
                        )

        # Single-pass rows are only validated once the load has read them all.
        if validated is None:
            self.ledger.mark_status(identity, FileStatus.VALIDATED)
        self.ledger.mark_status(identity, FileStatus.STAGED)

        transformer = TransformEngine(
            self.engine,
            source_type,
            source,
            timestamp_unit=settings.timestamp_unit,
            cleanup_strategy=settings.tmp_cleanup_strategy,
            batch_size=settings.batch_size,
        )
        with stage_guard(TransformationError):
            stats = transformer.transform_file(identity.file_name, category)
        self.ledger.mark_status(identity, FileStatus.TRANSFORMED)

        return self._succeed(identity, remote_path, staged, stats)

    def _succeed(
        self,
        identity: FileIdentity,
        remote_path: str,
        rows: int,
        stats: TransformStats,
    ) -> FileResult:
        category, file_name = identity.source_dir, identity.file_name
        message = stats.summary()
        with stage_guard(TransformationError):
            self.store.move(inbound_path(category, file_name), out_path(category, file_name))
        self.ledger.mark_success(identity, rows_validated=rows, rows_staged=rows, message=message)

        if self.delete_after_success:
            try:
                self.transport.delete(remote_path)
            except TransportError as exc:
                logger.warning(
                    "Remote delete failed for %s: %s",
                    remote_path,
                    exc,
                    extra=file_context(category, file_name, identity.file_size),
                )

        record_file_outcome(category, FileOutcome.SUCCESS.value)
        record_row_counts(
            category, staged=stats.staged, inserted=stats.inserted, rejected=stats.rejected
        )
        log_file_outcome(
            logger,
            category,
            file_name,
            identity.file_size,
            FileOutcome.SUCCESS.value,
            f"rows={rows} {message} -> OUT/{category}",
        )
        return FileResult(
            category,
            file_name,
            identity.file_size,
            FileOutcome.SUCCESS,
            message,
            rows_validated=rows,
            rows_staged=rows,
            transform=stats,
        )

    def _fail(self, identity: FileIdentity, exc: FileProcessingError) -> FileResult:
        category, file_name = identity.source_dir, identity.file_name
        message = exc.ledger_message()
        self.ledger.mark_error(identity, message)

        inbound = inbound_path(category, file_name)
        if self.store.exists(inbound):
            try:
                self.store.move(inbound, err_path(category, file_name))
            except OSError as move_exc:
                logger.error(
                    "Unable to move %s to ERR/%s: %s",
                    file_name,
                    category,
                    move_exc,
                    extra=file_context(category, file_name, identity.file_size),
                )

        record_file_outcome(category, FileOutcome.ERROR.value)
        record_file_error(exc.reason.value)
        details: dict[str, Any] = {"stage": exc.reason.value.lower()}
        if isinstance(exc, CsvInvalidError) and exc.line_number is not None:
            details["line_number"] = exc.line_number
        log_file_outcome(
            logger,
            category,
            file_name,
            identity.file_size,
            FileOutcome.ERROR.value,
            f"{message} => ERR/{category}",
            **details,
        )
        return FileResult(category, file_name, identity.file_size, FileOutcome.ERROR, message)
