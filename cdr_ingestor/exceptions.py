"""Custom exceptions for CDR_Ingestor."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum


class ErrorReason(str, Enum):
    """File-scoped failure kinds recorded on the ledger."""

    DOWNLOAD_ERROR = "DOWNLOAD_ERROR"
    CSV_INVALID = "CSV_INVALID"
    WHITELIST_ERROR = "WHITELIST_ERROR"
    DDL_ERROR = "DDL_ERROR"
    LOAD_ERROR = "LOAD_ERROR"
    TRANSFORM_ERROR = "TRANSFORM_ERROR"


class CdrIngestorError(Exception):
    """Base exception for all CDR_Ingestor errors."""

    pass


class ConfigurationError(CdrIngestorError):
    """Raised when configuration is invalid or missing."""

    pass


class TransportError(CdrIngestorError):
    """Raised when the remote file area cannot be reached or listed."""

    pass


class FileProcessingError(CdrIngestorError):
    """Base class for failures that terminate processing of a single file."""

    reason: ErrorReason = ErrorReason.LOAD_ERROR

    @classmethod
    def from_exception(cls, exc: Exception) -> "FileProcessingError":
        """Classify an unexpected failure as this error kind."""

        return cls(str(exc) or exc.__class__.__name__)

    def ledger_message(self) -> str:
        """Return the diagnostic text stored on the audit ledger."""

        return f"{self.reason.value}: {self}"


class DownloadError(FileProcessingError):
    """Raised when a remote file cannot be transferred or fails size verification."""

    reason = ErrorReason.DOWNLOAD_ERROR


class CsvInvalidError(FileProcessingError):
    """Raised when a file violates the strict record contract."""

    reason = ErrorReason.CSV_INVALID

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class WhitelistError(FileProcessingError):
    """Raised when a header carries columns the staging target does not accept."""

    reason = ErrorReason.WHITELIST_ERROR

    def __init__(self, unknown_columns: Sequence[str], *, detail: str | None = None) -> None:
        super().__init__(detail or f"Unknown columns: {', '.join(unknown_columns)}")
        self.unknown_columns = list(unknown_columns)

    @classmethod
    def from_exception(cls, exc: Exception) -> "WhitelistError":
        return cls([], detail=str(exc) or exc.__class__.__name__)


class IdentifierError(FileProcessingError):
    """Raised when header cells cannot be resolved to staging identifiers."""

    reason = ErrorReason.DDL_ERROR


class LoadError(FileProcessingError):
    """Raised when staging inserts fail; the file's load transaction is rolled back."""

    reason = ErrorReason.LOAD_ERROR


class TransformationError(FileProcessingError):
    """Raised when the staging-to-detail transform fails."""

    reason = ErrorReason.TRANSFORM_ERROR
