"""Repository helpers for the LOAD_AUDIT idempotency ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .base import session_scope
from .load_audit import MAX_MESSAGE_LENGTH, FileStatus, LoadAudit


@dataclass(frozen=True, slots=True)
class FileIdentity:
    """Identity triple of a remote file; a SUCCESS record for it is permanent."""

    source_dir: str
    file_name: str
    file_size: int

    def __str__(self) -> str:
        return f"{self.source_dir}/{self.file_name} ({self.file_size} bytes)"


def truncate_message(message: str | None, limit: int = MAX_MESSAGE_LENGTH) -> str | None:
    """Clip ledger diagnostics to the storage limit of the MESSAGE column."""

    if message is None:
        return None
    return message[:limit]


class LoadAuditRepository:
    """Data access helpers for :class:`LoadAudit`."""

    def __init__(self, session: Session):
        """Store the SQLAlchemy session used for persistence operations."""

        self._session = session

    def get(self, identity: FileIdentity) -> LoadAudit | None:
        statement = select(LoadAudit).where(
            LoadAudit.source_dir == identity.source_dir,
            LoadAudit.file_name == identity.file_name,
            LoadAudit.file_size == identity.file_size,
        )
        return self._session.scalars(statement).one_or_none()

    def upsert(self, identity: FileIdentity, **fields: Any) -> LoadAudit:
        """Update the record for ``identity`` or create it when absent."""

        fields.setdefault("load_ts", datetime.now(timezone.utc))
        record = self.get(identity)
        if record is None:
            record = LoadAudit(
                source_dir=identity.source_dir,
                file_name=identity.file_name,
                file_size=identity.file_size,
                **fields,
            )
            self._session.add(record)
        else:
            for key, value in fields.items():
                setattr(record, key, value)
        self._session.flush()
        return record


class IngestionLedger:
    """Durable per-file audit trail; records are updated, never deleted."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _write(self, identity: FileIdentity, **fields: Any) -> None:
        try:
            with session_scope(self._session_factory) as session:
                LoadAuditRepository(session).upsert(identity, **fields)
        except IntegrityError:
            # A concurrent run inserted the same identity first; apply as an update.
            with session_scope(self._session_factory) as session:
                LoadAuditRepository(session).upsert(identity, **fields)

    def get(self, identity: FileIdentity) -> LoadAudit | None:
        with session_scope(self._session_factory) as session:
            return LoadAuditRepository(session).get(identity)

    def already_succeeded(self, identity: FileIdentity) -> bool:
        record = self.get(identity)
        return record is not None and record.status == FileStatus.SUCCESS.value

    def record_seen(self, identity: FileIdentity) -> None:
        """Make the attempt durable as DOWNLOADED, clearing any earlier diagnostic."""

        self._write(identity, status=FileStatus.DOWNLOADED.value, message=None)

    def mark_status(self, identity: FileIdentity, status: FileStatus) -> None:
        if status.is_terminal:
            raise ValueError(f"Use mark_success/mark_error for terminal status {status.value}")
        self._write(identity, status=status.value)

    def mark_success(
        self,
        identity: FileIdentity,
        rows_validated: int,
        rows_staged: int,
        message: str | None = None,
    ) -> None:
        self._write(
            identity,
            status=FileStatus.SUCCESS.value,
            rows_csv=rows_validated,
            rows_db=rows_staged,
            message=truncate_message(message),
        )

    def mark_error(self, identity: FileIdentity, message: str) -> None:
        self._write(identity, status=FileStatus.ERROR.value, message=truncate_message(message))
