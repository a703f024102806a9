"""SQLAlchemy model for the per-file ingestion audit ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import BigInteger, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

MAX_MESSAGE_LENGTH = 4000


class FileStatus(str, Enum):
    """Lifecycle states of one (source, file name, size) identity."""

    SEEN = "SEEN"
    DOWNLOADED = "DOWNLOADED"
    VALIDATED = "VALIDATED"
    STAGED = "STAGED"
    TRANSFORMED = "TRANSFORMED"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (FileStatus.SUCCESS, FileStatus.ERROR)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoadAudit(Base):
    """Database representation of one file's ingestion lifecycle."""

    __tablename__ = "LOAD_AUDIT"
    __table_args__ = (
        UniqueConstraint("SOURCE_DIR", "FILE_NAME", "FILE_SIZE", name="UQ_LOAD_AUDIT_FILE"),
    )

    id: Mapped[int] = mapped_column("ID", Integer, primary_key=True, autoincrement=True)
    source_dir: Mapped[str] = mapped_column("SOURCE_DIR", String(32), nullable=False)
    file_name: Mapped[str] = mapped_column("FILE_NAME", String(255), nullable=False)
    file_size: Mapped[int] = mapped_column("FILE_SIZE", BigInteger, nullable=False)
    status: Mapped[str] = mapped_column("STATUS", String(32), nullable=False, index=True)
    rows_csv: Mapped[int | None] = mapped_column("ROWS_CSV", Integer, nullable=True)
    rows_db: Mapped[int | None] = mapped_column("ROWS_DB", Integer, nullable=True)
    message: Mapped[str | None] = mapped_column("MESSAGE", String(MAX_MESSAGE_LENGTH), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        "CREATED_AT", DateTime(timezone=True), default=_utcnow, nullable=False
    )
    load_ts: Mapped[datetime] = mapped_column(
        "LOAD_TS", DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<LoadAudit id={self.id} source={self.source_dir} file={self.file_name} "
            f"size={self.file_size} status={self.status}>"
        )
