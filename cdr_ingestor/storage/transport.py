"""Remote file area clients: FTP for production, a local directory for manual runs."""

from __future__ import annotations

import ftplib
import logging
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..exceptions import TransportError
from ..utils.config import FtpSettings
from ..utils.logging import setup_logger

logger = setup_logger(__name__, context={"stage": "transport"})

_FTP_ERRORS = (OSError, EOFError, ftplib.Error)


class RemoteTransport(Protocol):
    """Operations the pipeline needs from the remote file area."""

    def list_files(self, path: str) -> list[str]: ...

    def size(self, path: str) -> int | None: ...

    def last_modified(self, path: str) -> datetime | None: ...

    def open_read_stream(self, path: str) -> AbstractContextManager[BinaryIO]: ...

    def delete(self, path: str) -> None: ...


class FtpTransport:
    """Remote transport over FTP with a lazily opened, retried control connection."""

    def __init__(
        self,
        settings: FtpSettings,
        *,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
    ) -> None:
        if not settings.host:
            raise TransportError("FTP host is not configured (set CDR_FTP__HOST)")
        self.settings = settings
        self._ftp_factory = ftp_factory
        self._ftp: ftplib.FTP | None = None

    def __enter__(self) -> FtpTransport:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _open(self) -> ftplib.FTP:
        ftp = self._ftp_factory()
        ftp.connect(self.settings.host, self.settings.port, timeout=self.settings.timeout)
        ftp.login(self.settings.user, self.settings.password)
        ftp.set_pasv(self.settings.passive)
        ftp.voidcmd("TYPE I")
        return ftp

    def connect(self) -> ftplib.FTP:
        """Return the control connection, opening it with retries when needed."""

        if self._ftp is not None:
            return self._ftp

        retry = self.settings.retry
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(retry.max_attempts),
                wait=wait_exponential(multiplier=retry.backoff_factor, max=retry.max_backoff),
                retry=retry_if_exception_type(_FTP_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    self._ftp = self._open()
        except _FTP_ERRORS as exc:
            raise TransportError(
                f"Unable to connect to FTP {self.settings.host}:{self.settings.port}: {exc}"
            ) from exc

        logger.info("Connected to FTP %s:%s", self.settings.host, self.settings.port)
        assert self._ftp is not None
        return self._ftp

    def close(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except _FTP_ERRORS:
            self._ftp.close()
        finally:
            self._ftp = None

    def list_files(self, path: str) -> list[str]:
        ftp = self.connect()
        try:
            names = ftp.nlst(path)
        except ftplib.error_perm as exc:
            # Most servers answer an empty directory with "550 No files found".
            if str(exc).startswith("550"):
                return []
            raise TransportError(f"Cannot list {path}: {exc}") from exc
        except _FTP_ERRORS as exc:
            raise TransportError(f"Cannot list {path}: {exc}") from exc

        base = PurePosixPath(path)
        files = []
        for name in names:
            candidate = PurePosixPath(name)
            files.append(str(candidate if candidate.is_absolute() else base / candidate.name))
        return files

    def size(self, path: str) -> int | None:
        try:
            return self.connect().size(path)
        except _FTP_ERRORS as exc:
            logger.debug("SIZE failed for %s: %s", path, exc)
            return None

    def last_modified(self, path: str) -> datetime | None:
        try:
            response = self.connect().voidcmd(f"MDTM {path}")
        except _FTP_ERRORS as exc:
            logger.debug("MDTM failed for %s: %s", path, exc)
            return None
        stamp = response.split()[-1]
        try:
            return datetime.strptime(stamp[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    @contextmanager
    def open_read_stream(self, path: str) -> Iterator[BinaryIO]:
        ftp = self.connect()
        try:
            conn = ftp.transfercmd(f"RETR {path}")
        except _FTP_ERRORS as exc:
            raise TransportError(f"Cannot open remote stream {path}: {exc}") from exc
        stream = conn.makefile("rb")
        try:
            yield stream
        finally:
            stream.close()
            conn.close()
            try:
                ftp.voidresp()
            except _FTP_ERRORS as exc:
                raise TransportError(f"Transfer of {path} did not complete: {exc}") from exc

    def delete(self, path: str) -> None:
        try:
            self.connect().delete(path)
        except _FTP_ERRORS as exc:
            raise TransportError(f"Cannot delete remote {path}: {exc}") from exc


class LocalDirectoryTransport:
    """Treat local folders as the remote file area (used for manual uploads)."""

    def list_files(self, path: str) -> list[str]:
        directory = Path(path).expanduser()
        if not directory.is_dir():
            raise TransportError(f"Directory does not exist: {directory}")
        return sorted(str(entry) for entry in directory.iterdir() if entry.is_file())

    def size(self, path: str) -> int | None:
        try:
            return Path(path).stat().st_size
        except OSError:
            return None

    def last_modified(self, path: str) -> datetime | None:
        try:
            return datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc)
        except OSError:
            return None

    @contextmanager
    def open_read_stream(self, path: str) -> Iterator[BinaryIO]:
        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise TransportError(f"Cannot open {path}: {exc}") from exc
        with handle:
            yield handle

    def delete(self, path: str) -> None:
        try:
            Path(path).unlink()
        except OSError as exc:
            raise TransportError(f"Cannot delete {path}: {exc}") from exc
