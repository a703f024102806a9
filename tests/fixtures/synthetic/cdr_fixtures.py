"""Synthetic CDR files and an in-memory remote area for pipeline testing."""

from __future__ import annotations

import io
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import BinaryIO

from cdr_ingestor.exceptions import TransportError

OCC_HEADER = [
    "DATASOURCE",
    "A_MSISDN",
    "ORIG_START_TIME",
    "APN",
    "CALL_TYPE",
    "EVENT_TYPE",
    "CHARGING_ID",
    "SERVICE_ID",
    "SUBSCRIBER_TYPE",
    "ROAMING_TYPE",
    "PARTNER",
    "FILTER_CODE",
    "FLEX_FLD1",
    "FLEX_FLD2",
    "FLEX_FLD3",
]

MMG_STAGING_COLUMNS = ["SESSION_ID", "MSISDN", "VOLUME"]

# 2021-01-01 01:00:00 UTC
START_EPOCH = "1609462800"


def occ_values(charging_id: str, **overrides: str) -> dict[str, str]:
    """Return the values of a well-formed OCC record keyed by ``charging_id``."""

    values = {
        "DATASOURCE": "OCC01",
        "A_MSISDN": "216 20 123 456",
        "ORIG_START_TIME": START_EPOCH,
        "APN": "internet",
        "CALL_TYPE": "data",
        "EVENT_TYPE": "gprs",
        "CHARGING_ID": charging_id,
        "SERVICE_ID": "SVC1",
        "SUBSCRIBER_TYPE": "PREPAID",
        "ROAMING_TYPE": "HOME",
        "PARTNER": "NONE",
        "FILTER_CODE": "F1",
        "FLEX_FLD1": "a",
        "FLEX_FLD2": "b",
        "FLEX_FLD3": "c",
    }
    values.update(overrides)
    return values


def occ_row(charging_id: str, **overrides: str) -> list[str]:
    values = occ_values(charging_id, **overrides)
    return [values[column] for column in OCC_HEADER]


def csv_bytes(header: list[str], rows: list[list[str]], *, newline: str = "\n") -> bytes:
    lines = [",".join(header), *(",".join(row) for row in rows)]
    return (newline.join(lines) + newline).encode("utf-8")


def occ_file(*charging_ids: str) -> bytes:
    return csv_bytes(OCC_HEADER, [occ_row(charging_id) for charging_id in charging_ids])


class FakeTransport:
    """In-memory remote area keyed by full remote path."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files: dict[str, bytes] = dict(files or {})
        self.reported_sizes: dict[str, int] = {}
        self.unreachable: set[str] = set()
        self.fail_delete = False
        self.downloads: list[str] = []
        self.deleted: list[str] = []

    def add(self, path: str, content: bytes) -> None:
        self.files[path] = content

    def list_files(self, path: str) -> list[str]:
        if path in self.unreachable:
            raise TransportError(f"Cannot list {path}: connection refused")
        prefix = path.rstrip("/") + "/"
        return sorted(name for name in self.files if name.startswith(prefix))

    def size(self, path: str) -> int | None:
        if path in self.reported_sizes:
            return self.reported_sizes[path]
        content = self.files.get(path)
        return len(content) if content is not None else None

    def last_modified(self, path: str) -> datetime | None:
        return None

    @contextmanager
    def open_read_stream(self, path: str) -> Iterator[BinaryIO]:
        self.downloads.append(path)
        if path not in self.files:
            raise TransportError(f"Cannot open remote stream {path}")
        yield io.BytesIO(self.files[path])

    def delete(self, path: str) -> None:
        if self.fail_delete:
            raise TransportError(f"Cannot delete remote {path}: permission denied")
        self.deleted.append(path)
        self.files.pop(path, None)
