"""Local durable file store holding the TMP, IN, OUT and ERR areas."""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 1024 * 1024


def tmp_path(file_name: str) -> str:
    return f"cdr/TMP/{file_name}.part"


def inbound_path(source_dir: str, file_name: str) -> str:
    return f"cdr/IN/{source_dir}/{file_name}"


def out_path(source_dir: str, file_name: str) -> str:
    return f"cdr/OUT/{source_dir}/{file_name}"


def err_path(source_dir: str, file_name: str) -> str:
    return f"cdr/ERR/{source_dir}/{file_name}"


class LocalFileStore:
    """Filesystem store addressed by logical, root-relative paths."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def absolute_path(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if not resolved.is_relative_to(self.root.resolve()):
            raise ValueError(f"Path escapes the store root: {path}")
        return resolved

    def exists(self, path: str) -> bool:
        return self.absolute_path(path).is_file()

    def write_stream(self, path: str, stream: BinaryIO) -> int:
        """Copy ``stream`` into ``path`` and return the number of bytes written."""

        target = self.absolute_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        written = 0
        with open(target, "wb") as handle:
            while chunk := stream.read(CHUNK_SIZE):
                handle.write(chunk)
                written += len(chunk)
        return written

    def move(self, source: str, destination: str) -> Path:
        target = self.absolute_path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(self.absolute_path(source), target)
        return target

    def delete(self, path: str) -> None:
        self.absolute_path(path).unlink(missing_ok=True)
