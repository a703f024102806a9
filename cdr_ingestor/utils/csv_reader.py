"""Strict line-oriented CSV reading for CDR files."""

from __future__ import annotations

import csv
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from typing import BinaryIO

from ..exceptions import CsvInvalidError
from .logging import setup_logger

logger = setup_logger(__name__, context={"stage": "validate"})


class StrictRecordReader:
    """Stream a delimited file enforcing the one-line-per-record contract.

    Newline is the only record delimiter, every data line must hold an even
    number of enclosure characters and exactly as many fields as the header.
    Blank lines are skipped. The first violation raises :class:`CsvInvalidError`
    and nothing after it is yielded.
    """

    def __init__(
        self,
        file_path: str | Path,
        *,
        delimiter: str = ",",
        enclosure: str = '"',
        encoding: str = "utf-8",
    ) -> None:
        self.file_path = Path(file_path)
        self.delimiter = delimiter
        self.enclosure = enclosure
        self.encoding = encoding
        self.header: list[str] | None = None
        self.rows_read = 0
        self._handle: BinaryIO | None = None
        self._line_number = 0

    def __enter__(self) -> StrictRecordReader:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def open(self) -> None:
        """Open the underlying file in binary mode so only ``\\n`` splits records."""

        try:
            self._handle = open(self.file_path, "rb")
        except OSError as exc:
            raise CsvInvalidError(f"Cannot open file: {exc}") from exc
        self.header = None
        self.rows_read = 0
        self._line_number = 0

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def _next_line(self) -> str | None:
        if self._handle is None:
            raise RuntimeError("StrictRecordReader used before open()")
        try:
            raw = self._handle.readline()
        except OSError as exc:
            raise CsvInvalidError(f"Failed to read file: {exc}") from exc
        if not raw:
            return None
        self._line_number += 1
        encoding = "utf-8-sig" if self._line_number == 1 and self.encoding == "utf-8" else self.encoding
        try:
            text = raw.decode(encoding)
        except UnicodeDecodeError as exc:
            raise CsvInvalidError(
                f"Undecodable content at line {self._line_number}: {exc.reason}",
                line_number=self._line_number,
            ) from exc
        return text.rstrip("\r\n")

    def _split(self, line: str) -> list[str]:
        try:
            return next(csv.reader([line], delimiter=self.delimiter, quotechar=self.enclosure))
        except csv.Error as exc:
            raise CsvInvalidError(
                f"Malformed record at line {self._line_number}: {exc}",
                line_number=self._line_number,
            ) from exc

    def read_header(self) -> list[str]:
        """Read and return the header cells from the first line."""

        line = self._next_line()
        if line is None:
            raise CsvInvalidError("Empty file", line_number=1)
        if not line.strip():
            raise CsvInvalidError("Invalid header", line_number=1)
        if line.count(self.enclosure) % 2 != 0:
            raise CsvInvalidError("Broken header line (unbalanced quotes)", line_number=1)

        self.header = [cell.strip() for cell in self._split(line)]
        return self.header

    def rows(self) -> Iterator[list[str]]:
        """Yield validated data rows, counting each in :attr:`rows_read`."""

        if self.header is None:
            self.read_header()
        assert self.header is not None
        expected = len(self.header)

        while (line := self._next_line()) is not None:
            if line == "":
                continue

            if line.count(self.enclosure) % 2 != 0:
                raise CsvInvalidError(
                    f"Broken line (unbalanced quotes) at line {self._line_number}",
                    line_number=self._line_number,
                )

            fields = self._split(line)
            if len(fields) != expected:
                raise CsvInvalidError(
                    f"Wrong column count at line {self._line_number} "
                    f"got={len(fields)} expected={expected}",
                    line_number=self._line_number,
                )

            self.rows_read += 1
            yield fields

    def validate_all(self) -> int:
        """Consume the whole file and return the number of valid data rows."""

        for _ in self.rows():
            pass
        logger.debug(
            "Validated %d rows from %s", self.rows_read, self.file_path.name,
            extra={"file_name": self.file_path.name},
        )
        return self.rows_read


def validate_csv_file(
    file_path: str | Path,
    *,
    delimiter: str = ",",
    enclosure: str = '"',
) -> tuple[list[str], int]:
    """Validate a whole file and return ``(header, data_row_count)``."""

    with StrictRecordReader(file_path, delimiter=delimiter, enclosure=enclosure) as reader:
        header = reader.read_header()
        count = reader.validate_all()
    return header, count
