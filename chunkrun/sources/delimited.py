"""Delimited text file source.

Reads one Record per row of a delimited file (CSV by default), mapping
columns to a RecordSchema in declared order. A quoted field may span
several physical lines; the record then carries the line it starts on.
"""

import csv
import logging
from pathlib import Path
from typing import IO, Any, Iterator, Optional

from chunkrun.errors import MalformedRecordError
from chunkrun.schemas import Record, RecordSchema
from chunkrun.sources.base import RecordSource

logger = logging.getLogger(__name__)

# Undecodable bytes survive decoding as lone surrogates in this range
_ESCAPED_BYTES = range(0xDC80, 0xDD00)


class DelimitedFileSource(RecordSource):
    """
    Source backed by a delimited text file.

    Blank lines are ignored and not counted. A row whose field count
    differs from the schema (when strict), whose bytes are not valid in
    the file's encoding, or whose values fail type conversion raises
    MalformedRecordError carrying the starting line number and raw
    content. Every row, malformed or not, counts once toward
    lines_consumed, so an offset always lands on a row boundary.

    Usage:
        schema = RecordSchema.of("first_name", "last_name")
        with DelimitedFileSource("people.csv", schema) as source:
            for record in source:
                ...
    """

    def __init__(
        self,
        path: Path | str,
        schema: RecordSchema,
        delimiter: str = ",",
        skip_header: bool = False,
        encoding: str = "utf-8",
        strict: bool = True,
    ):
        if len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
        self.path = Path(path)
        self.schema = schema
        self.delimiter = delimiter
        self.skip_header = skip_header
        self.encoding = encoding
        self.strict = strict
        self._file: Optional[IO[str]] = None
        self._reader: Optional[Any] = None
        self._pending: list[str] = []
        self._line_number = 0
        self._raw = ""
        self._consumed = 0

    @property
    def lines_consumed(self) -> int:
        return self._consumed

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self, offset: int = 0) -> None:
        if self._file is not None:
            raise RuntimeError(f"Source already open: {self.path}")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        self._file = open(self.path, "r", encoding=self.encoding, errors="surrogateescape", newline="")
        self._reader = csv.reader(self._physical_lines(self._file), delimiter=self.delimiter)
        self._line_number = 0
        self._consumed = 0
        try:
            if self.skip_header:
                self._skip_row()
            while self._consumed < offset:
                if not self._skip_row():
                    break
                self._consumed += 1
        except Exception:
            self.close()
            raise

        if offset:
            logger.info(f"Resuming {self.path} after {self._consumed} lines")

    def read(self) -> Optional[Record]:
        if self._reader is None:
            raise RuntimeError(f"Source not open: {self.path}")

        try:
            values = self._next_row()
        except MalformedRecordError:
            self._consumed += 1
            raise
        if values is None:
            return None
        self._consumed += 1
        return self._parse(values)

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None
                self._reader = None

    def _physical_lines(self, lines: IO[str]) -> Iterator[str]:
        """Yield lines to the csv reader, remembering those of the current row."""
        for line in lines:
            self._pending.append(line)
            yield line

    def _skip_row(self) -> bool:
        """Consume one row without parsing it. Returns False at EOF."""
        try:
            return self._next_row() is not None
        except MalformedRecordError:
            return True

    def _next_row(self) -> Optional[list[str]]:
        """Return the fields of the next non-blank row, or None at EOF."""
        assert self._reader is not None
        while True:
            self._pending.clear()
            try:
                values = next(self._reader)
            except StopIteration:
                return None
            except csv.Error as e:
                self._mark_row()
                raise MalformedRecordError(self._line_number, self._raw, str(e)) from e
            self._mark_row()

            if not values or (len(values) == 1 and not values[0].strip()):
                continue
            if any(ord(ch) in _ESCAPED_BYTES for ch in self._raw):
                raw_bytes = self._raw.encode(self.encoding, "surrogateescape")
                raise MalformedRecordError(
                    self._line_number,
                    raw_bytes.decode(self.encoding, "backslashreplace"),
                    f"invalid {self.encoding}",
                )
            return values

    def _mark_row(self) -> None:
        assert self._reader is not None
        last_line = self._reader.line_num
        self._line_number = last_line - len(self._pending) + 1 if self._pending else last_line
        self._raw = "".join(self._pending).rstrip("\r\n")

    def _parse(self, values: list[str]) -> Record:
        raw = self._raw
        expected = len(self.schema)
        if len(values) != expected:
            if self.strict or len(values) < expected:
                raise MalformedRecordError(
                    self._line_number,
                    raw,
                    f"expected {expected} fields, got {len(values)}",
                )
            values = values[:expected]

        parsed = []
        for spec, value in zip(self.schema.fields, values):
            try:
                parsed.append(spec.parse(value))
            except ValueError as e:
                raise MalformedRecordError(
                    self._line_number, raw, f"field '{spec.name}': {e}"
                ) from e

        return Record(names=self.schema.names, values=tuple(parsed), line_number=self._line_number)

    def __repr__(self) -> str:
        return f"DelimitedFileSource(path={self.path}, fields={list(self.schema.names)})"
