"""Record transformers.

A transformer is a pure callable taking one Record and returning a new
Record, or None to filter the record out. Transformers may raise
ValidationError to reject a record; the orchestrator always skips rejected
records. Transformers must not perform I/O.
"""

from typing import Callable, Iterable, Optional, Protocol, runtime_checkable

from chunkrun.errors import ValidationError
from chunkrun.schemas import Record


@runtime_checkable
class Transformer(Protocol):
    """Protocol for per-record transforms."""

    def __call__(self, record: Record) -> Optional[Record]:
        """
        Transform one record.

        Args:
            record: The input record

        Returns:
            The output record, or None to filter it out

        Raises:
            ValidationError: If the record is rejected
        """
        ...


def identity() -> Transformer:
    """Pass records through unchanged."""
    def _identity(record: Record) -> Optional[Record]:
        return record
    return _identity


def uppercase(fields: Iterable[str]) -> Transformer:
    """
    Uppercase the named string fields.

    Raises ValidationError for records missing one of the fields or where
    a field holds a non-string value.
    """
    names = tuple(fields)
    if not names:
        raise ValueError("uppercase requires at least one field")

    def _uppercase(record: Record) -> Optional[Record]:
        changes = {}
        for name in names:
            if name not in record:
                raise ValidationError(f"Missing field '{name}'", record)
            value = record[name]
            if value is None:
                continue
            if not isinstance(value, str):
                raise ValidationError(
                    f"Field '{name}' is {type(value).__name__}, expected string", record
                )
            changes[name] = value.upper()
        return record.replace(**changes)

    return _uppercase


def filter_blank(fields: Iterable[str]) -> Transformer:
    """Filter out records where any named field is missing, None or blank."""
    names = tuple(fields)

    def _filter_blank(record: Record) -> Optional[Record]:
        for name in names:
            value = record.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return None
        return record

    return _filter_blank


def chain(*transformers: Callable[[Record], Optional[Record]]) -> Transformer:
    """Compose transformers left to right, stopping at the first None."""
    def _chain(record: Record) -> Optional[Record]:
        current: Optional[Record] = record
        for transformer in transformers:
            current = transformer(current)
            if current is None:
                return None
        return current

    return _chain
