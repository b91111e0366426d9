"""
In-memory sink for testing and dry runs.

Committed rows are kept in a list; rows written inside an open
transaction stay pending until commit. Failures can be injected on
chosen write calls to exercise rollback paths.
"""

from typing import Iterable, Optional, Sequence

from chunkrun.errors import PersistenceError
from chunkrun.schemas import Record
from chunkrun.sinks.base import RecordSink


class InMemorySink(RecordSink):
    """
    In-memory implementation of RecordSink.

    All data is lost when the instance is garbage collected.

    Args:
        fail_on_writes: 1-based write call numbers that raise PersistenceError
    """

    def __init__(self, fail_on_writes: Iterable[int] = ()):
        self.rows: list[Record] = []
        self.write_calls = 0
        self.commits = 0
        self.rollbacks = 0
        self.is_open = False
        self._fail_on_writes = set(fail_on_writes)
        self._pending: Optional[list[Record]] = None

    @property
    def in_transaction(self) -> bool:
        return self._pending is not None

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self._pending = None
        self.is_open = False

    def begin(self) -> None:
        if self._pending is not None:
            raise RuntimeError("Transaction already open")
        self._pending = []

    def commit(self) -> None:
        if self._pending is None:
            raise RuntimeError("No open transaction")
        self.rows.extend(self._pending)
        self._pending = None
        self.commits += 1

    def rollback(self) -> None:
        if self._pending is not None:
            self._pending = None
            self.rollbacks += 1

    def write(self, records: Sequence[Record]) -> int:
        if not self.is_open:
            raise RuntimeError("Sink not open")
        self.write_calls += 1

        if self.write_calls in self._fail_on_writes:
            raise PersistenceError(f"Injected failure on write {self.write_calls}")

        if self._pending is None:
            self.rows.extend(records)
        else:
            self._pending.extend(records)
        return len(records)

    def as_dicts(self) -> list[dict]:
        """Committed rows as plain dictionaries."""
        return [r.as_dict() for r in self.rows]
