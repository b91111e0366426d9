"""Base interface for record sinks.

A RecordSink persists bounded batches of Records. The orchestrator owns
transaction demarcation: it calls begin/commit/rollback through the
transaction() context manager, one transaction per chunk.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Sequence

from chunkrun.schemas import Record


class RecordSink(ABC):
    """
    Abstract base class for record sinks.

    Implementations must provide methods to:
    - Acquire and release the underlying store
    - Begin, commit and roll back a transaction
    - Write a batch atomically (all records or none)
    """

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying store."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying store. Safe to call more than once."""
        pass

    @abstractmethod
    def begin(self) -> None:
        """Begin a transaction."""
        pass

    @abstractmethod
    def commit(self) -> None:
        """
        Commit the open transaction.

        Raises:
            PersistenceError: If the commit fails. Nothing from the
                transaction is visible afterwards.
        """
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard everything written in the open transaction."""
        pass

    @abstractmethod
    def write(self, records: Sequence[Record]) -> int:
        """
        Persist a batch as one atomic unit.

        Args:
            records: The batch to persist

        Returns:
            Number of records written

        Raises:
            PersistenceError: If any record fails; no part of the batch
                remains visible
            ResourceTimeoutError: If the store does not respond in time
        """
        pass

    @contextmanager
    def transaction(self) -> Iterator["RecordSink"]:
        """
        Scope one transaction: commit on normal exit, roll back on error.

        The exception that caused the rollback is re-raised.
        """
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        try:
            self.commit()
        except BaseException:
            self.rollback()
            raise

    def __enter__(self) -> "RecordSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
