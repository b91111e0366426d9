"""Base interface for record sources.

A RecordSource produces a lazy, finite sequence of Records from an
underlying resource. Sources are opened once per step execution and
closed on every exit path by the orchestrator.
"""

from abc import ABC, abstractmethod
from typing import Iterator, Optional

from chunkrun.schemas import Record


class RecordSource(ABC):
    """
    Abstract base class for record sources.

    Implementations must provide methods to:
    - Acquire the resource, optionally resuming after `offset` items
    - Read the next Record (None at end of sequence)
    - Release the resource
    """

    @abstractmethod
    def open(self, offset: int = 0) -> None:
        """
        Acquire the underlying resource.

        Args:
            offset: Number of leading items to skip (restart position)
        """
        pass

    @abstractmethod
    def read(self) -> Optional[Record]:
        """
        Read the next record.

        Returns:
            The next Record, or None when the sequence is exhausted

        Raises:
            MalformedRecordError: If the next item cannot be parsed. The
                item counts as consumed and the source stays readable.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying resource. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def lines_consumed(self) -> int:
        """Items consumed so far, including the restart offset and malformed items."""
        pass

    def __enter__(self) -> "RecordSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[Record]:
        while True:
            record = self.read()
            if record is None:
                return
            yield record
