"""Record sinks for chunkrun steps."""

from .base import RecordSink
from .memory import InMemorySink
from .sqlite import SqliteSink

__all__ = ["RecordSink", "InMemorySink", "SqliteSink"]
