"""Record sources for chunkrun steps."""

from .base import RecordSource
from .delimited import DelimitedFileSource

__all__ = ["RecordSource", "DelimitedFileSource"]
