"""
Error classes for chunkrun execution.

These error types drive skip/abort classification at the orchestrator boundary:
- RecordError: A single record is bad (unparseable line, rejected by a transformer).
  Handled inside the chunk loop; counted and skipped or escalated per skip policy.
- ChunkError: The current chunk cannot be persisted (sink failure, stalled resource).
  The chunk is rolled back; retried, skipped or escalated per skip policy.
- StepFailedError: A step ended FAILED; surfaced by the runner.
- DuplicateRunError: A run was rejected before any I/O.

Error handling contract:
- Record-level errors never escape the orchestrator
- Errors are exceptions, not values
"""

from typing import Any, Optional


class ChunkrunError(Exception):
    """Base exception for chunkrun."""
    pass


class ConfigError(ChunkrunError):
    """Configuration validation error."""
    pass


class RecordError(ChunkrunError):
    """Base class for errors scoped to a single record."""
    pass


class MalformedRecordError(RecordError):
    """
    A source line could not be parsed into a Record.

    Carries the 1-based line number and the raw line content so the
    caller can log it and decide whether to skip or abort.
    """

    def __init__(self, line_number: int, raw: str, reason: str = "malformed line"):
        self.line_number = line_number
        self.raw = raw
        self.reason = reason
        super().__init__(f"Line {line_number}: {reason}: {raw!r}")


class ValidationError(RecordError):
    """
    A transformer rejected a record.

    Validation failures are always skipped, never fatal to the step.
    """

    def __init__(self, reason: str, record: Optional[Any] = None):
        self.reason = reason
        self.record = record
        super().__init__(reason)


class ChunkError(ChunkrunError):
    """Base class for errors that abort the current chunk."""
    pass


class PersistenceError(ChunkError):
    """
    The sink failed to persist a batch.

    The sink guarantees that no part of the batch is visible
    when this is raised.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class ResourceTimeoutError(ChunkError, TimeoutError):
    """
    A source or sink resource did not respond in time.

    Also a builtin TimeoutError so callers can catch either.
    """
    pass


class SkipLimitExceededError(ChunkrunError):
    """Raised when a step skips more records than its policy allows."""

    def __init__(self, step_name: str, skip_limit: int, cause: Optional[Exception] = None):
        self.step_name = step_name
        self.skip_limit = skip_limit
        self.cause = cause
        message = f"Step '{step_name}' exceeded skip limit of {skip_limit}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class StepFailedError(ChunkrunError):
    """Raised when step execution fails."""

    def __init__(self, step_name: str, message: str, cause: Optional[Exception] = None):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"Step '{step_name}' failed: {message}")


class DuplicateRunError(ChunkrunError):
    """
    A run was rejected because an equivalent run already exists.

    Raised when the job instance (job name + identifying parameters)
    already COMPLETED, or when it is not restartable and has any
    prior execution.
    """

    def __init__(self, job_name: str, instance_key: str, message: str):
        self.job_name = job_name
        self.instance_key = instance_key
        super().__init__(message)
