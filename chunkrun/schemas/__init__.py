"""
chunkrun.schemas - Schema definitions for the batch engine.

This module defines the core data structures for chunkrun:

Record -> JobDef/StepDef -> JobExecution -> StepState

Lifecycle:
1. Record: Immutable row parsed by a source, replaced by a transformer, written by a sink
2. JobDef: Wired job definition (steps bound to sources, transformers, sinks)
3. JobExecution: Runtime record created when a job is launched
4. StepState: Counts and status of one step within an execution
"""

from .record import (
    FieldSpec,
    Record,
    RecordSchema,
)
from .job_def import (
    JobDef,
    StepDef,
    SkipPolicy,
    RunIdIncrementer,
    RUN_ID_KEY,
)
from .execution import (
    BatchStatus,
    JobExecution,
    StepState,
    ULID,
)

__all__ = [
    # Record
    "FieldSpec",
    "Record",
    "RecordSchema",
    # Job Definition
    "JobDef",
    "StepDef",
    "SkipPolicy",
    "RunIdIncrementer",
    "RUN_ID_KEY",
    # Execution
    "BatchStatus",
    "JobExecution",
    "StepState",
    "ULID",
]
