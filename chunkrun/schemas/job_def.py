"""
JobDef schema - the wired job definition.

A JobDef is an ordered collection of StepDefs, each binding a source,
a transformer and a sink under a chunk size and skip policy. JobDefs are
built by explicit factory functions (see chunkrun.builders), not by
annotation scanning.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from chunkrun.errors import ConfigError

if TYPE_CHECKING:
    from chunkrun.sinks.base import RecordSink
    from chunkrun.sources.base import RecordSource
    from chunkrun.transforms import Transformer


RUN_ID_KEY = "run.id"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class SkipPolicy:
    """
    Skip, retry and abort rules for a step.

    skip_malformed: Skip unparseable source lines instead of failing the step.
        Default false (abort on malformed input).
    skip_write_failures: After retries are exhausted, count a failed chunk's
        records as skipped and continue instead of failing the step.
    skip_limit: Maximum skips (excluding filtered records) before the step
        fails. None means unlimited.
    retry_limit: Extra attempts to write a chunk after a PersistenceError or
        ResourceTimeoutError. Each attempt uses a fresh transaction.
    retry_backoff_s: Backoff between retry attempts, doubled each time.

    Validation failures raised by transformers are always skipped.
    """
    skip_malformed: bool = False
    skip_write_failures: bool = False
    skip_limit: Optional[int] = None
    retry_limit: int = 0
    retry_backoff_s: float = 0.0

    def __post_init__(self):
        for flag in ("skip_malformed", "skip_write_failures"):
            if not isinstance(getattr(self, flag), bool):
                raise ConfigError(f"{flag} must be true or false, got {getattr(self, flag)!r}")
        if self.skip_limit is not None and not _is_int(self.skip_limit):
            raise ConfigError(f"skip_limit must be an integer, got {self.skip_limit!r}")
        if not _is_int(self.retry_limit):
            raise ConfigError(f"retry_limit must be an integer, got {self.retry_limit!r}")
        if not _is_number(self.retry_backoff_s):
            raise ConfigError(f"retry_backoff_s must be a number, got {self.retry_backoff_s!r}")

        if self.skip_limit is not None and self.skip_limit < 0:
            raise ConfigError("skip_limit must be >= 0")
        if self.retry_limit < 0:
            raise ConfigError("retry_limit must be >= 0")
        if self.retry_backoff_s < 0:
            raise ConfigError("retry_backoff_s must be >= 0")

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "SkipPolicy":
        data = data or {}
        return cls(
            skip_malformed=data.get("skip_malformed", False),
            skip_write_failures=data.get("skip_write_failures", False),
            skip_limit=data.get("skip_limit"),
            retry_limit=data.get("retry_limit", 0),
            retry_backoff_s=data.get("retry_backoff_s", 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "skip_malformed": self.skip_malformed,
            "skip_write_failures": self.skip_write_failures,
            "retry_limit": self.retry_limit,
        }
        if self.skip_limit is not None:
            result["skip_limit"] = self.skip_limit
        if self.retry_backoff_s:
            result["retry_backoff_s"] = self.retry_backoff_s
        return result


@dataclass(frozen=True)
class StepDef:
    """
    A step definition within a JobDef.

    Attributes:
        name: Unique name for the step within the job
        source: Where records are read from
        transformer: Per-record transform; returns None to filter a record out
        sink: Where chunks are persisted
        chunk_size: Records per transaction
        skip_policy: Skip/retry/abort rules
        chunk_timeout_s: Optional deadline for reading and writing one chunk
    """
    name: str
    source: "RecordSource"
    transformer: "Transformer"
    sink: "RecordSink"
    chunk_size: int = 10
    skip_policy: SkipPolicy = field(default_factory=SkipPolicy)
    chunk_timeout_s: Optional[float] = None

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Step name is required")
        if not _is_int(self.chunk_size) or self.chunk_size < 1:
            raise ConfigError(f"Step '{self.name}': chunk_size must be an integer >= 1")
        if self.chunk_timeout_s is not None and (
            not _is_number(self.chunk_timeout_s) or self.chunk_timeout_s <= 0
        ):
            raise ConfigError(f"Step '{self.name}': chunk_timeout_s must be a number > 0")


class RunIdIncrementer:
    """
    Makes every launch a fresh job instance.

    Sets the run.id parameter to one more than the run.id of the job's
    most recent execution.
    """

    key = RUN_ID_KEY

    def next_parameters(
        self,
        parameters: dict[str, Any],
        previous: Optional[dict[str, Any]],
    ) -> dict[str, Any]:
        last_id = 0
        if previous:
            last_id = int(previous.get(self.key, 0))
        return {**parameters, self.key: last_id + 1}


@dataclass(frozen=True)
class JobDef:
    """
    A job definition - an ordered collection of steps.

    Attributes:
        name: Job name, part of the job instance identity
        steps: Ordered step definitions, run sequentially
        incrementer: If set, each launch gets a fresh run.id
        restartable: If false, any prior execution of the same instance
            rejects a new run
    """
    name: str
    steps: tuple[StepDef, ...] = field(default_factory=tuple)
    incrementer: Optional[RunIdIncrementer] = None
    restartable: bool = True

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Job name is required")
        if not self.steps:
            raise ConfigError(f"Job '{self.name}' has no steps")
        names = [s.name for s in self.steps]
        if len(names) != len(set(names)):
            duplicates = {n for n in names if names.count(n) > 1}
            raise ConfigError(f"Job '{self.name}': duplicate step names: {duplicates}")

    def get_step(self, name: str) -> Optional[StepDef]:
        """Get a step by name."""
        for step in self.steps:
            if step.name == name:
                return step
        return None

