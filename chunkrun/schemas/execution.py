"""
Execution schemas - tracking job executions and step progress.

JobExecution tracks one invocation of a job.
StepState tracks the progress and counts of a single step within it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# ULID type alias for documentation
ULID = str


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class BatchStatus(str, Enum):
    """Status of a step or job execution."""
    STARTING = "starting"
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED, BatchStatus.CANCELLED)


@dataclass
class StepState:
    """
    Progress of a single step.

    Created when a step begins, mutated as chunks commit, finalized at step end.

    Attributes:
        name: Step name (unique within a job)
        status: starting, started, completed, failed, cancelled
        read_count: Source lines consumed, including malformed ones
        write_count: Records committed to the sink
        skip_count: Records read but not written (skipped or filtered)
        filter_count: Portion of skip_count filtered out by the transformer
        reject_count: Portion of skip_count rejected with ValidationError
        commit_count: Chunk transactions committed
        rollback_count: Chunk transactions rolled back
        commit_offset: Source lines consumed through the last committed chunk
        started_at: When the step started
        completed_at: When the step reached a terminal status
        error: Error details if status is failed
    """
    name: str
    status: BatchStatus = BatchStatus.STARTING
    read_count: int = 0
    write_count: int = 0
    skip_count: int = 0
    filter_count: int = 0
    reject_count: int = 0
    commit_count: int = 0
    rollback_count: int = 0
    commit_offset: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None

    @classmethod
    def resume_from(cls, previous: "StepState") -> "StepState":
        """Start a new state carrying over the committed progress of a prior one."""
        return cls(
            name=previous.name,
            read_count=previous.read_count,
            write_count=previous.write_count,
            skip_count=previous.skip_count,
            filter_count=previous.filter_count,
            reject_count=previous.reject_count,
            commit_count=previous.commit_count,
            commit_offset=previous.commit_offset,
        )

    @property
    def policy_skip_count(self) -> int:
        """Skips that count against a skip limit (malformed lines, failed chunks)."""
        return self.skip_count - self.filter_count - self.reject_count

    def mark_started(self) -> None:
        self.status = BatchStatus.STARTED
        if self.started_at is None:
            self.started_at = _utcnow()

    def finish(self, status: BatchStatus, error: Optional[Exception] = None) -> None:
        """Move the step to a terminal status."""
        self.status = status
        self.completed_at = _utcnow()
        if error is not None:
            self.error = {"type": type(error).__name__, "message": str(error)}

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate step duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "read_count": self.read_count,
            "write_count": self.write_count,
            "skip_count": self.skip_count,
            "filter_count": self.filter_count,
            "reject_count": self.reject_count,
            "commit_count": self.commit_count,
            "rollback_count": self.rollback_count,
            "commit_offset": self.commit_offset,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepState":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            status=BatchStatus(data.get("status", "starting")),
            read_count=data.get("read_count", 0),
            write_count=data.get("write_count", 0),
            skip_count=data.get("skip_count", 0),
            filter_count=data.get("filter_count", 0),
            reject_count=data.get("reject_count", 0),
            commit_count=data.get("commit_count", 0),
            rollback_count=data.get("rollback_count", 0),
            commit_offset=data.get("commit_offset", 0),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
        )


@dataclass
class JobExecution:
    """
    A record of one job invocation.

    Created by the JobRunner at launch. The execution_id is a ULID providing
    both uniqueness and time-ordering. The instance_key identifies the job
    instance (job name + identifying parameters) and is shared by restarts.

    Attributes:
        execution_id: ULID uniquely identifying this invocation
        job_name: The job being run
        instance_key: Hash of job name and identifying parameters
        parameters: Run parameters passed at launch
        status: Overall status
        steps: Step states in execution order
        started_at: When the execution started
        completed_at: When the execution finished (None if still running)
        restart_of: execution_id of the prior execution this one restarts
        errors: Error messages if any
    """
    execution_id: ULID
    job_name: str
    instance_key: str
    parameters: dict[str, Any] = field(default_factory=dict)
    status: BatchStatus = BatchStatus.STARTING
    steps: list[StepState] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    restart_of: Optional[ULID] = None
    errors: list[str] = field(default_factory=list)

    def get_step(self, name: str) -> Optional[StepState]:
        """Get the state for a specific step."""
        for state in self.steps:
            if state.name == name:
                return state
        return None

    def get_failed_steps(self) -> tuple[StepState, ...]:
        return tuple(s for s in self.steps if s.status == BatchStatus.FAILED)

    @property
    def read_count(self) -> int:
        return sum(s.read_count for s in self.steps)

    @property
    def write_count(self) -> int:
        return sum(s.write_count for s in self.steps)

    @property
    def skip_count(self) -> int:
        return sum(s.skip_count for s in self.steps)

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 only for COMPLETED executions."""
        return 0 if self.status == BatchStatus.COMPLETED else 1

    @property
    def duration_ms(self) -> Optional[int]:
        if self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "execution_id": self.execution_id,
            "job_name": self.job_name,
            "instance_key": self.instance_key,
            "parameters": self.parameters,
            "status": self.status.value,
            "steps": [s.to_dict() for s in self.steps],
            "started_at": self.started_at.isoformat(),
        }
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.restart_of is not None:
            result["restart_of"] = self.restart_of
        if self.errors:
            result["errors"] = self.errors
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobExecution":
        """Deserialize from dictionary."""
        return cls(
            execution_id=data["execution_id"],
            job_name=data["job_name"],
            instance_key=data["instance_key"],
            parameters=data.get("parameters", {}),
            status=BatchStatus(data.get("status", "starting")),
            steps=[StepState.from_dict(s) for s in data.get("steps", [])],
            started_at=datetime.fromisoformat(data["started_at"]),
            completed_at=_parse_dt(data.get("completed_at")),
            restart_of=data.get("restart_of"),
            errors=data.get("errors", []),
        )
