"""
RunStore - Persist job executions.

The RunStore manages JobExecution records: one per invocation, saved when
the execution starts, after each step and when it finishes. The JobRunner
queries it to reject duplicate runs, resume failed ones and increment
run ids.

Storage backends:
- In-memory (for testing)
- File-based (JSON files, the default for the CLI)
"""

import json
import random
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from chunkrun.schemas import JobExecution

DEFAULT_RUN_PATH = Path(".chunkrun") / "runs"


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    # Timestamp component (48 bits = 10 chars in base32)
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(ALPHABET[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    # Random component (80 bits = 16 chars in base32)
    random_part = "".join(random.choice(ALPHABET) for _ in range(16))

    return timestamp_part + random_part


def _sort_key(execution: JobExecution) -> tuple:
    return (execution.started_at, execution.execution_id)


class RunStore(ABC):
    """
    Abstract base class for job execution storage.

    Implementations must provide methods to:
    - Save (create or overwrite) a JobExecution
    - Retrieve a JobExecution by id
    - List executions of a job, optionally for one job instance
    """

    @abstractmethod
    def save_execution(self, execution: JobExecution) -> None:
        """
        Create or overwrite an execution record.

        Args:
            execution: The JobExecution to store
        """
        pass

    @abstractmethod
    def get_execution(self, execution_id: str) -> Optional[JobExecution]:
        """
        Retrieve an execution by ID.

        Args:
            execution_id: The ULID of the execution

        Returns:
            The JobExecution if found, None otherwise
        """
        pass

    @abstractmethod
    def list_executions(self, job_name: Optional[str] = None) -> list[JobExecution]:
        """
        List executions, oldest first.

        Args:
            job_name: Only executions of this job (all jobs if None)

        Returns:
            Executions ordered by start time
        """
        pass

    def find_executions(self, job_name: str, instance_key: str) -> list[JobExecution]:
        """All executions of one job instance, oldest first."""
        return [e for e in self.list_executions(job_name) if e.instance_key == instance_key]

    def get_last_execution(self, job_name: str) -> Optional[JobExecution]:
        """The most recently started execution of a job, if any."""
        executions = self.list_executions(job_name)
        return executions[-1] if executions else None


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._executions: dict[str, dict] = {}

    def save_execution(self, execution: JobExecution) -> None:
        # Store a snapshot so later in-place mutation does not leak in
        self._executions[execution.execution_id] = execution.to_dict()

    def get_execution(self, execution_id: str) -> Optional[JobExecution]:
        data = self._executions.get(execution_id)
        return JobExecution.from_dict(data) if data is not None else None

    def list_executions(self, job_name: Optional[str] = None) -> list[JobExecution]:
        executions = [JobExecution.from_dict(d) for d in self._executions.values()]
        if job_name is not None:
            executions = [e for e in executions if e.job_name == job_name]
        return sorted(executions, key=_sort_key)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._executions.clear()


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores executions as JSON files in a directory tree:
        store_dir/
            executions/
                {job_name}/
                    {execution_id}.json
    """

    def __init__(self, store_dir: Path | str = DEFAULT_RUN_PATH):
        self._store_dir = Path(store_dir)
        self._executions_dir = self._store_dir / "executions"
        self._executions_dir.mkdir(parents=True, exist_ok=True)

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def _job_dir(self, job_name: str) -> Path:
        return self._executions_dir / job_name

    def save_execution(self, execution: JobExecution) -> None:
        job_dir = self._job_dir(execution.job_name)
        job_dir.mkdir(parents=True, exist_ok=True)

        # Write then rename so readers never see a half-written record
        path = job_dir / f"{execution.execution_id}.json"
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(execution.to_dict(), f, indent=2)
        tmp_path.replace(path)

    def get_execution(self, execution_id: str) -> Optional[JobExecution]:
        found = list(self._executions_dir.glob(f"*/{execution_id}.json"))
        if not found:
            return None
        with open(found[0]) as f:
            data = json.load(f)
        return JobExecution.from_dict(data)

    def list_executions(self, job_name: Optional[str] = None) -> list[JobExecution]:
        if job_name is not None:
            paths = self._job_dir(job_name).glob("*.json")
        else:
            paths = self._executions_dir.glob("*/*.json")

        executions = []
        for path in paths:
            with open(path) as f:
                executions.append(JobExecution.from_dict(json.load(f)))
        return sorted(executions, key=_sort_key)
