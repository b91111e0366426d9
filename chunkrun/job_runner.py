"""JobRunner - top-level entry point for chunkrun jobs.

This module provides the main entry point for executing jobs:
1. Resolves run parameters (applying the job's run id incrementer)
2. Rejects duplicate runs of a COMPLETED job instance, or of one whose
   prior execution never finished, before any I/O
3. Creates a JobExecution and runs its steps in declared order
4. Resumes FAILED/CANCELLED executions of the same instance from their
   last committed chunk
5. Notifies listeners before the job, after each step and after the job

Usage:
    from chunkrun.job_runner import run_job

    # Run the job described by a config file
    execution = run_job("jobs/import_people.yaml", parameters={"input.date": "2026-10-18"})

    # Or wire the pieces explicitly
    runner = JobRunner(store=InMemoryRunStore(), listeners=[LoggingCompletionListener()])
    execution = runner.run(job_def, {"input.date": "2026-10-18"})
"""

import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from chunkrun.errors import DuplicateRunError, StepFailedError
from chunkrun.orchestrator import ChunkOrchestrator, StopSignal
from chunkrun.run_store import FileRunStore, InMemoryRunStore, RunStore, generate_ulid
from chunkrun.schemas import BatchStatus, JobDef, JobExecution, StepDef, StepState
from chunkrun.utils import sanitize_error_message

if TYPE_CHECKING:
    from chunkrun.config import JobConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def compute_instance_key(job_name: str, parameters: dict[str, Any]) -> str:
    """
    Compute the job instance key.

    Executions sharing a key are the same job instance: a COMPLETED one
    blocks re-runs, a FAILED one is resumed.

    Args:
        job_name: The job name
        parameters: Identifying run parameters

    Returns:
        Hex SHA-256 of the canonical JSON of name and parameters
    """
    payload = json.dumps(
        {"job": job_name, "parameters": parameters},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(payload.encode()).hexdigest()


class JobListener:
    """
    Base class for job lifecycle listeners.

    Override any of the hooks. Listeners run for successful, failed and
    cancelled executions alike; an exception raised by a listener is
    logged and does not change the execution's outcome.
    """

    def before_job(self, execution: JobExecution) -> None:
        pass

    def after_step(self, execution: JobExecution, state: StepState) -> None:
        pass

    def after_job(self, execution: JobExecution) -> None:
        pass


class LoggingCompletionListener(JobListener):
    """Logs a summary line per step and per job."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def after_step(self, execution: JobExecution, state: StepState) -> None:
        self._log.info(
            f"Step {state.name} {state.status.value}: read={state.read_count} "
            f"written={state.write_count} skipped={state.skip_count} "
            f"commits={state.commit_count} rollbacks={state.rollback_count}",
            extra={"job": execution.job_name, "step": state.name, "execution_id": execution.execution_id},
        )

    def after_job(self, execution: JobExecution) -> None:
        message = (
            f"Job {execution.job_name} {execution.status.value} "
            f"(execution_id={execution.execution_id}): read={execution.read_count} "
            f"written={execution.write_count} skipped={execution.skip_count}"
        )
        extra = {"job": execution.job_name, "execution_id": execution.execution_id}
        if execution.status == BatchStatus.COMPLETED:
            self._log.info(message, extra=extra)
        else:
            self._log.error(message, extra=extra)


class JobRunner:
    """
    Runs JobDefs and records their executions.

    The JobRunner handles:
    - Run identity (instance key over job name and parameters)
    - Duplicate-run rejection and restart of unfinished instances
    - Sequential step execution via ChunkOrchestrator
    - Listener notification
    """

    def __init__(
        self,
        store: Optional[RunStore] = None,
        listeners: Iterable[JobListener] = (),
        stop_signal: Optional[StopSignal] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the runner.

        Args:
            store: RunStore for persisting executions (defaults to in-memory)
            listeners: Lifecycle listeners
            stop_signal: Shared stop request, checked between chunks
            sleep: Sleep function used for retry backoff
        """
        self._store = store if store is not None else InMemoryRunStore()
        self._listeners = list(listeners)
        self._stop_signal = stop_signal
        self._sleep = sleep

    @property
    def store(self) -> RunStore:
        return self._store

    def run(self, job: JobDef, parameters: Optional[dict[str, Any]] = None) -> JobExecution:
        """
        Run a job.

        Args:
            job: The wired job definition
            parameters: Run parameters (identifying)

        Returns:
            The final JobExecution (COMPLETED, FAILED or CANCELLED)

        Raises:
            DuplicateRunError: If the job instance already COMPLETED, or has
                prior executions and is not restartable
        """
        parameters = self._resolve_parameters(job, parameters or {})
        instance_key = compute_instance_key(job.name, parameters)
        previous = self._check_instance(job, instance_key)

        execution = JobExecution(
            execution_id=generate_ulid(),
            job_name=job.name,
            instance_key=instance_key,
            parameters=parameters,
            restart_of=previous.execution_id if previous else None,
        )
        self._store.save_execution(execution)
        self._notify("before_job", execution)

        execution.status = BatchStatus.STARTED
        if previous is not None:
            logger.info(f"Restarting job {job.name} from execution {previous.execution_id}")
        logger.info(
            f"Starting job: {job.name} (execution_id={execution.execution_id}, parameters={parameters})",
            extra={"job": job.name, "execution_id": execution.execution_id},
        )

        execution.status = self._run_steps(job, execution, previous)
        execution.completed_at = _utcnow()
        self._store.save_execution(execution)
        self._notify("after_job", execution)
        return execution

    def _resolve_parameters(self, job: JobDef, parameters: dict[str, Any]) -> dict[str, Any]:
        if job.incrementer is None:
            return dict(parameters)
        last = self._store.get_last_execution(job.name)
        return job.incrementer.next_parameters(parameters, last.parameters if last else None)

    def _check_instance(self, job: JobDef, instance_key: str) -> Optional[JobExecution]:
        """Return the execution to restart from, or None for a fresh instance."""
        executions = self._store.find_executions(job.name, instance_key)
        if not executions:
            return None

        for prior in executions:
            if prior.status == BatchStatus.COMPLETED:
                raise DuplicateRunError(
                    job.name,
                    instance_key,
                    f"Job {job.name} already completed with these parameters "
                    f"(execution_id={prior.execution_id}); use new parameters or a run id incrementer",
                )
            if not prior.status.is_terminal:
                raise DuplicateRunError(
                    job.name,
                    instance_key,
                    f"Job {job.name} has an execution that is {prior.status.value} with these parameters "
                    f"(execution_id={prior.execution_id}); if it is no longer running, "
                    f"abandon it before restarting",
                )

        if not job.restartable:
            raise DuplicateRunError(
                job.name,
                instance_key,
                f"Job {job.name} is not restartable and already ran with these parameters "
                f"(execution_id={executions[-1].execution_id})",
            )
        return executions[-1]

    def abandon(self, execution_id: str, reason: str = "Abandoned by operator") -> JobExecution:
        """
        Mark an execution that never finished as FAILED.

        An execution left STARTING or STARTED by a crashed process blocks
        its job instance. Abandoning it keeps its committed counts and
        offsets, so the next run of the instance resumes from them.

        Args:
            execution_id: The execution to abandon
            reason: Recorded in the execution's errors

        Returns:
            The updated JobExecution

        Raises:
            KeyError: If the execution is unknown
            ValueError: If the execution already finished
        """
        execution = self._store.get_execution(execution_id)
        if execution is None:
            raise KeyError(execution_id)
        if execution.status.is_terminal:
            raise ValueError(f"Execution {execution_id} already {execution.status.value}")

        for state in execution.steps:
            if not state.status.is_terminal:
                state.finish(BatchStatus.FAILED)
                state.error = {"type": "Abandoned", "message": reason}
        execution.status = BatchStatus.FAILED
        execution.completed_at = _utcnow()
        execution.errors.append(reason)
        self._store.save_execution(execution)
        logger.warning(f"Abandoned execution {execution_id} of job {execution.job_name}: {reason}")
        return execution

    def _run_steps(
        self,
        job: JobDef,
        execution: JobExecution,
        previous: Optional[JobExecution],
    ) -> BatchStatus:
        for step in job.steps:
            prior = previous.get_step(step.name) if previous else None
            if prior is not None and prior.status == BatchStatus.COMPLETED:
                logger.info(f"Step '{step.name}' already completed; not re-running")
                execution.steps.append(StepState.from_dict(prior.to_dict()))
                continue

            state = StepState.resume_from(prior) if prior is not None else StepState(name=step.name)
            execution.steps.append(state)
            self._store.save_execution(execution)

            try:
                self._run_step(step, state)
            except StepFailedError as e:
                execution.errors.append(sanitize_error_message(e.cause or e))
                return BatchStatus.FAILED
            finally:
                self._store.save_execution(execution)
                self._notify("after_step", execution, state)

            if state.status == BatchStatus.CANCELLED:
                return BatchStatus.CANCELLED

        return BatchStatus.COMPLETED

    def _run_step(self, step: StepDef, state: StepState) -> StepState:
        orchestrator = ChunkOrchestrator.from_step(step, stop_signal=self._stop_signal, sleep=self._sleep)
        return orchestrator.run(state)

    def _notify(self, hook: str, *args: Any) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, hook)(*args)
            except Exception:
                logger.exception(f"Listener {type(listener).__name__}.{hook} failed")


def run_job(
    config: "JobConfig | Path | str",
    parameters: Optional[dict[str, Any]] = None,
    *,
    store: Optional[RunStore] = None,
    listeners: Optional[Iterable[JobListener]] = None,
    stop_signal: Optional[StopSignal] = None,
) -> JobExecution:
    """Run the job described by a config file.

    This is the main entry point for config-driven execution. It:
    1. Loads and validates the job config
    2. Wires the JobDef (sources, transforms, sinks)
    3. Runs it with a FileRunStore at the configured store path

    Args:
        config: A loaded JobConfig, or the path to a job YAML file
        parameters: Run parameters
        store: Optional RunStore (defaults to FileRunStore from config)
        listeners: Optional listeners (defaults to LoggingCompletionListener)
        stop_signal: Optional stop request

    Returns:
        The final JobExecution

    Raises:
        ConfigError: If the config is invalid
        DuplicateRunError: If the run is rejected
    """
    from chunkrun.builders import build_job
    from chunkrun.config import JobConfig, load_config

    if not isinstance(config, JobConfig):
        config = load_config(config)
    job = build_job(config)

    if store is None:
        store = FileRunStore(config.get_store_path())
    if listeners is None:
        listeners = [LoggingCompletionListener()]

    runner = JobRunner(store=store, listeners=listeners, stop_signal=stop_signal)
    return runner.run(job, parameters)
