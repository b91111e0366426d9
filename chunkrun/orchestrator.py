"""
ChunkOrchestrator - drives one step's Source -> Transformer -> Sink loop.

The orchestrator implements:
- Chunking: up to chunk_size source reads per transaction
- Transaction scoping: one sink transaction per chunk (read + process + write)
- Skip policy: malformed lines and rejected records skipped or escalated
- Retry: failed chunk writes retried from the in-memory buffer
- Cancellation: a StopSignal checked between chunks

Execution flow per chunk:
1. Check the stop signal
2. Begin sink transaction
3. Read and transform up to chunk_size items, buffering output records
4. Write the buffer (if non-empty)
5. Commit and apply the chunk's counts to the StepState

Counts are applied to the StepState only when a chunk is committed (or
abandoned under skip_write_failures), so a rolled-back chunk never shows
up in read/write/skip counts.
"""

import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, Optional

from chunkrun.errors import (
    ChunkError,
    MalformedRecordError,
    ResourceTimeoutError,
    SkipLimitExceededError,
    StepFailedError,
    ValidationError,
)
from chunkrun.schemas import BatchStatus, Record, SkipPolicy, StepDef, StepState
from chunkrun.sinks.base import RecordSink
from chunkrun.sources.base import RecordSource
from chunkrun.transforms import Transformer
from chunkrun.utils import retry_with_backoff

logger = logging.getLogger(__name__)


class StopSignal:
    """
    Thread-safe stop request shared between a runner and its steps.

    The orchestrator checks it between chunks, never mid-chunk.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def request_stop(self) -> None:
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    def reset(self) -> None:
        self._event.clear()


@dataclass
class _Chunk:
    """Buffered output and counts for the chunk in progress."""
    items: list[Record] = field(default_factory=list)
    reads: int = 0
    malformed: int = 0
    rejected: int = 0
    filtered: int = 0
    exhausted: bool = False

    @property
    def skipped(self) -> int:
        return self.malformed + self.rejected + self.filtered


class ChunkOrchestrator:
    """
    Chunk-oriented execution of a single step.

    Usage:
        orchestrator = ChunkOrchestrator(
            "load_people",
            source=DelimitedFileSource("people.csv", schema),
            transformer=uppercase(["first_name"]),
            sink=SqliteSink("people.db", INSERT_SQL),
            chunk_size=10,
        )
        state = orchestrator.run()

    run() returns the final StepState for COMPLETED and CANCELLED steps and
    raises StepFailedError for FAILED ones; the state passed in (or created)
    is updated in place either way.
    """

    def __init__(
        self,
        name: str,
        source: RecordSource,
        transformer: Transformer,
        sink: RecordSink,
        chunk_size: int = 10,
        skip_policy: Optional[SkipPolicy] = None,
        stop_signal: Optional[StopSignal] = None,
        chunk_timeout_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.name = name
        self._source = source
        self._transformer = transformer
        self._sink = sink
        self.chunk_size = chunk_size
        self.skip_policy = skip_policy or SkipPolicy()
        self._stop_signal = stop_signal
        self._chunk_timeout_s = chunk_timeout_s
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_step(
        cls,
        step: StepDef,
        stop_signal: Optional[StopSignal] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "ChunkOrchestrator":
        """Build an orchestrator for a wired StepDef."""
        return cls(
            step.name,
            source=step.source,
            transformer=step.transformer,
            sink=step.sink,
            chunk_size=step.chunk_size,
            skip_policy=step.skip_policy,
            stop_signal=stop_signal,
            chunk_timeout_s=step.chunk_timeout_s,
            sleep=sleep,
        )

    def run(self, state: Optional[StepState] = None) -> StepState:
        """
        Run the step to completion, cancellation or failure.

        Args:
            state: State to update; a restart passes a state carrying the
                committed counts and commit_offset of the prior execution

        Returns:
            The StepState (COMPLETED or CANCELLED)

        Raises:
            StepFailedError: If the step FAILED; state.error holds the cause
        """
        state = state or StepState(name=self.name)
        state.mark_started()
        logger.info(
            f"Step '{self.name}' started (chunk_size={self.chunk_size}, offset={state.commit_offset})",
            extra={"step": self.name},
        )

        try:
            with ExitStack() as stack:
                self._source.open(offset=state.commit_offset)
                stack.callback(self._source.close)
                self._sink.open()
                stack.callback(self._sink.close)
                self._loop(state)
        except Exception as e:
            state.finish(BatchStatus.FAILED, e)
            logger.error(
                f"Step '{self.name}' failed: {e}",
                exc_info=True,
                extra={"step": self.name, "counts": _counts(state)},
            )
            raise StepFailedError(self.name, str(e), cause=e) from e

        logger.info(
            f"Step '{self.name}' {state.status.value}: read={state.read_count} "
            f"written={state.write_count} skipped={state.skip_count}",
            extra={"step": self.name, "counts": _counts(state)},
        )
        return state

    def _loop(self, state: StepState) -> None:
        while True:
            if self._stop_signal is not None and self._stop_signal.is_set:
                logger.warning(f"Step '{self.name}' stopped on request")
                state.finish(BatchStatus.CANCELLED)
                return
            if self._process_chunk(state):
                state.finish(BatchStatus.COMPLETED)
                return

    def _process_chunk(self, state: StepState) -> bool:
        """Run one chunk transaction. Returns True when the source is exhausted."""
        chunk = _Chunk()
        deadline = None
        if self._chunk_timeout_s is not None:
            deadline = self._clock() + self._chunk_timeout_s

        try:
            with self._sink.transaction():
                self._fill(chunk, state, deadline)
                if chunk.items:
                    self._sink.write(chunk.items)
                    self._check_deadline(deadline)
        except ChunkError as e:
            state.rollback_count += 1
            logger.warning(f"Step '{self.name}': chunk rolled back: {e}")
            self._recover(chunk, state, e)
            return chunk.exhausted
        except Exception:
            state.rollback_count += 1
            raise

        self._apply(chunk, state, committed=True)
        return chunk.exhausted

    def _fill(self, chunk: _Chunk, state: StepState, deadline: Optional[float]) -> None:
        """Read and transform up to chunk_size items into the chunk buffer."""
        while chunk.reads < self.chunk_size:
            self._check_deadline(deadline)
            try:
                record = self._source.read()
            except MalformedRecordError as e:
                chunk.reads += 1
                if not self.skip_policy.skip_malformed:
                    raise
                chunk.malformed += 1
                logger.warning(f"Step '{self.name}': skipping malformed line {e.line_number}: {e.reason}")
                self._check_skip_limit(state, chunk.malformed, e)
                continue

            if record is None:
                chunk.exhausted = True
                return
            chunk.reads += 1

            try:
                result = self._transformer(record)
            except ValidationError as e:
                chunk.rejected += 1
                logger.warning(f"Step '{self.name}': record at line {record.line_number} rejected: {e}")
                continue

            if result is None:
                chunk.filtered += 1
            else:
                chunk.items.append(result)

    def _recover(self, chunk: _Chunk, state: StepState, error: ChunkError) -> None:
        """Retry a failed chunk write, then skip it or escalate per policy."""
        policy = self.skip_policy
        if chunk.items and policy.retry_limit > 0:
            try:
                retry_with_backoff(
                    lambda: self._write_chunk(chunk.items, state),
                    max_attempts=policy.retry_limit,
                    backoff_seconds=policy.retry_backoff_s,
                    retry_on=(ChunkError,),
                    logger=logger,
                    sleep=self._sleep,
                )
            except ChunkError as e:
                error = e
            else:
                self._apply(chunk, state, committed=True)
                return

        # A chunk that consumed nothing cannot be skipped past
        if not policy.skip_write_failures or (chunk.reads == 0 and not chunk.exhausted):
            raise error

        failed = len(chunk.items)
        logger.warning(f"Step '{self.name}': skipping {failed} records of failed chunk: {error}")
        self._apply(chunk, state, committed=False)
        state.skip_count += failed
        if policy.skip_limit is not None and state.policy_skip_count > policy.skip_limit:
            raise SkipLimitExceededError(self.name, policy.skip_limit, error)

    def _write_chunk(self, items: list[Record], state: StepState) -> None:
        try:
            with self._sink.transaction():
                self._sink.write(items)
        except ChunkError:
            state.rollback_count += 1
            raise

    def _apply(self, chunk: _Chunk, state: StepState, committed: bool) -> None:
        state.read_count += chunk.reads
        state.skip_count += chunk.skipped
        state.filter_count += chunk.filtered
        state.reject_count += chunk.rejected
        if committed:
            state.write_count += len(chunk.items)
            state.commit_count += 1
        state.commit_offset = self._source.lines_consumed
        logger.debug(
            f"Step '{self.name}': chunk {'committed' if committed else 'abandoned'} "
            f"({len(chunk.items)} records)"
        )

    def _check_skip_limit(self, state: StepState, pending: int, cause: Exception) -> None:
        limit = self.skip_policy.skip_limit
        if limit is not None and state.policy_skip_count + pending > limit:
            raise SkipLimitExceededError(self.name, limit, cause)

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and self._clock() > deadline:
            raise ResourceTimeoutError(
                f"Step '{self.name}': chunk exceeded {self._chunk_timeout_s}s"
            )


def _counts(state: StepState) -> dict[str, int]:
    return {
        "read": state.read_count,
        "written": state.write_count,
        "skipped": state.skip_count,
        "commits": state.commit_count,
        "rollbacks": state.rollback_count,
    }
