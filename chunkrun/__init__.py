"""
chunkrun - Chunked batch ETL engine

Reads records from a streaming source, transforms them one by one and
writes them to a sink in fixed-size transactional chunks, with skip,
retry and restart semantics. Job executions are tracked in a run store.
"""

__version__ = "0.1.0"


__all__ = [
    "ChunkOrchestrator",
    "JobRunner",
    "StopSignal",
    "load_config",
    "run_job",
]

from .config import load_config
from .job_runner import JobRunner, run_job
from .orchestrator import ChunkOrchestrator, StopSignal
