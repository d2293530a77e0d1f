"""Scan pipeline orchestration."""

from pyrothor.pipeline.executor import ScanPipeline, source_from_config
from pyrothor.pipeline.parallel import JobOutcome, ParallelJobExecutor

__all__ = [
    "JobOutcome",
    "ParallelJobExecutor",
    "ScanPipeline",
    "source_from_config",
]
