"""Parallel job execution using ThreadPoolExecutor."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from pyrothor.bootstrap.package import PackageSource
from pyrothor.core.cancellation import CancellationToken
from pyrothor.core.errors import PyroThorError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import ScanJob, ScanResult
from pyrothor.pipeline.executor import ScanPipeline

LOGGER = get_logger(__name__)

# Default number of worker threads
DEFAULT_MAX_WORKERS = 4


@dataclass
class JobOutcome:
    """Result of a single job execution."""

    job_id: str
    result: Optional[ScanResult] = None
    error: Optional[PyroThorError] = None
    sink_errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.result is not None


class ParallelJobExecutor:
    """Executes scan jobs in parallel using ThreadPoolExecutor.

    Each job gets its own workspace; a failure in one job is captured in
    its JobOutcome and never affects the others. Outcomes are returned in
    the order the jobs were given.
    """

    def __init__(
        self,
        pipeline: ScanPipeline,
        max_workers: int = DEFAULT_MAX_WORKERS,
        sequential: bool = False,
    ) -> None:
        """Initialize the executor.

        Args:
            pipeline: Pipeline shared by all jobs.
            max_workers: Maximum number of concurrent jobs.
            sequential: If True, run jobs one after another (for debugging).
        """
        self._pipeline = pipeline
        self._max_workers = max(1, max_workers)
        self._sequential = sequential

    def execute(
        self,
        jobs: Sequence[ScanJob],
        source: PackageSource,
        cancel: Optional[CancellationToken] = None,
    ) -> List[JobOutcome]:
        """Run every job and return one outcome per job, in input order."""
        if not jobs:
            return []

        if self._sequential or len(jobs) == 1:
            return [self._run_job(job, source, cancel) for job in jobs]

        outcomes: Dict[int, JobOutcome] = {}
        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            future_to_job = {
                executor.submit(self._run_job, job, source, cancel): index
                for index, job in enumerate(jobs)
            }

            for future in as_completed(future_to_job):
                index = future_to_job[future]
                job = jobs[index]
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    LOGGER.error(f"[job {job.job_id}] Job raised unexpected exception: {e}")
                    outcomes[index] = JobOutcome(
                        job_id=job.job_id,
                        error=PyroThorError(f"Unexpected error: {e}", job_id=job.job_id),
                    )

        return [outcomes[index] for index in range(len(jobs))]

    def _run_job(
        self,
        job: ScanJob,
        source: PackageSource,
        cancel: Optional[CancellationToken],
    ) -> JobOutcome:
        """Run a single job and capture its outcome.

        This method is thread-safe and catches all exceptions.
        """
        try:
            result = self._pipeline.scan(job, source, cancel)
        except PyroThorError as e:
            return JobOutcome(job_id=job.job_id, error=e)
        except Exception as e:
            LOGGER.error(f"[job {job.job_id}] Job raised unexpected exception: {e}")
            return JobOutcome(
                job_id=job.job_id,
                error=PyroThorError(f"Unexpected error: {e}", job_id=job.job_id),
            )
        sink_errors = self._pipeline.publish(result)
        return JobOutcome(job_id=job.job_id, result=result, sink_errors=sink_errors)
