"""Scanner invocation.

Builds the command line, runs the scanner inside its workspace with a
deadline, captures output and locates the report the scanner wrote.
"""

from __future__ import annotations

import shlex
from pathlib import Path
from typing import List, Optional, Sequence

from pyrothor.bootstrap.platform import PlatformProfile
from pyrothor.core.cancellation import CancellationToken
from pyrothor.core.errors import ScanCancelledError, ScanExecutionError, ScanTimeoutError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import RawScanOutput, ScanJob, ScanOutcome, Workspace
from pyrothor.core.streaming import (
    CompositeStreamHandler,
    StreamHandler,
    TranscriptStreamHandler,
)
from pyrothor.core.subprocess_runner import (
    DEFAULT_GRACE_SECONDS,
    ProcessResult,
    run_with_deadline,
)
from pyrothor.scanner.exit_codes import ExitCodeTable
from pyrothor.scanner.targets import TargetFilter
from pyrothor.workspace.exclusion import ExclusionManager, exclusion_for

LOGGER = get_logger(__name__)

# Default scanner flags (Thor Lite file scan with JSON output)
DEFAULT_FLAGS = [
    "--utc",
    "--rfc3339",
    "--nocsv",
    "--nolog",
    "--nothordb",
    "--module", "Filescan",
    "--allhds",
    "--json",
]

DEFAULT_REPORT_NAME = "scan_report.json"

# Used when the job has no deadline
DEFAULT_TIMEOUT_SECONDS = 3600.0

TOOL_NAME = "scanner"


class ScannerInvoker:
    """Runs the staged scanner binary for one job at a time.

    The invoker is stateless between calls, so one instance may serve
    concurrent jobs with different workspaces.
    """

    def __init__(
        self,
        profile: PlatformProfile,
        flags: Sequence[str] = tuple(DEFAULT_FLAGS),
        exit_codes: Optional[ExitCodeTable] = None,
        report_name: str = DEFAULT_REPORT_NAME,
        path_flag: Optional[str] = "--path",
        rebase_flag: Optional[str] = "--rebase-dir",
        exclude_patterns: Sequence[str] = (),
        max_file_size_mb: int = 0,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        transcript_dir: Optional[Path] = None,
        stream_handler: Optional[StreamHandler] = None,
        exclusion: Optional[ExclusionManager] = None,
    ) -> None:
        self._profile = profile
        self._flags = list(flags)
        self._exit_codes = exit_codes or ExitCodeTable()
        self._report_name = report_name
        self._path_flag = path_flag
        self._rebase_flag = rebase_flag
        self._target_filter = TargetFilter(exclude_patterns)
        self._max_file_size_mb = max_file_size_mb
        self._default_timeout = default_timeout
        self._grace_seconds = grace_seconds
        self._transcript_dir = transcript_dir
        self._stream_handler = stream_handler
        self._exclusion = exclusion or exclusion_for(profile)

    @property
    def exit_codes(self) -> ExitCodeTable:
        return self._exit_codes

    def build_command(
        self,
        workspace: Workspace,
        job: ScanJob,
        targets: Sequence[Path],
        extra_flags: Sequence[str] = (),
    ) -> List[str]:
        """Assemble ``<binary> <flags> <targets>`` for a job."""
        cmd = [str(workspace.binary_path), *self._flags]
        for flag in sorted(job.flags):
            cmd.extend(shlex.split(flag, posix=not self._profile.is_windows))
        cmd.extend(extra_flags)
        if self._max_file_size_mb > 0:
            cmd.extend(["--max_file_size", str(self._max_file_size_mb * 1024 * 1024)])
        for target in targets:
            if self._path_flag:
                cmd.append(self._path_flag)
            cmd.append(str(target))
        if self._rebase_flag:
            cmd.extend([self._rebase_flag, str(workspace.root_path)])
        return cmd

    def invoke(
        self,
        workspace: Workspace,
        job: ScanJob,
        cancel: Optional[CancellationToken] = None,
        extra_flags: Sequence[str] = (),
    ) -> RawScanOutput:
        """Run the scanner for ``job`` inside ``workspace``.

        Returns:
            RawScanOutput tagged with a clean or findings outcome.

        Raises:
            ScanTimeoutError: The deadline passed; ``raw`` holds partial output.
            ScanCancelledError: The cancellation token was set.
            ScanExecutionError: The scanner could not start, was killed by
                a signal, or exited with an execution-error code.
        """
        targets = self._target_filter.filter(job.target_paths)
        if not targets:
            raise ScanExecutionError("All scan targets are excluded", job_id=job.job_id)

        cmd = self.build_command(workspace, job, targets, extra_flags)
        timeout = job.remaining_seconds()
        if timeout is None:
            timeout = self._default_timeout

        LOGGER.info(f"[job {job.job_id}] Running scanner: {workspace.binary_path.name}")
        LOGGER.debug(f"[job {job.job_id}] Command: {' '.join(cmd)}")

        with self._exclusion.excluded(workspace.root_path):
            try:
                result = run_with_deadline(
                    cmd=cmd,
                    cwd=workspace.root_path,
                    tool_name=TOOL_NAME,
                    stream_handler=self._handler_for(job),
                    timeout=timeout,
                    cancel=cancel,
                    grace_seconds=self._grace_seconds,
                )
            except OSError as e:
                raise ScanExecutionError(
                    f"Failed to launch scanner {workspace.binary_path}: {e}", job_id=job.job_id
                ) from e

        return self._classify(workspace, job, result, timeout)

    def _handler_for(self, job: ScanJob) -> StreamHandler:
        handlers: List[StreamHandler] = []
        if self._transcript_dir is not None:
            handlers.append(TranscriptStreamHandler(self._transcript_dir / f"{job.job_id}.log"))
        if self._stream_handler is not None:
            handlers.append(self._stream_handler)
        return CompositeStreamHandler(handlers)

    def _classify(
        self,
        workspace: Workspace,
        job: ScanJob,
        result: ProcessResult,
        timeout: float,
    ) -> RawScanOutput:
        report_path = self.locate_report(workspace, result.stdout)
        interrupted = result.timed_out or result.cancelled
        outcome = ScanOutcome.ERROR if interrupted else self._exit_codes.classify(result.returncode)

        raw = RawScanOutput(
            job_id=job.job_id,
            exit_code=result.returncode,
            outcome=outcome,
            stdout=result.stdout,
            stderr=result.stderr,
            report_path=report_path,
            duration_ms=result.duration_ms,
            command=tuple(result.args),
            timed_out=result.timed_out,
        )

        if result.timed_out:
            raise ScanTimeoutError(
                f"Scanner exceeded deadline of {timeout:.1f}s", raw=raw, job_id=job.job_id
            )
        if result.cancelled:
            raise ScanCancelledError("Scan cancelled while scanner was running", job_id=job.job_id)
        if result.killed_by_signal:
            raise ScanExecutionError(
                f"Scanner terminated abnormally by signal {-result.returncode}",
                raw=raw,
                job_id=job.job_id,
            )
        if outcome == ScanOutcome.ERROR:
            detail = result.stderr.strip().splitlines()[-1:] or ["no stderr"]
            raise ScanExecutionError(
                f"Scanner failed with exit code {result.returncode}: {detail[0]}",
                raw=raw,
                job_id=job.job_id,
            )

        LOGGER.info(
            f"[job {job.job_id}] Scanner finished: {outcome.value} "
            f"(exit {result.returncode}, {result.duration_ms} ms)"
        )
        return raw

    def locate_report(self, workspace: Workspace, stdout: str) -> Optional[Path]:
        """Find the report the scanner wrote into the workspace.

        When no report file exists but the scanner printed its report to
        stdout, the output is saved as the report file.
        """
        root = workspace.root_path
        if any(ch in self._report_name for ch in "*?["):
            matches = sorted(
                (p for p in root.glob(self._report_name) if p.is_file()),
                key=lambda p: p.stat().st_mtime,
            )
            if matches:
                return matches[-1]
            report_path = root / "stdout_report.json"
        else:
            report_path = root / self._report_name
            if report_path.is_file():
                return report_path

        if not stdout.strip():
            return None
        try:
            report_path.write_text(stdout + "\n", encoding="utf-8")
        except OSError as e:
            LOGGER.warning(f"[job {workspace.job_id}] Could not save stdout report: {e}")
            return None
        workspace.owned_files.add(report_path)
        return report_path
