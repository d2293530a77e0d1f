"""Scan command implementation."""

from __future__ import annotations

import signal
import threading
from argparse import Namespace
from contextlib import contextmanager
from typing import Iterator, List, Optional

from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.bootstrap.platform import resolve
from pyrothor.cli.commands import Command
from pyrothor.cli.exit_codes import (
    EXIT_ISSUES_FOUND,
    EXIT_SCANNER_ERROR,
    EXIT_SUCCESS,
    exit_code_for_error,
)
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.cancellation import CancellationToken
from pyrothor.core.errors import PyroThorError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import ScanJob, ScanOutcome, ScanResult
from pyrothor.core.streaming import CLIStreamHandler, StreamHandler
from pyrothor.pipeline import JobOutcome, ParallelJobExecutor, ScanPipeline, source_from_config

LOGGER = get_logger(__name__)

# Scanned when neither the command line nor the config names a path
DEFAULT_SCAN_PATH = "/"


@contextmanager
def cancel_on_signals(token: CancellationToken) -> Iterator[CancellationToken]:
    """Route SIGINT/SIGTERM to ``token`` while the block runs.

    Handlers can only be installed from the main thread; elsewhere the
    token is yielded unchanged.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum, _frame) -> None:
        LOGGER.warning(f"Received signal {signum}, cancelling scan")
        token.cancel(f"received signal {signum}")

    signals = [signal.SIGINT]
    if hasattr(signal, "SIGTERM"):
        signals.append(signal.SIGTERM)
    previous = {sig: signal.signal(sig, _handler) for sig in signals}
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class ScanCommand(Command):
    """Runs the scanner pipeline for one or more jobs."""

    def __init__(self, version: str):
        """Initialize ScanCommand.

        Args:
            version: Current pyrothor version string.
        """
        self._version = version

    @property
    def name(self) -> str:
        """Command identifier."""
        return "scan"

    def execute(self, args: Namespace, config: Optional[PyroThorConfig] = None) -> int:
        """Execute the scan command.

        Args:
            args: Parsed command-line arguments.
            config: Loaded configuration.

        Returns:
            Exit code based on the scan outcome. A failed job decides the
            exit code ahead of findings from the other jobs.
        """
        if config is None:
            LOGGER.error("Configuration is required for scan command")
            return EXIT_SCANNER_ERROR

        try:
            outcomes = self._run_scan(args, config)
        except PyroThorError as e:
            LOGGER.error(str(e))
            print(f"Scan failed: {e}")
            return exit_code_for_error(e)

        first_error: Optional[PyroThorError] = None
        has_findings = False
        for outcome in outcomes:
            if outcome.error is not None:
                LOGGER.error(str(outcome.error))
                print(f"Scan failed: {outcome.error}")
                first_error = first_error or outcome.error
                continue
            result = outcome.result
            self._print_summary(result, outcome.sink_errors)
            if result.findings or result.outcome == ScanOutcome.FINDINGS:
                has_findings = True

        if first_error is not None:
            return exit_code_for_error(first_error)
        if has_findings:
            return EXIT_ISSUES_FOUND
        return EXIT_SUCCESS

    def _run_scan(self, args: Namespace, config: PyroThorConfig) -> List[JobOutcome]:
        profile = resolve()
        LOGGER.info(f"Platform: {profile.os}-{profile.arch}")

        paths = PyroThorPaths.default()
        paths.ensure_directories()

        stream_handler: Optional[StreamHandler] = None
        if getattr(args, "debug", False):
            stream_handler = CLIStreamHandler()

        pipeline = ScanPipeline.from_config(
            config,
            profile,
            paths,
            stream_handler=stream_handler,
            submit=not getattr(args, "no_submit", False),
        )
        source = source_from_config(config)
        jobs = self._build_jobs(args, config)

        executor = ParallelJobExecutor(pipeline, config.max_workers)
        with cancel_on_signals(CancellationToken()) as token:
            return executor.execute(jobs, source, token)

    def _build_jobs(self, args: Namespace, config: PyroThorConfig) -> List[ScanJob]:
        """One job for all targets, or one job per target with ``--parallel``."""
        targets: List[str] = config.paths or [DEFAULT_SCAN_PATH]
        flags = config.scanner.job_flags(config.cache.enabled)
        scan_uuid = getattr(args, "scan_uuid", None)

        if not getattr(args, "parallel", False) or len(targets) == 1:
            return [
                ScanJob.create(
                    targets,
                    flags=flags,
                    timeout=config.scanner.timeout_seconds,
                    job_id=scan_uuid,
                )
            ]

        LOGGER.info(f"Scanning {len(targets)} paths as separate jobs")
        return [
            ScanJob.create(
                [target],
                flags=flags,
                timeout=config.scanner.timeout_seconds,
                job_id=f"{scan_uuid}-{index}" if scan_uuid else None,
            )
            for index, target in enumerate(targets, start=1)
        ]

    def _print_summary(self, result: ScanResult, sink_errors: List[str]) -> None:
        counts = result.severity_counts()
        breakdown = ", ".join(f"{sev}: {n}" for sev, n in counts.items() if n)
        print(f"Scan {result.job_id} finished ({result.outcome.value}, exit {result.exit_code})")
        print(f"Findings: {len(result.findings)}" + (f" ({breakdown})" if breakdown else ""))
        for warning in result.errors:
            print(f"Warning: {warning}")
        for error in sink_errors:
            print(f"Delivery failed: {error}")
