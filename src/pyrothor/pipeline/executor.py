"""Pipeline executor for orchestrating one scan job.

Stages, strictly in order for a job:
1. Acquire the scanner package
2. Stage a workspace from it
3. Invoke the scanner (with cached rule artifacts when available)
4. Normalize the report
5. Release the workspace
6. Publish the result to the configured sinks
"""

from __future__ import annotations

import shutil
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

from pyrothor.bootstrap.package import PackageAcquirer, PackageCache, PackageSource
from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.bootstrap.platform import PlatformProfile
from pyrothor.cache.rules import RuleAccelerator, create_rule_cache
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.cancellation import CancellationToken, NeverCancelled
from pyrothor.core.errors import PyroThorError, ScanExecutionError, ScanTimeoutError
from pyrothor.core.logging import get_logger
from pyrothor.core.models import RawScanOutput, ScanJob, ScanResult
from pyrothor.core.streaming import StreamHandler
from pyrothor.reporting.base import ResultSink
from pyrothor.reporting.controller import ControllerSubmitter
from pyrothor.reporting.json_sink import JSONResultSink
from pyrothor.scanner.invoker import ScannerInvoker
from pyrothor.scanner.normalizer import ResultNormalizer
from pyrothor.workspace.manager import WorkspaceManager

LOGGER = get_logger(__name__)

# Controller route serving tool bundles by name
TOOLS_PATH = "/api/tools/"


def source_from_config(config: PyroThorConfig, base_dir: Optional[Path] = None) -> PackageSource:
    """Decide where the scanner package comes from.

    Order: an explicit ``package.url``, then an existing ``package.local_path``,
    then the controller's tool route, then the local path as given (which
    fails as not found at acquisition time).
    """
    package = config.package
    controller = config.controller
    local = Path(package.local_path).expanduser()
    if base_dir is not None and not local.is_absolute():
        local = base_dir / local

    common = dict(
        sha256=package.sha256,
        size=package.size,
        timeout=package.timeout_seconds,
    )
    if package.url:
        return PackageSource(
            location=package.url,
            api_key=controller.api_key,
            allow_insecure=package.allow_insecure,
            **common,
        )
    if local.is_file() or not controller.endpoint:
        return PackageSource(location=str(local), **common)
    return PackageSource(
        location=controller.endpoint.rstrip("/") + TOOLS_PATH + local.name,
        api_key=controller.api_key,
        allow_insecure=controller.allow_insecure or package.allow_insecure,
        **common,
    )


class ScanPipeline:
    """Runs one job at a time through acquire, stage, invoke and normalize.

    A single instance is safe to share between threads: components hold
    no per-job state, and each job gets its own workspace.
    """

    def __init__(
        self,
        profile: PlatformProfile,
        acquirer: PackageAcquirer,
        workspace_manager: WorkspaceManager,
        invoker: ScannerInvoker,
        normalizer: Optional[ResultNormalizer] = None,
        accelerator: Optional[RuleAccelerator] = None,
        sinks: Optional[Sequence[ResultSink]] = None,
        report_dir: Optional[Path] = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            profile: Platform profile resolved once at startup.
            acquirer: Package acquirer.
            workspace_manager: Creates and releases workspaces.
            invoker: Scanner invoker.
            normalizer: Report normalizer.
            accelerator: Rule cache bridge; a disabled cache by default.
            sinks: Result sinks run after each job.
            report_dir: Where raw reports are copied before the workspace
                is released. When None, ``raw_report_path`` refers to the
                released workspace.
        """
        self._profile = profile
        self._acquirer = acquirer
        self._workspaces = workspace_manager
        self._invoker = invoker
        self._normalizer = normalizer or ResultNormalizer()
        self._accelerator = accelerator or RuleAccelerator(create_rule_cache(False, None))
        self._sinks: List[ResultSink] = list(sinks or [])
        self._report_dir = report_dir

    @classmethod
    def from_config(
        cls,
        config: PyroThorConfig,
        profile: PlatformProfile,
        paths: PyroThorPaths,
        stream_handler: Optional[StreamHandler] = None,
        submit: bool = True,
    ) -> "ScanPipeline":
        """Wire all components from configuration."""
        scanner = config.scanner
        acquirer = PackageAcquirer(
            PackageCache(paths.package_cache_dir),
            retry_policy=config.package.retry,
        )
        workspaces = WorkspaceManager(
            temp_root=config.workspace.temp_root,
            binary_dir=scanner.binary_dir,
            binary_prefix=scanner.binary_prefix,
            cleanup=config.workspace.cleanup,
        )
        invoker = ScannerInvoker(
            profile,
            flags=scanner.flags,
            exit_codes=scanner.exit_codes,
            report_name=scanner.report_name,
            path_flag=scanner.path_flag,
            rebase_flag=scanner.rebase_flag,
            exclude_patterns=scanner.exclude_paths,
            max_file_size_mb=scanner.max_file_size_mb,
            default_timeout=scanner.timeout_seconds,
            grace_seconds=scanner.grace_seconds,
            transcript_dir=paths.transcripts_dir,
            stream_handler=stream_handler,
        )
        rule_cache = create_rule_cache(
            config.cache.enabled,
            config.cache.directory or paths.rule_cache_dir,
        )
        accelerator = RuleAccelerator(
            rule_cache,
            rules_dir=config.cache.rules_dir,
            compiled_dir=config.cache.compiled_dir,
            flag=config.cache.flag,
        )

        sinks: List[ResultSink] = [JSONResultSink(Path(config.output.path))]
        controller = config.controller
        if submit and controller.submit and controller.endpoint:
            sinks.append(
                ControllerSubmitter(
                    controller.endpoint,
                    api_key=controller.api_key,
                    timeout=controller.timeout_seconds,
                    retry_policy=controller.retry,
                    allow_insecure=controller.allow_insecure,
                )
            )

        return cls(
            profile=profile,
            acquirer=acquirer,
            workspace_manager=workspaces,
            invoker=invoker,
            normalizer=ResultNormalizer(scanner.report_format),
            accelerator=accelerator,
            sinks=sinks,
            report_dir=paths.reports_dir,
        )

    @property
    def workspace_manager(self) -> WorkspaceManager:
        return self._workspaces

    @property
    def sinks(self) -> List[ResultSink]:
        return list(self._sinks)

    def run(
        self,
        job: ScanJob,
        source: PackageSource,
        cancel: Optional[CancellationToken] = None,
    ) -> ScanResult:
        """Scan and publish. Sink failures are logged, not raised."""
        result = self.scan(job, source, cancel)
        self.publish(result)
        return result

    def scan(
        self,
        job: ScanJob,
        source: PackageSource,
        cancel: Optional[CancellationToken] = None,
    ) -> ScanResult:
        """Run one job up to a normalized result.

        The workspace is released before this returns or raises.

        Raises:
            PyroThorError: Any stage failure, tagged with ``job.job_id``.
        """
        token = cancel or NeverCancelled()
        LOGGER.info(f"[job {job.job_id}] Starting scan of {len(job.target_paths)} target(s)")
        try:
            token.raise_if_cancelled(job.job_id)
            archive = self._acquirer.acquire(source, token)
            token.raise_if_cancelled(job.job_id)

            with ExitStack() as stack:
                workspace = stack.enter_context(
                    self._workspaces.staged(archive, self._profile, job.job_id)
                )
                extra_flags = self._accelerator.prepare(workspace)
                try:
                    raw = self._invoker.invoke(workspace, job, token, extra_flags=extra_flags)
                except (ScanTimeoutError, ScanExecutionError) as e:
                    if e.raw is not None:
                        e.raw = self._keep_report(e.raw)
                    raise
                self._accelerator.harvest(workspace)
                raw = self._keep_report(raw)
                result = self._normalizer.normalize(raw)
        except PyroThorError as e:
            LOGGER.error(f"[job {job.job_id}] Scan failed: {e.message}")
            raise e.with_job(job.job_id)

        if result.degraded:
            LOGGER.warning(
                f"[job {job.job_id}] Completed with degraded output: {'; '.join(result.errors)}"
            )
        LOGGER.info(
            f"[job {job.job_id}] Scan complete: {len(result.findings)} finding(s) "
            f"in {result.duration_ms} ms"
        )
        return result

    def publish(self, result: ScanResult) -> List[str]:
        """Hand the result to every sink. Returns sink error messages."""
        errors: List[str] = []
        for sink in self._sinks:
            try:
                sink.emit(result)
            except PyroThorError as e:
                e.with_job(result.job_id)
                LOGGER.error(f"[job {result.job_id}] Result sink '{sink.name}' failed: {e}")
                errors.append(f"{sink.name}: {e}")
            except OSError as e:
                LOGGER.error(f"[job {result.job_id}] Result sink '{sink.name}' failed: {e}")
                errors.append(f"{sink.name}: {e}")
        return errors

    def _keep_report(self, raw: RawScanOutput) -> RawScanOutput:
        """Copy the report out of the workspace so it survives release."""
        if self._report_dir is None or raw.report_path is None or not raw.report_path.is_file():
            return raw
        dest = self._report_dir / f"{raw.job_id}{raw.report_path.suffix or '.txt'}"
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(raw.report_path, dest)
        except OSError as e:
            LOGGER.warning(f"[job {raw.job_id}] Could not keep raw report: {e}")
            return raw
        return replace(raw, report_path=dest)
