"""Tests for the single-job scan pipeline."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import pytest

from pyrothor.bootstrap.package import ArchiveHandle, PackageSource
from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.bootstrap.platform import PlatformProfile
from pyrothor.cache.rules import RuleAccelerator
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.cancellation import CancellationToken
from pyrothor.core.errors import (
    AcquisitionError,
    FailureClass,
    ScanCancelledError,
    ScanTimeoutError,
    StagingError,
    SubmissionError,
)
from pyrothor.core.models import RawScanOutput, ScanJob, ScanOutcome, Workspace
from pyrothor.pipeline.executor import TOOLS_PATH, ScanPipeline, source_from_config
from pyrothor.reporting.controller import ControllerSubmitter
from pyrothor.reporting.json_sink import JSONResultSink
from pyrothor.scanner.invoker import ScannerInvoker
from pyrothor.workspace.manager import WorkspaceManager

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")

SOURCE = PackageSource("/opt/bundle.zip")
REPORT = '{"findings": [{"rule": "EICAR", "target": "/tmp/x", "severity": "high"}]}'


def _raw(workspace: Workspace, job: ScanJob, report: bool = True, **kwargs) -> RawScanOutput:
    report_path = None
    if report:
        report_path = workspace.root_path / "scan_report.json"
        report_path.write_text(REPORT)
    defaults = dict(
        job_id=job.job_id,
        exit_code=1,
        outcome=ScanOutcome.FINDINGS,
        stdout="",
        stderr="",
        report_path=report_path,
        duration_ms=10,
    )
    defaults.update(kwargs)
    return RawScanOutput(**defaults)


@pytest.fixture
def archive(make_bundle: Callable[..., Path]) -> ArchiveHandle:
    path = make_bundle(scanner="#!/bin/sh\nexit 0\n")
    return ArchiveHandle(path=path, sha256="0" * 64, size=path.stat().st_size, source=str(path))


@pytest.fixture
def acquirer(archive: ArchiveHandle) -> MagicMock:
    mock = MagicMock()
    mock.acquire.return_value = archive
    return mock


@pytest.fixture
def invoker() -> MagicMock:
    return MagicMock(spec=ScannerInvoker)


@pytest.fixture
def manager(workspace_root: Path) -> WorkspaceManager:
    return WorkspaceManager(temp_root=workspace_root)


@pytest.fixture
def pipeline(
    linux_profile: PlatformProfile,
    acquirer: MagicMock,
    manager: WorkspaceManager,
    invoker: MagicMock,
    tmp_path: Path,
) -> ScanPipeline:
    return ScanPipeline(
        profile=linux_profile,
        acquirer=acquirer,
        workspace_manager=manager,
        invoker=invoker,
        report_dir=tmp_path / "reports",
    )


@posix_only
class TestScan:
    """Tests for ScanPipeline.scan."""

    def test_success(
        self,
        pipeline: ScanPipeline,
        invoker: MagicMock,
        workspace_root: Path,
        tmp_path: Path,
    ) -> None:
        invoker.invoke.side_effect = lambda ws, job, cancel, extra_flags: _raw(ws, job)
        job = ScanJob.create(["/tmp"], job_id="job-1")

        result = pipeline.scan(job, SOURCE)

        assert result.job_id == "job-1"
        assert result.outcome == ScanOutcome.FINDINGS
        assert [f.rule for f in result.findings] == ["EICAR"]
        assert result.raw_report_path == tmp_path / "reports" / "job-1.json"
        assert result.raw_report_path.read_text() == REPORT
        assert list(workspace_root.iterdir()) == []
        assert pipeline.workspace_manager.live_workspaces() == []

    def test_clean_without_report(self, pipeline: ScanPipeline, invoker: MagicMock) -> None:
        invoker.invoke.side_effect = lambda ws, job, cancel, extra_flags: _raw(
            ws, job, report=False, exit_code=0, outcome=ScanOutcome.CLEAN
        )
        result = pipeline.scan(ScanJob.create(["/tmp"]), SOURCE)

        assert result.findings == ()
        assert result.raw_report_path is None
        assert not result.degraded

    def test_timeout_releases_workspace_and_keeps_partial(
        self,
        pipeline: ScanPipeline,
        invoker: MagicMock,
        workspace_root: Path,
        tmp_path: Path,
    ) -> None:
        def _timeout(ws, job, cancel, extra_flags):
            raw = _raw(ws, job, outcome=ScanOutcome.ERROR, exit_code=-15, timed_out=True)
            raise ScanTimeoutError("deadline passed", raw=raw)

        invoker.invoke.side_effect = _timeout

        with pytest.raises(ScanTimeoutError) as exc_info:
            pipeline.scan(ScanJob.create(["/tmp"], job_id="job-2"), SOURCE)

        assert exc_info.value.job_id == "job-2"
        assert exc_info.value.raw.report_path == tmp_path / "reports" / "job-2.json"
        assert list(workspace_root.iterdir()) == []

    def test_unexpected_error_releases_workspace(
        self, pipeline: ScanPipeline, invoker: MagicMock, workspace_root: Path
    ) -> None:
        invoker.invoke.side_effect = RuntimeError("bug")
        with pytest.raises(RuntimeError):
            pipeline.scan(ScanJob.create(["/tmp"]), SOURCE)
        assert list(workspace_root.iterdir()) == []

    def test_acquisition_failure_stops_early(
        self,
        pipeline: ScanPipeline,
        acquirer: MagicMock,
        invoker: MagicMock,
        workspace_root: Path,
    ) -> None:
        acquirer.acquire.side_effect = AcquisitionError("HTTP 404", FailureClass.PERMANENT)

        with pytest.raises(AcquisitionError) as exc_info:
            pipeline.scan(ScanJob.create(["/tmp"], job_id="job-3"), SOURCE)

        assert exc_info.value.job_id == "job-3"
        invoker.invoke.assert_not_called()
        assert list(workspace_root.iterdir()) == []

    def test_staging_failure(
        self,
        linux_profile: PlatformProfile,
        acquirer: MagicMock,
        manager: WorkspaceManager,
        invoker: MagicMock,
        make_bundle: Callable[..., Path],
        workspace_root: Path,
    ) -> None:
        bundle = make_bundle(scanner=None, name="empty.zip")
        acquirer.acquire.return_value = ArchiveHandle(bundle, "1" * 64, 1, str(bundle))
        pipeline = ScanPipeline(linux_profile, acquirer, manager, invoker)

        with pytest.raises(StagingError):
            pipeline.scan(ScanJob.create(["/tmp"]), SOURCE)

        invoker.invoke.assert_not_called()
        assert list(workspace_root.iterdir()) == []

    def test_cancelled_before_start(
        self, pipeline: ScanPipeline, acquirer: MagicMock
    ) -> None:
        token = CancellationToken()
        token.cancel("shutdown")

        with pytest.raises(ScanCancelledError) as exc_info:
            pipeline.scan(ScanJob.create(["/tmp"], job_id="job-4"), SOURCE, cancel=token)

        assert exc_info.value.job_id == "job-4"
        acquirer.acquire.assert_not_called()

    def test_rule_accelerator_hooks(
        self,
        linux_profile: PlatformProfile,
        acquirer: MagicMock,
        manager: WorkspaceManager,
        invoker: MagicMock,
    ) -> None:
        accelerator = MagicMock(spec=RuleAccelerator)
        accelerator.prepare.return_value = ["--precompiled-rules", "/x"]
        invoker.invoke.side_effect = lambda ws, job, cancel, extra_flags: _raw(ws, job)
        pipeline = ScanPipeline(linux_profile, acquirer, manager, invoker, accelerator=accelerator)

        pipeline.scan(ScanJob.create(["/tmp"]), SOURCE)

        assert invoker.invoke.call_args.kwargs["extra_flags"] == ["--precompiled-rules", "/x"]
        accelerator.harvest.assert_called_once()

    def test_degraded_report(self, pipeline: ScanPipeline, invoker: MagicMock) -> None:
        def _broken(ws, job, cancel, extra_flags):
            path = ws.root_path / "scan_report.json"
            path.write_text("{not json")
            return _raw(ws, job, report=False, report_path=path)

        invoker.invoke.side_effect = _broken
        result = pipeline.scan(ScanJob.create(["/tmp"]), SOURCE)

        assert result.degraded
        assert result.findings == ()

    def test_run_publishes_despite_sink_failure(
        self,
        linux_profile: PlatformProfile,
        acquirer: MagicMock,
        manager: WorkspaceManager,
        invoker: MagicMock,
    ) -> None:
        sink = MagicMock()
        sink.name = "json"
        sink.emit.side_effect = OSError("disk full")
        invoker.invoke.side_effect = lambda ws, job, cancel, extra_flags: _raw(ws, job)
        pipeline = ScanPipeline(linux_profile, acquirer, manager, invoker, sinks=[sink])

        result = pipeline.run(ScanJob.create(["/tmp"]), SOURCE)

        sink.emit.assert_called_once_with(result)
        assert len(result.findings) == 1


class TestPublish:
    """Tests for result sinks."""

    def _pipeline(self, linux_profile: PlatformProfile, sinks) -> ScanPipeline:
        return ScanPipeline(linux_profile, MagicMock(), MagicMock(), MagicMock(), sinks=sinks)

    def test_all_sinks_called(self, linux_profile: PlatformProfile) -> None:
        first, second = MagicMock(), MagicMock()
        result = MagicMock(job_id="job-1")

        errors = self._pipeline(linux_profile, [first, second]).publish(result)

        assert errors == []
        first.emit.assert_called_once_with(result)
        second.emit.assert_called_once_with(result)

    def test_failures_collected(self, linux_profile: PlatformProfile) -> None:
        failing = MagicMock()
        failing.name = "controller"
        failing.emit.side_effect = SubmissionError("HTTP 500", FailureClass.TRANSIENT)
        broken_disk = MagicMock()
        broken_disk.name = "json"
        broken_disk.emit.side_effect = OSError("disk full")
        healthy = MagicMock()

        errors = self._pipeline(linux_profile, [failing, broken_disk, healthy]).publish(
            MagicMock(job_id="job-1")
        )

        assert len(errors) == 2
        assert errors[0].startswith("controller: ")
        assert "job-1" in errors[0]
        assert errors[1] == "json: disk full"
        healthy.emit.assert_called_once()


class TestFromConfig:
    def test_wires_sinks(self, linux_profile: PlatformProfile, tmp_path: Path) -> None:
        config = PyroThorConfig()
        config.output.path = str(tmp_path / "out.json")
        config.controller.endpoint = "https://controller.example.com"

        pipeline = ScanPipeline.from_config(config, linux_profile, PyroThorPaths(tmp_path / "home"))

        sinks = pipeline.sinks
        assert isinstance(sinks[0], JSONResultSink)
        assert isinstance(sinks[1], ControllerSubmitter)
        assert sinks[1].url == "https://controller.example.com/api/scan-results"

    def test_no_submit(self, linux_profile: PlatformProfile, tmp_path: Path) -> None:
        config = PyroThorConfig()
        config.controller.endpoint = "https://controller.example.com"

        pipeline = ScanPipeline.from_config(
            config, linux_profile, PyroThorPaths(tmp_path / "home"), submit=False
        )
        assert [sink.name for sink in pipeline.sinks] == ["json"]

    def test_no_endpoint(self, linux_profile: PlatformProfile, tmp_path: Path) -> None:
        pipeline = ScanPipeline.from_config(
            PyroThorConfig(), linux_profile, PyroThorPaths(tmp_path / "home")
        )
        assert [sink.name for sink in pipeline.sinks] == ["json"]


class TestSourceFromConfig:
    """Tests for package source selection."""

    def test_explicit_url(self) -> None:
        config = PyroThorConfig()
        config.package.url = "https://cdn.example.com/bundle.zip"
        config.package.sha256 = "ab" * 32
        config.controller.api_key = "k"

        source = source_from_config(config)

        assert source.location == "https://cdn.example.com/bundle.zip"
        assert source.sha256 == "ab" * 32
        assert source.api_key == "k"

    def test_existing_local_file(self, tmp_path: Path) -> None:
        (tmp_path / "bundle.zip").write_bytes(b"x")
        config = PyroThorConfig()
        config.package.local_path = "bundle.zip"
        config.controller.endpoint = "https://controller.example.com"

        source = source_from_config(config, base_dir=tmp_path)

        assert not source.is_remote
        assert source.path == tmp_path / "bundle.zip"

    def test_controller_tool_route(self, tmp_path: Path) -> None:
        config = PyroThorConfig()
        config.package.local_path = "bundle.zip"
        config.controller.endpoint = "https://controller.example.com/"
        config.controller.api_key = "k"

        source = source_from_config(config, base_dir=tmp_path)

        assert source.location == "https://controller.example.com" + TOOLS_PATH + "bundle.zip"
        assert source.api_key == "k"

    def test_missing_local_without_endpoint(self, tmp_path: Path) -> None:
        config = PyroThorConfig()
        config.package.local_path = "missing.zip"
        source = source_from_config(config, base_dir=tmp_path)
        assert source.location == str(tmp_path / "missing.zip")
