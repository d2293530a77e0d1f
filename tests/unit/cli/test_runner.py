"""Tests for the CLI runner."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest

from pyrothor.cli import main
from pyrothor.cli.exit_codes import (
    EXIT_BOOTSTRAP_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_ISSUES_FOUND,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
)
from pyrothor.cli.runner import CLIRunner, get_version
from pyrothor.core.errors import AcquisitionError, FailureClass, ScanTimeoutError
from pyrothor.core.models import Finding, ScanOutcome, ScanResult, Severity


@pytest.fixture(autouse=True)
def in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run every CLI test from an empty working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestGlobalOptions:
    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["--version"]) == EXIT_SUCCESS
        assert capsys.readouterr().out.strip() == get_version()

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert CLIRunner().run([]) == EXIT_SUCCESS
        assert "usage: pyrothor" in capsys.readouterr().out

    def test_help(self) -> None:
        assert CLIRunner().run(["--help"]) == EXIT_SUCCESS

    def test_unknown_option(self) -> None:
        assert CLIRunner().run(["scan", "--bogus"]) == EXIT_INVALID_USAGE


class TestInitConfig:
    def test_writes_default(self, in_tmp: Path) -> None:
        assert CLIRunner().run(["init-config"]) == EXIT_SUCCESS
        assert "controller:" in (in_tmp / "pyrothor.yml").read_text()

    def test_refuses_overwrite(self, in_tmp: Path) -> None:
        (in_tmp / "pyrothor.yml").write_text("# mine\n")
        assert CLIRunner().run(["init-config"]) == EXIT_INVALID_USAGE
        assert (in_tmp / "pyrothor.yml").read_text() == "# mine\n"

    def test_force(self, in_tmp: Path) -> None:
        target = in_tmp / "conf" / "custom.yml"
        target.parent.mkdir()
        target.write_text("# mine\n")
        assert CLIRunner().run(["init-config", str(target), "--force"]) == EXIT_SUCCESS
        assert "scanner:" in target.read_text()


class TestStatus:
    def test_prints_overview(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert CLIRunner().run(["status"]) == EXIT_SUCCESS
        out = capsys.readouterr().out
        assert "pyrothor version:" in out
        assert "Package cache:" in out
        assert "Rule cache (disabled):" in out
        assert "Config sources: built-in defaults" in out

    def test_invalid_config(self, in_tmp: Path) -> None:
        (in_tmp / "pyrothor.yml").write_text("scanner:\n  timeout_seconds: forever\n")
        assert CLIRunner().run(["status"]) == EXIT_INVALID_USAGE

    def test_missing_config_file(self, in_tmp: Path) -> None:
        assert CLIRunner().run(["status", "--config", str(in_tmp / "nope.yml")]) == EXIT_INVALID_USAGE


class TestRules:
    def test_requires_subcommand(self) -> None:
        assert CLIRunner().run(["rules"]) == EXIT_INVALID_USAGE

    def test_sync_missing_directory(self, in_tmp: Path) -> None:
        assert CLIRunner().run(["rules", "sync", str(in_tmp / "nope")]) == EXIT_INVALID_USAGE

    def test_sync(self, in_tmp: Path, capsys: pytest.CaptureFixture[str]) -> None:
        rules = in_tmp / "rules"
        rules.mkdir()
        (rules / "a.yar").write_text("rule a { condition: true }\n")

        assert CLIRunner().run(["rules", "sync", str(rules)]) == EXIT_SUCCESS

        out = capsys.readouterr().out
        assert f"Rules in {rules}: 1" in out
        assert "missing: 1" in out


def _scan_result(findings=()) -> ScanResult:
    return ScanResult(
        job_id="job-1",
        exit_code=1 if findings else 0,
        raw_report_path=None,
        findings=tuple(findings),
        outcome=ScanOutcome.FINDINGS if findings else ScanOutcome.CLEAN,
    )


class TestScan:
    """Tests for the scan command with the pipeline mocked out."""

    @pytest.fixture
    def pipeline_cls(self) -> Iterator[MagicMock]:
        with patch("pyrothor.cli.commands.scan.ScanPipeline") as pipeline_cls:
            pipeline_cls.from_config.return_value.publish.return_value = []
            yield pipeline_cls

    @pytest.fixture
    def pipeline(self, pipeline_cls: MagicMock) -> MagicMock:
        return pipeline_cls.from_config.return_value

    def test_clean(self, pipeline: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        pipeline.scan.return_value = _scan_result()

        assert CLIRunner().run(["scan", "--path", "/tmp", "--scan-uuid", "job-1"]) == EXIT_SUCCESS

        job = pipeline.scan.call_args.args[0]
        assert job.job_id == "job-1"
        assert [str(p) for p in job.target_paths] == ["/tmp"]
        assert job.deadline is not None
        assert "Scan job-1 finished (clean, exit 0)" in capsys.readouterr().out

    def test_findings(self, pipeline: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        pipeline.scan.return_value = _scan_result([Finding("EICAR", "/tmp/x", Severity.HIGH)])
        pipeline.publish.return_value = ["controller: HTTP 503"]

        assert CLIRunner().run(["scan", "-p", "/tmp"]) == EXIT_ISSUES_FOUND

        out = capsys.readouterr().out
        assert "Findings: 1 (high: 1)" in out
        assert "Delivery failed: controller: HTTP 503" in out

    def test_default_path(self, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        CLIRunner().run(["scan"])
        job = pipeline.scan.call_args.args[0]
        assert [p.as_posix() for p in job.target_paths] == ["/"]

    def test_timeout_exit_code(self, pipeline: MagicMock) -> None:
        pipeline.scan.side_effect = ScanTimeoutError("deadline", job_id="job-1")
        assert CLIRunner().run(["scan", "--timeout", "1"]) == EXIT_TIMEOUT

    def test_acquisition_exit_code(self, pipeline: MagicMock) -> None:
        pipeline.scan.side_effect = AcquisitionError("HTTP 404", FailureClass.PERMANENT)
        assert CLIRunner().run(["scan"]) == EXIT_BOOTSTRAP_FAILURE
        pipeline.publish.assert_not_called()

    def test_no_submit_forwarded(self, pipeline_cls: MagicMock, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        CLIRunner().run(["scan", "--no-submit"])
        assert pipeline_cls.from_config.call_args.kwargs["submit"] is False

    def test_path_like_scan_uuid_rejected(self, pipeline: MagicMock) -> None:
        code = CLIRunner().run(["scan", "--scan-uuid", "abc/../../escaped"])
        assert code == EXIT_INVALID_USAGE
        pipeline.scan.assert_not_called()

    def test_enterprise_flags(self, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        assert CLIRunner().run(["scan", "-p", "/tmp", "--enterprise-mode"]) == EXIT_SUCCESS
        job = pipeline.scan.call_args.args[0]
        assert job.flags == frozenset({"--enterprise-mode", "--ai-enhanced"})

    def test_enterprise_flags_with_rule_cache(self, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        code = CLIRunner().run(["scan", "-p", "/tmp", "--enterprise-mode", "--rule-cache"])
        assert code == EXIT_SUCCESS
        job = pipeline.scan.call_args.args[0]
        assert "--redb-optimized" in job.flags

    def test_no_enterprise_flags_by_default(self, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        CLIRunner().run(["scan", "-p", "/tmp", "--rule-cache"])
        assert pipeline.scan.call_args.args[0].flags == frozenset()

    def test_parallel_one_job_per_path(
        self, pipeline: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        pipeline.scan.return_value = _scan_result()
        code = CLIRunner().run(
            ["scan", "-p", "/srv", "-p", "/home", "--parallel", "--scan-uuid", "batch"]
        )
        assert code == EXIT_SUCCESS
        jobs = [call.args[0] for call in pipeline.scan.call_args_list]
        assert sorted(job.job_id for job in jobs) == ["batch-1", "batch-2"]
        assert sorted(str(job.target_paths[0]) for job in jobs) == ["/home", "/srv"]
        assert all(len(job.target_paths) == 1 for job in jobs)
        assert pipeline.publish.call_count == 2

    def test_parallel_failure_wins_over_findings(
        self, pipeline: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        def scan(job, source, cancel):
            if str(job.target_paths[0]) == "/srv":
                raise ScanTimeoutError("deadline", job_id=job.job_id)
            return _scan_result([Finding("EICAR", "/home/x", Severity.HIGH)])

        pipeline.scan.side_effect = scan
        code = CLIRunner().run(["scan", "-p", "/srv", "-p", "/home", "--parallel"])
        assert code == EXIT_TIMEOUT
        out = capsys.readouterr().out
        assert "Scan failed: [timeout]" in out
        assert "Findings: 1 (high: 1)" in out

    def test_without_parallel_paths_share_one_job(self, pipeline: MagicMock) -> None:
        pipeline.scan.return_value = _scan_result()
        CLIRunner().run(["scan", "-p", "/srv", "-p", "/home"])
        assert pipeline.scan.call_count == 1
        job = pipeline.scan.call_args.args[0]
        assert [str(p) for p in job.target_paths] == ["/srv", "/home"]
