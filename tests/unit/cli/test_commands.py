"""Tests for CLI helpers: config bridge and signal handling."""

from __future__ import annotations

import os
import signal
import sys
import threading

import pytest

from pyrothor.cli.arguments import build_parser
from pyrothor.cli.commands.scan import cancel_on_signals
from pyrothor.cli.config_bridge import ConfigBridge
from pyrothor.core.cancellation import CancellationToken


def _overrides(*argv: str):
    return ConfigBridge.args_to_overrides(build_parser().parse_args(list(argv)))


class TestConfigBridge:
    """Tests for CLI argument to config translation."""

    def test_no_options(self) -> None:
        assert _overrides("scan") == {}

    def test_scan_options(self) -> None:
        overrides = _overrides(
            "scan",
            "-p", "/srv",
            "-p", "/home",
            "-o", "out.json",
            "--timeout", "90",
            "--rule-cache",
            "--keep-workspace",
            "--no-submit",
        )
        assert overrides == {
            "paths": ["/srv", "/home"],
            "output": {"path": "out.json"},
            "scanner": {"timeout_seconds": 90.0},
            "cache": {"enabled": True},
            "workspace": {"cleanup": False},
            "controller": {"submit": False},
        }

    def test_enterprise_merges_with_timeout(self) -> None:
        overrides = _overrides("scan", "--timeout", "30", "--enterprise-mode")
        assert overrides == {"scanner": {"timeout_seconds": 30.0, "enterprise_mode": True}}

    def test_enterprise_alone(self) -> None:
        assert _overrides("scan", "--enterprise-mode") == {"scanner": {"enterprise_mode": True}}

    def test_remote_package(self) -> None:
        assert _overrides("scan", "--package", "https://c.example.com/x.zip") == {
            "package": {"url": "https://c.example.com/x.zip"}
        }

    def test_local_package_clears_url(self) -> None:
        assert _overrides("scan", "--package", "/opt/x.zip") == {
            "package": {"url": None, "local_path": "/opt/x.zip"}
        }

    def test_status_has_no_overrides(self) -> None:
        assert _overrides("status") == {}


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
class TestCancelOnSignals:
    def test_sigterm_cancels_token(self) -> None:
        before = signal.getsignal(signal.SIGTERM)
        with cancel_on_signals(CancellationToken()) as token:
            os.kill(os.getpid(), signal.SIGTERM)
            assert token.wait(5)
        assert "signal" in (token.reason or "")
        assert signal.getsignal(signal.SIGTERM) == before

    def test_worker_thread_leaves_handlers(self) -> None:
        before = signal.getsignal(signal.SIGINT)
        seen = []

        def _worker() -> None:
            with cancel_on_signals(CancellationToken()) as token:
                seen.append(signal.getsignal(signal.SIGINT))
                seen.append(token.cancelled)

        thread = threading.Thread(target=_worker)
        thread.start()
        thread.join()

        assert seen == [before, False]
