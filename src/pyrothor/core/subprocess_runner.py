"""Subprocess runner with deadline and cancellation support.

Runs an external tool, streams its output line by line to a
StreamHandler, and races the process's natural completion against a
deadline and an external cancellation token. Whichever happens first
wins; a losing process is terminated, then killed after a grace period.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional, Sequence, Union

from pyrothor.core.cancellation import CancellationToken, NeverCancelled
from pyrothor.core.logging import get_logger
from pyrothor.core.streaming import (
    NullStreamHandler,
    StreamEvent,
    StreamHandler,
    StreamType,
)

LOGGER = get_logger(__name__)

# How often the monitor loop checks exit, deadline and cancellation
DEFAULT_POLL_INTERVAL = 0.1

# Seconds between terminate and kill
DEFAULT_GRACE_SECONDS = 5.0

_IS_WINDOWS = sys.platform == "win32"


@dataclass
class ProcessResult:
    """Captured outcome of one process run."""

    args: List[str]
    returncode: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    cancelled: bool = False

    @property
    def killed_by_signal(self) -> bool:
        return self.returncode is not None and self.returncode < 0


def _read_stream(
    stream: IO[str],
    stream_type: StreamType,
    lines: List[str],
    tool_name: str,
    handler: StreamHandler,
) -> None:
    """Read lines from a pipe until EOF."""
    try:
        for line_num, line in enumerate(stream, 1):
            line = line.rstrip("\n\r")
            lines.append(line)
            handler.emit(
                StreamEvent(
                    tool_name=tool_name,
                    stream_type=stream_type,
                    content=line,
                    line_number=line_num,
                )
            )
    except (OSError, ValueError) as e:
        # Pipe closed underneath us after the process was killed
        LOGGER.debug(f"{tool_name} {stream_type.value} reader stopped: {e}")
    finally:
        try:
            stream.close()
        except OSError:
            pass


def _signal_process(proc: subprocess.Popen, sig: int) -> None:
    """Send a signal to the process (group on POSIX)."""
    if proc.poll() is not None:
        return
    try:
        if _IS_WINDOWS:
            if sig == signal.SIGTERM:
                proc.terminate()
            else:
                proc.kill()
        else:
            os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError, OSError) as e:
        LOGGER.debug(f"Could not signal pid {proc.pid}: {e}")


def terminate_process(proc: subprocess.Popen, grace_seconds: float) -> None:
    """Terminate a process, escalating to kill after ``grace_seconds``."""
    _signal_process(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_seconds)
        return
    except subprocess.TimeoutExpired:
        pass
    kill_signal = signal.SIGTERM if _IS_WINDOWS else signal.SIGKILL
    LOGGER.warning(f"Process {proc.pid} ignored termination, killing it")
    _signal_process(proc, kill_signal)
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        LOGGER.error(f"Process {proc.pid} could not be killed")


def run_with_deadline(
    cmd: Sequence[str],
    cwd: Union[str, Path],
    tool_name: str,
    stream_handler: Optional[StreamHandler] = None,
    timeout: Optional[float] = None,
    cancel: Optional[CancellationToken] = None,
    grace_seconds: float = DEFAULT_GRACE_SECONDS,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> ProcessResult:
    """Run a command until it exits, the deadline passes or it is cancelled.

    Output is always captured; partial output is returned even when the
    process is terminated.

    Args:
        cmd: Command and arguments to run.
        cwd: Working directory for the command.
        tool_name: Name of the tool (used in stream events).
        stream_handler: Handler receiving every output line.
        timeout: Seconds to wait before terminating, or None for no limit.
        cancel: Token that aborts the wait when set.
        grace_seconds: Time between terminate and kill.
        poll_interval: Monitor loop interval in seconds.

    Returns:
        ProcessResult with the exit code and captured output.

    Raises:
        OSError: If the command cannot be started.
    """
    handler = stream_handler or NullStreamHandler()
    token = cancel or NeverCancelled()
    args = [str(c) for c in cmd]
    cwd_path = Path(cwd)

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []

    popen_kwargs = {}
    if not _IS_WINDOWS:
        # Own process group so the whole tree can be signalled
        popen_kwargs["start_new_session"] = True

    started = time.monotonic()
    deadline = started + timeout if timeout is not None else None

    handler.start_tool(tool_name, args, cwd_path)
    proc = subprocess.Popen(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        cwd=str(cwd_path),
        **popen_kwargs,
    )
    LOGGER.debug(f"Started {tool_name} as pid {proc.pid}")

    readers = [
        threading.Thread(
            target=_read_stream,
            args=(proc.stdout, StreamType.STDOUT, stdout_lines, tool_name, handler),
            daemon=True,
        ),
        threading.Thread(
            target=_read_stream,
            args=(proc.stderr, StreamType.STDERR, stderr_lines, tool_name, handler),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    timed_out = False
    cancelled = False
    try:
        while proc.poll() is None:
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                LOGGER.warning(f"{tool_name} exceeded its deadline of {timeout}s")
                break
            if token.cancelled:
                cancelled = True
                LOGGER.warning(f"{tool_name} cancelled: {token.reason}")
                break
            wait_for = poll_interval
            if deadline is not None:
                wait_for = max(0.0, min(poll_interval, deadline - time.monotonic()))
            token.wait(wait_for)
    finally:
        if proc.poll() is None:
            terminate_process(proc, grace_seconds)

    for reader in readers:
        reader.join(timeout=grace_seconds)

    duration_ms = int((time.monotonic() - started) * 1000)
    returncode = proc.returncode
    handler.end_tool(tool_name, returncode, duration_ms)

    return ProcessResult(
        args=args,
        returncode=returncode,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        duration_ms=duration_ms,
        timed_out=timed_out,
        cancelled=cancelled,
    )
