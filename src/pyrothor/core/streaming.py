"""Stream handler abstraction for scanner output.

Provides a unified interface for routing scanner output lines:
- Transcript: append every line to a per-job log file
- CLI: echo lines to the console
- Null: No-op
"""

from __future__ import annotations

import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)


class StreamType(str, Enum):
    """Type of stream output."""

    STDOUT = "stdout"
    STDERR = "stderr"
    STATUS = "status"


@dataclass
class StreamEvent:
    """A single line produced while a tool runs."""

    tool_name: str
    stream_type: StreamType
    content: str
    line_number: Optional[int] = None


class StreamHandler(ABC):
    """Abstract base class for stream handlers.

    Implementations must be thread-safe: stdout and stderr are read by
    separate threads.
    """

    @abstractmethod
    def emit(self, event: StreamEvent) -> None:
        """Emit a stream event."""

    @abstractmethod
    def start_tool(self, tool_name: str, command: Sequence[str], cwd: Path) -> None:
        """Signal that a tool has started execution."""

    @abstractmethod
    def end_tool(self, tool_name: str, exit_code: Optional[int], duration_ms: int) -> None:
        """Signal that a tool has finished execution."""


class NullStreamHandler(StreamHandler):
    """No-op handler."""

    def emit(self, event: StreamEvent) -> None:
        pass

    def start_tool(self, tool_name: str, command: Sequence[str], cwd: Path) -> None:
        pass

    def end_tool(self, tool_name: str, exit_code: Optional[int], duration_ms: int) -> None:
        pass


class TranscriptStreamHandler(StreamHandler):
    """Writes a transcript of one scanner run to a log file.

    The file gets a header with the command line, one tagged line per
    output line, and a footer with the exit code and duration. Failures to
    write are logged once and otherwise ignored; a transcript is never
    allowed to fail a scan.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._file: Optional[TextIO] = None
        self._failed = False

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, text: str) -> None:
        if self._failed:
            return
        try:
            if self._file is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._file = open(self._path, "a", encoding="utf-8")
            self._file.write(text)
            self._file.flush()
        except OSError as e:
            self._failed = True
            LOGGER.warning(f"Transcript disabled, cannot write {self._path}: {e}")

    def emit(self, event: StreamEvent) -> None:
        with self._lock:
            self._write(f"[{event.stream_type.value}] {event.content}\n")

    def start_tool(self, tool_name: str, command: Sequence[str], cwd: Path) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._write(f"# tool: {tool_name}\n")
            self._write(f"# started: {now}\n")
            self._write(f"# cwd: {cwd}\n")
            self._write(f"# command: {' '.join(command)}\n")

    def end_tool(self, tool_name: str, exit_code: Optional[int], duration_ms: int) -> None:
        with self._lock:
            self._write(f"# exit_code: {exit_code}\n")
            self._write(f"# duration_ms: {duration_ms}\n")
            if self._file is not None:
                try:
                    self._file.close()
                except OSError:
                    pass
                self._file = None


class CLIStreamHandler(StreamHandler):
    """Echoes scanner output to the console, prefixed with the tool name."""

    def __init__(self, output: TextIO = sys.stderr) -> None:
        self._output = output
        self._lock = threading.Lock()

    def emit(self, event: StreamEvent) -> None:
        with self._lock:
            self._output.write(f"  {event.tool_name}: {event.content}\n")
            self._output.flush()

    def start_tool(self, tool_name: str, command: Sequence[str], cwd: Path) -> None:
        with self._lock:
            self._output.write(f"[{tool_name}] Starting...\n")

    def end_tool(self, tool_name: str, exit_code: Optional[int], duration_ms: int) -> None:
        with self._lock:
            self._output.write(
                f"[{tool_name}] Finished with exit code {exit_code} "
                f"in {duration_ms / 1000:.1f}s\n"
            )


class CompositeStreamHandler(StreamHandler):
    """Fans events out to several handlers."""

    def __init__(self, handlers: List[StreamHandler]) -> None:
        self._handlers = list(handlers)

    def emit(self, event: StreamEvent) -> None:
        for handler in self._handlers:
            handler.emit(event)

    def start_tool(self, tool_name: str, command: Sequence[str], cwd: Path) -> None:
        for handler in self._handlers:
            handler.start_tool(tool_name, command, cwd)

    def end_tool(self, tool_name: str, exit_code: Optional[int], duration_ms: int) -> None:
        for handler in self._handlers:
            handler.end_tool(tool_name, exit_code, duration_ms)
