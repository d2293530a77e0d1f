"""JSON file sink for scan results."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import IO

from pyrothor.core.logging import get_logger
from pyrothor.core.models import ScanResult
from pyrothor.reporting.base import ResultSink

LOGGER = get_logger(__name__)


def write_json(result: ScanResult, output: IO[str]) -> None:
    """Format a scan result as JSON and write it to ``output``."""
    json.dump(result.to_dict(), output, indent=2)
    output.write("\n")


class JSONResultSink(ResultSink):
    """Writes each result to a JSON file, replacing it atomically."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def name(self) -> str:
        return "json"

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, result: ScanResult) -> None:
        target = self._path
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                write_json(result, f)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        LOGGER.info(f"[job {result.job_id}] Scan results saved to: {target}")
