"""Antivirus exclusion for workspaces on Windows.

The host's own antivirus quarantines the scanner's signature files unless
the workspace is excluded for the duration of the scan. The exclusion is
a scoped resource: added before the scanner starts and removed on every
exit path.
"""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from pyrothor.bootstrap.platform import PlatformProfile
from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)

# Seconds allowed for each PowerShell call
POWERSHELL_TIMEOUT = 60


class ExclusionManager(ABC):
    """Adds and removes an antivirus path exclusion."""

    @abstractmethod
    def add(self, path: Path) -> None:
        """Exclude ``path`` from real-time scanning."""

    @abstractmethod
    def remove(self, path: Path) -> None:
        """Revert a previous ``add``."""

    @contextmanager
    def excluded(self, path: Path) -> Iterator[Path]:
        """Keep ``path`` excluded while the block runs."""
        self.add(path)
        try:
            yield path
        finally:
            self.remove(path)


class NullExclusion(ExclusionManager):
    """No-op exclusion for platforms without Defender."""

    def add(self, path: Path) -> None:
        pass

    def remove(self, path: Path) -> None:
        pass


class DefenderExclusion(ExclusionManager):
    """Windows Defender exclusion via ``Add-MpPreference``/``Remove-MpPreference``.

    Failures are logged as warnings; a missing exclusion degrades the
    scan but does not abort it.
    """

    def _command(self, cmdlet: str, path: Path) -> List[str]:
        quoted = str(path).replace("'", "''")
        return [
            "powershell",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command",
            f"{cmdlet} -ExclusionPath '{quoted}'",
        ]

    def _run(self, cmdlet: str, path: Path) -> None:
        try:
            result = subprocess.run(
                self._command(cmdlet, path),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=POWERSHELL_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            LOGGER.warning(f"{cmdlet} failed for {path}: {e}")
            return
        if result.returncode != 0:
            LOGGER.warning(f"{cmdlet} failed for {path}: {result.stderr.strip()}")
        else:
            LOGGER.debug(f"{cmdlet} succeeded for {path}")

    def add(self, path: Path) -> None:
        self._run("Add-MpPreference", path)

    def remove(self, path: Path) -> None:
        self._run("Remove-MpPreference", path)


def exclusion_for(profile: PlatformProfile) -> ExclusionManager:
    """Select the exclusion implementation for a platform."""
    if profile.is_windows:
        return DefenderExclusion()
    return NullExclusion()
