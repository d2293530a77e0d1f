"""Path management for the pyrothor home directory.

Handles the ~/.pyrothor directory structure and path resolution.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

# Default directory name under user home
DEFAULT_HOME_DIR_NAME = ".pyrothor"

# Environment variable to override home directory
PYROTHOR_HOME_ENV = "PYROTHOR_HOME"


def get_pyrothor_home() -> Path:
    """Get the pyrothor home directory path.

    Resolution order:
    1. PYROTHOR_HOME environment variable (if set)
    2. ~/.pyrothor (default)

    Returns:
        Path to the pyrothor home directory.
    """
    env_home = os.environ.get(PYROTHOR_HOME_ENV)
    if env_home:
        return Path(env_home)
    return Path.home() / DEFAULT_HOME_DIR_NAME


@dataclass
class PyroThorPaths:
    """Manages paths within the pyrothor home directory.

    Directory structure:
        ~/.pyrothor/
            cache/
                packages/{sha[:2]}/{sha}.zip  - Scanner bundles by content hash
                rules/{sha[:2]}/{sha}.*       - Compiled rule artifacts
            config/
                config.yml                    - Global configuration
            logs/
                pyrothor.log                  - Persistent log
                transcripts/{job_id}.log      - Scanner run transcripts
            reports/
                {job_id}.{ext}                - Raw scanner reports
    """

    home: Path

    # Subdirectory names
    _CACHE_DIR: ClassVar[str] = "cache"
    _CONFIG_DIR: ClassVar[str] = "config"
    _LOGS_DIR: ClassVar[str] = "logs"

    @classmethod
    def default(cls) -> "PyroThorPaths":
        """Create paths from the default pyrothor home."""
        return cls(get_pyrothor_home())

    @property
    def cache_dir(self) -> Path:
        return self.home / self._CACHE_DIR

    @property
    def package_cache_dir(self) -> Path:
        """Directory for downloaded scanner bundles."""
        return self.cache_dir / "packages"

    @property
    def rule_cache_dir(self) -> Path:
        """Directory for precompiled rule artifacts."""
        return self.cache_dir / "rules"

    @property
    def config_dir(self) -> Path:
        return self.home / self._CONFIG_DIR

    @property
    def global_config(self) -> Path:
        return self.config_dir / "config.yml"

    @property
    def logs_dir(self) -> Path:
        return self.home / self._LOGS_DIR

    @property
    def reports_dir(self) -> Path:
        """Raw scanner reports kept after their workspace is released."""
        return self.home / "reports"

    @property
    def log_file(self) -> Path:
        """Persistent pyrothor log."""
        return self.logs_dir / "pyrothor.log"

    @property
    def transcripts_dir(self) -> Path:
        return self.logs_dir / "transcripts"

    def transcript_path(self, job_id: str) -> Path:
        """Path of the transcript log for a job."""
        return self.transcripts_dir / f"{job_id}.log"

    def ensure_directories(self) -> None:
        """Create all required directories if they don't exist."""
        directories = [
            self.home,
            self.cache_dir,
            self.package_cache_dir,
            self.rule_cache_dir,
            self.config_dir,
            self.logs_dir,
            self.transcripts_dir,
            self.reports_dir,
        ]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)
