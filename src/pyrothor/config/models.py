"""Configuration data models for pyrothor.

Defines typed configuration classes for the scanner, package source,
workspace, controller, rule cache and output settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from pyrothor.bootstrap.package import DEFAULT_FETCH_TIMEOUT, DEFAULT_PACKAGE_NAME
from pyrothor.bootstrap.platform import DEFAULT_BINARY_PREFIX
from pyrothor.core.retry import RetryPolicy
from pyrothor.scanner.exit_codes import ExitCodeTable
from pyrothor.scanner.invoker import (
    DEFAULT_FLAGS,
    DEFAULT_REPORT_NAME,
    DEFAULT_TIMEOUT_SECONDS,
)
from pyrothor.workspace.manager import DEFAULT_BINARY_DIR

# Paths never worth handing to a file scanner
DEFAULT_EXCLUDE_PATHS = [
    "/proc",
    "/sys",
    "/dev",
    "C:\\Windows\\System32",
]

# Scanner flags that switch on the enterprise feature set
DEFAULT_ENTERPRISE_FLAGS = ["--enterprise-mode", "--ai-enhanced"]

# Added to the enterprise flags when the rule cache is active
DEFAULT_ENTERPRISE_CACHE_FLAGS = ["--redb-optimized"]

DEFAULT_MAX_FILE_SIZE_MB = 100

DEFAULT_OUTPUT_PATH = "scan_results.json"


@dataclass
class ScannerConfig:
    """How the scanner binary is located, invoked and interpreted."""

    flags: List[str] = field(default_factory=lambda: list(DEFAULT_FLAGS))
    binary_dir: str = DEFAULT_BINARY_DIR
    binary_prefix: str = DEFAULT_BINARY_PREFIX
    report_name: str = DEFAULT_REPORT_NAME
    report_format: str = "auto"
    path_flag: Optional[str] = "--path"
    rebase_flag: Optional[str] = "--rebase-dir"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    grace_seconds: float = 5.0
    exit_codes: ExitCodeTable = field(default_factory=ExitCodeTable)
    exclude_paths: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATHS))
    max_file_size_mb: int = DEFAULT_MAX_FILE_SIZE_MB
    enterprise_mode: bool = False
    enterprise_flags: List[str] = field(default_factory=lambda: list(DEFAULT_ENTERPRISE_FLAGS))
    enterprise_cache_flags: List[str] = field(
        default_factory=lambda: list(DEFAULT_ENTERPRISE_CACHE_FLAGS)
    )

    def job_flags(self, rule_cache_enabled: bool = False) -> List[str]:
        """Per-job scanner flags implied by this configuration."""
        if not self.enterprise_mode:
            return []
        flags = list(self.enterprise_flags)
        if rule_cache_enabled:
            flags.extend(self.enterprise_cache_flags)
        return flags


@dataclass
class PackageConfig:
    """Where the scanner bundle comes from and how it is verified."""

    url: Optional[str] = None
    local_path: str = DEFAULT_PACKAGE_NAME
    sha256: Optional[str] = None
    size: Optional[int] = None
    timeout_seconds: float = DEFAULT_FETCH_TIMEOUT
    allow_insecure: bool = False
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class WorkspaceConfig:
    """Workspace placement and lifetime."""

    temp_root: Optional[Path] = None
    cleanup: bool = True


@dataclass
class ControllerConfig:
    """Fleet controller endpoint used for package download and result upload."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 300.0
    allow_insecure: bool = False
    submit: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class CacheConfig:
    """Rule acceleration cache settings."""

    enabled: bool = False
    directory: Optional[Path] = None
    rules_dir: str = "custom-signatures/yara"
    compiled_dir: str = "compiled-rules"
    flag: Optional[str] = "--precompiled-rules"


@dataclass
class OutputConfig:
    """Local result file."""

    path: str = DEFAULT_OUTPUT_PATH


@dataclass
class PyroThorConfig:
    """Complete pyrothor configuration.

    Attributes:
        scanner: Scanner invocation settings.
        package: Scanner bundle source.
        workspace: Workspace settings.
        controller: Fleet controller settings.
        cache: Rule acceleration cache settings.
        output: Local output settings.
        paths: Default scan targets when none are given on the command line.
        max_workers: Concurrent jobs for multi-job runs.
    """

    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    package: PackageConfig = field(default_factory=PackageConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    paths: List[str] = field(default_factory=list)
    max_workers: int = 4

    # Metadata (not from YAML)
    _config_sources: List[str] = field(default_factory=list, repr=False)

    @property
    def sources(self) -> List[str]:
        """Where this configuration was loaded from, lowest precedence first."""
        return list(self._config_sources)
