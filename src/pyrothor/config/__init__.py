"""Configuration loading for pyrothor."""

from pyrothor.config.loader import default_config_yaml, load_config
from pyrothor.config.models import (
    CacheConfig,
    ControllerConfig,
    OutputConfig,
    PackageConfig,
    PyroThorConfig,
    ScannerConfig,
    WorkspaceConfig,
)

__all__ = [
    "CacheConfig",
    "ControllerConfig",
    "OutputConfig",
    "PackageConfig",
    "PyroThorConfig",
    "ScannerConfig",
    "WorkspaceConfig",
    "default_config_yaml",
    "load_config",
]
