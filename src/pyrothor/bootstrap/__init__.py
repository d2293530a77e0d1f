"""
Bootstrap module for the scanner bundle.

This module handles:
- Platform detection (OS + architecture) and binary naming
- The ~/.pyrothor directory structure
- Acquiring and caching the scanner package
- Binary validation
"""

from pyrothor.bootstrap.platform import PlatformProfile, resolve
from pyrothor.bootstrap.paths import get_pyrothor_home, PyroThorPaths
from pyrothor.bootstrap.package import (
    ArchiveHandle,
    PackageAcquirer,
    PackageCache,
    PackageSource,
)
from pyrothor.bootstrap.validation import validate_binary, ToolStatus

__all__ = [
    "resolve",
    "PlatformProfile",
    "get_pyrothor_home",
    "PyroThorPaths",
    "ArchiveHandle",
    "PackageAcquirer",
    "PackageCache",
    "PackageSource",
    "validate_binary",
    "ToolStatus",
]
