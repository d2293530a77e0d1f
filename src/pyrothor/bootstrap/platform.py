"""Platform detection for the scanner bundle.

Detects OS and architecture and maps them to the scanner binary that
ships in the bundle for that platform.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from pyrothor.core.errors import UnsupportedPlatformError

# Supported operating systems (normalized)
SUPPORTED_OS = frozenset({"windows", "linux", "macos"})

# Supported architectures (normalized)
SUPPORTED_ARCH = frozenset({"x86", "x64", "arm64"})

# Default scanner binary prefix inside the bundle
DEFAULT_BINARY_PREFIX = "thor-lite"

_OS_MAP = {
    "windows": "windows",
    "linux": "linux",
    "darwin": "macos",
    "macos": "macos",
}

# Architecture normalization map
_ARCH_MAP = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "arm64": "arm64",
    "aarch64": "arm64",
}

# (os, arch) -> binary suffix as named in the bundle.
# Pairs missing here have no scanner build.
BINARY_SUFFIXES: Dict[Tuple[str, str], str] = {
    ("windows", "x86"): "x86.exe",
    ("windows", "x64"): "x86_64.exe",
    ("linux", "x64"): "x86_64",
    ("linux", "arm64"): "aarch64",
    ("macos", "x64"): "x86_64",
    ("macos", "arm64"): "aarch64",
}

# Temporary roots that survive reboots on Unix and are writable by every
# account on Windows.
_TEMP_ROOTS = {
    "windows": Path("C:/Users/Public"),
    "linux": Path("/var/tmp"),
    "macos": Path("/var/tmp"),
}


def normalize_os(system: str) -> Optional[str]:
    """Normalize an OS name from platform.system() to standard form."""
    return _OS_MAP.get(system.lower())


def normalize_arch(machine: str) -> Optional[str]:
    """Normalize architecture string to standard form.

    Args:
        machine: Raw architecture string from platform.machine()

    Returns:
        Normalized architecture string or None if unknown.
    """
    return _ARCH_MAP.get(machine.lower())


@dataclass(frozen=True)
class PlatformProfile:
    """Immutable description of the host platform.

    Computed once at startup and passed explicitly to every component
    that needs it.

    Attributes:
        os: Operating system (windows, linux, macos).
        arch: CPU architecture (x86, x64, arm64).
        binary_suffix: Suffix of the scanner binary for this platform.
        is_executable_extension_required: Whether binaries need ``.exe``.
    """

    os: str
    arch: str
    binary_suffix: str
    is_executable_extension_required: bool

    @property
    def is_windows(self) -> bool:
        return self.os == "windows"

    @property
    def executable_extension(self) -> str:
        return ".exe" if self.is_executable_extension_required else ""

    @property
    def temp_root(self) -> Path:
        """Default parent directory for workspaces."""
        return _TEMP_ROOTS[self.os]

    def binary_name(self, prefix: str = DEFAULT_BINARY_PREFIX) -> str:
        """Return the scanner binary file name, e.g. ``thor-lite_x86_64``."""
        return f"{prefix}_{self.binary_suffix}"


def profile_for(os_name: str, arch: str) -> PlatformProfile:
    """Build the profile for a normalized (os, arch) pair.

    Raises:
        UnsupportedPlatformError: If no scanner binary exists for the pair.
    """
    suffix = BINARY_SUFFIXES.get((os_name, arch))
    if suffix is None:
        supported = ", ".join(f"{o}-{a}" for o, a in sorted(BINARY_SUFFIXES))
        raise UnsupportedPlatformError(
            f"No scanner binary for {os_name}-{arch}. Supported: {supported}"
        )
    return PlatformProfile(
        os=os_name,
        arch=arch,
        binary_suffix=suffix,
        is_executable_extension_required=os_name == "windows",
    )


def resolve() -> PlatformProfile:
    """Detect the host platform and return its profile.

    Returns:
        PlatformProfile for the current host.

    Raises:
        UnsupportedPlatformError: If the OS, the architecture or the
            combination of both has no scanner binary.
    """
    system = platform.system()
    os_name = normalize_os(system)
    if os_name is None:
        raise UnsupportedPlatformError(
            f"Unsupported operating system: {system}. "
            f"Supported: {', '.join(sorted(SUPPORTED_OS))}"
        )

    machine = platform.machine()
    arch = normalize_arch(machine)
    if arch is None:
        raise UnsupportedPlatformError(
            f"Unsupported architecture: {machine}. "
            f"Supported: {', '.join(sorted(SUPPORTED_ARCH))}"
        )

    return profile_for(os_name, arch)
