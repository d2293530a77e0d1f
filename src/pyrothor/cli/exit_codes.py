"""Process exit codes for the pyrothor CLI."""

from __future__ import annotations

from pyrothor.core.errors import (
    AcquisitionError,
    ConfigError,
    PyroThorError,
    ScanCancelledError,
    ScanTimeoutError,
    StagingError,
    UnsupportedPlatformError,
)

EXIT_SUCCESS = 0
EXIT_ISSUES_FOUND = 1
EXIT_SCANNER_ERROR = 2
EXIT_INVALID_USAGE = 3
EXIT_BOOTSTRAP_FAILURE = 4
EXIT_TIMEOUT = 5
EXIT_CANCELLED = 130


def exit_code_for_error(error: PyroThorError) -> int:
    """Map a pipeline error to the CLI exit code."""
    if isinstance(error, ConfigError):
        return EXIT_INVALID_USAGE
    if isinstance(error, (UnsupportedPlatformError, AcquisitionError, StagingError)):
        return EXIT_BOOTSTRAP_FAILURE
    if isinstance(error, ScanTimeoutError):
        return EXIT_TIMEOUT
    if isinstance(error, ScanCancelledError):
        return EXIT_CANCELLED
    return EXIT_SCANNER_ERROR
