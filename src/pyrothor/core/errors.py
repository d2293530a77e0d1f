"""Error taxonomy for the scan orchestration pipeline.

Every failure carries a stable ``kind`` string and, once it crosses the
job boundary, the identifier of the job it belongs to.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pyrothor.core.models import RawScanOutput


class PyroThorError(Exception):
    """Base class for all pyrothor errors."""

    kind: str = "error"

    def __init__(self, message: str, *, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def with_job(self, job_id: str) -> "PyroThorError":
        """Attach a job identifier if none is set yet and return self."""
        if self.job_id is None:
            self.job_id = job_id
        return self

    def __str__(self) -> str:
        if self.job_id:
            return f"[{self.kind}] job {self.job_id}: {self.message}"
        return f"[{self.kind}] {self.message}"


class ConfigError(PyroThorError):
    """Configuration loading or parsing error."""

    kind = "config"


class UnsupportedPlatformError(PyroThorError):
    """The host OS/architecture pair has no known scanner binary."""

    kind = "unsupported_platform"


class FailureClass(str, Enum):
    """Retry classification for network-facing failures."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"


class NetworkError(PyroThorError):
    """A network-facing operation failed.

    ``reason`` tells the retry policy whether another attempt can help.
    """

    kind_prefix = "network"

    def __init__(
        self,
        message: str,
        reason: FailureClass = FailureClass.PERMANENT,
        *,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, job_id=job_id)
        self.reason = FailureClass(reason)

    @property
    def kind(self) -> str:  # type: ignore[override]
        return f"{self.kind_prefix}_{self.reason.value}"

    @property
    def retryable(self) -> bool:
        return self.reason == FailureClass.TRANSIENT


class AcquisitionError(NetworkError):
    """The scanner package could not be obtained."""

    kind_prefix = "acquisition"


class SubmissionError(NetworkError):
    """Scan results could not be delivered to the fleet controller."""

    kind_prefix = "submission"


class StagingError(PyroThorError):
    """The workspace could not be prepared."""

    kind = "staging"


class ScanExecutionError(PyroThorError):
    """The scanner failed to run or reported an execution error."""

    kind = "scan_execution"

    def __init__(
        self,
        message: str,
        *,
        raw: Optional["RawScanOutput"] = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, job_id=job_id)
        self.raw = raw


class ScanTimeoutError(PyroThorError):
    """The scanner did not finish before the job deadline.

    ``raw`` holds whatever output was captured before termination.
    """

    kind = "scan_timeout"

    def __init__(
        self,
        message: str,
        *,
        raw: Optional["RawScanOutput"] = None,
        job_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, job_id=job_id)
        self.raw = raw


class ScanCancelledError(PyroThorError):
    """The job was cancelled by the caller."""

    kind = "scan_cancelled"
