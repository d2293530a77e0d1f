from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from pyrothor.core.errors import ConfigError

# Job ids name transcript and report files, so they must be plain file names
JOB_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,127}")


class Severity(str, Enum):
    """Unified severity levels for scanner findings."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ScanOutcome(str, Enum):
    """Classification of a finished scanner process."""

    CLEAN = "clean"
    FINDINGS = "findings"
    ERROR = "error"


@dataclass
class ScanJob:
    """A single scan request.

    Owned by the pipeline for the duration of one run. ``deadline`` is a
    wall-clock instant; the invoker converts it to a remaining timeout.
    """

    job_id: str
    target_paths: List[Path]
    flags: FrozenSet[str] = frozenset()
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    deadline: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not JOB_ID_PATTERN.fullmatch(self.job_id):
            raise ConfigError(
                f"Invalid job id {self.job_id!r}: use letters, digits, '_', '-' or '.'"
            )

    @classmethod
    def create(
        cls,
        targets: Iterable[Any],
        flags: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        job_id: Optional[str] = None,
    ) -> "ScanJob":
        """Build a job starting now.

        Args:
            targets: Filesystem paths to scan, in order.
            flags: Extra scanner flags for this job only.
            timeout: Seconds from now until the job deadline.
            job_id: Caller-supplied identifier (e.g. a scan UUID).
        """
        started = datetime.now(timezone.utc)
        deadline = started + timedelta(seconds=timeout) if timeout is not None else None
        return cls(
            job_id=job_id or uuid.uuid4().hex,
            target_paths=[Path(t) for t in targets],
            flags=frozenset(flags or ()),
            started_at=started,
            deadline=deadline,
        )

    def remaining_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds left until the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0.0, (self.deadline - now).total_seconds())


@dataclass
class Workspace:
    """An isolated directory holding one job's staged scanner."""

    root_path: Path
    job_id: str
    binary_path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    owned_files: Set[Path] = field(default_factory=set)
    released: bool = False


@dataclass(frozen=True)
class RawScanOutput:
    """Everything captured from one scanner run."""

    job_id: str
    exit_code: Optional[int]
    outcome: ScanOutcome
    stdout: str
    stderr: str
    report_path: Optional[Path]
    duration_ms: int
    command: Tuple[str, ...] = ()
    timed_out: bool = False


@dataclass(frozen=True)
class Finding:
    """One detection reported by the scanner."""

    rule: str
    target: str
    severity: Severity
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "target": self.target,
            "severity": self.severity.value,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ScanResult:
    """Normalized result of one scan job. Immutable once built."""

    job_id: str
    exit_code: Optional[int]
    raw_report_path: Optional[Path]
    findings: Tuple[Finding, ...] = ()
    duration_ms: int = 0
    errors: Tuple[str, ...] = ()
    outcome: ScanOutcome = ScanOutcome.CLEAN
    schema_version: str = "1.0"

    @property
    def degraded(self) -> bool:
        """True when the report could not be fully parsed."""
        return bool(self.errors)

    def severity_counts(self) -> Dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "schema_version": self.schema_version,
            "job_id": self.job_id,
            "exit_code": self.exit_code,
            "outcome": self.outcome.value,
            "raw_report_path": str(self.raw_report_path) if self.raw_report_path else None,
            "duration_ms": self.duration_ms,
            "findings": [finding.to_dict() for finding in self.findings],
            "errors": list(self.errors),
            "summary": self.severity_counts(),
        }
