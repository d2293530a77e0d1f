"""Pluggable mapping from scanner exit codes to scan outcomes.

The meaning of a non-zero exit code is scanner specific, so the mapping
is data loaded from configuration rather than logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional

from pyrothor.core.models import ScanOutcome


def _codes(values: Optional[Iterable[Any]]) -> FrozenSet[int]:
    return frozenset(int(v) for v in (values or ()))


@dataclass(frozen=True)
class ExitCodeTable:
    """Classifies exit codes as clean, findings present, or execution error.

    Attributes:
        clean: Codes meaning the scan found nothing.
        findings: Codes meaning the scan completed with findings.
        error: Codes meaning the scanner failed.
        positive_is_findings: Treat unlisted positive codes as findings
            instead of errors.
    """

    clean: FrozenSet[int] = frozenset({0})
    findings: FrozenSet[int] = frozenset({1})
    error: FrozenSet[int] = frozenset()
    positive_is_findings: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExitCodeTable":
        """Build a table from a config mapping; missing keys keep defaults."""
        if not data:
            return cls()
        default = cls()
        return cls(
            clean=_codes(data["clean"]) if "clean" in data else default.clean,
            findings=_codes(data["findings"]) if "findings" in data else default.findings,
            error=_codes(data["error"]) if "error" in data else default.error,
            positive_is_findings=bool(
                data.get("positive_is_findings", default.positive_is_findings)
            ),
        )

    def classify(self, exit_code: Optional[int]) -> ScanOutcome:
        """Map an exit code to an outcome.

        ``None`` (no exit status) and negative codes (killed by a signal)
        are always errors. Explicit entries win over the positive-code rule.
        """
        if exit_code is None or exit_code < 0:
            return ScanOutcome.ERROR
        if exit_code in self.error:
            return ScanOutcome.ERROR
        if exit_code in self.clean:
            return ScanOutcome.CLEAN
        if exit_code in self.findings:
            return ScanOutcome.FINDINGS
        if exit_code > 0 and self.positive_is_findings:
            return ScanOutcome.FINDINGS
        return ScanOutcome.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clean": sorted(self.clean),
            "findings": sorted(self.findings),
            "error": sorted(self.error),
            "positive_is_findings": self.positive_is_findings,
        }
