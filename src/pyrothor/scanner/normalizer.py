"""Normalization of raw scanner reports into ScanResult.

Supported report shapes:
- JSON document ``{"findings": [...]}`` or a bare JSON array of findings
- JSON lines, one event per line (Thor ``--json`` style)
- XML ``<findings><finding .../></findings>``

Parse failures never raise: they yield a result with no findings and an
entry in ``errors``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import defusedxml.ElementTree as ElementTree  # type: ignore[import-untyped]
from defusedxml import DefusedXmlException  # type: ignore[import-untyped]

from pyrothor.core.logging import get_logger
from pyrothor.core.models import Finding, RawScanOutput, ScanOutcome, ScanResult, Severity

LOGGER = get_logger(__name__)

REPORT_FORMATS = ("auto", "json", "jsonl", "xml")

# Scanner severity/level names mapped to unified severity
SEVERITY_MAP: Dict[str, Severity] = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "alert": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "notice": Severity.LOW,
    "info": Severity.INFO,
    "informational": Severity.INFO,
}

# Event levels in JSON-lines reports that are status output, not findings
_NON_FINDING_LEVELS = frozenset({"info", "debug", "error"})

_RULE_KEYS = ("rule", "rule_name", "signature", "reason")
_TARGET_KEYS = ("target", "file", "path", "filepath")
_SEVERITY_KEYS = ("severity", "level")


class ReportParseError(ValueError):
    """The report could not be parsed. Recovered inside the normalizer."""


def severity_from_score(score: float) -> Severity:
    """Map a numeric scanner score to a severity."""
    if score >= 100:
        return Severity.HIGH
    if score >= 60:
        return Severity.MEDIUM
    if score >= 40:
        return Severity.LOW
    return Severity.INFO


def _lookup(record: Dict[str, Any], keys: Tuple[str, ...]) -> Tuple[Optional[str], Optional[Any]]:
    lowered = {str(k).lower(): k for k in record}
    for key in keys:
        original = lowered.get(key)
        if original is not None and record[original] not in (None, ""):
            return original, record[original]
    return None, None


def _first_reason(record: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    reasons = record.get("reasons") or record.get("REASONS")
    if isinstance(reasons, list) and reasons and isinstance(reasons[0], dict):
        return reasons[0]
    return None


class ResultNormalizer:
    """Turns RawScanOutput into an immutable ScanResult.

    ``normalize`` has no side effects, so calling it twice on the same
    input yields equal results.
    """

    def __init__(self, report_format: str = "auto") -> None:
        if report_format not in REPORT_FORMATS:
            raise ValueError(
                f"Unknown report format: {report_format}. Supported: {', '.join(REPORT_FORMATS)}"
            )
        self._format = report_format

    def normalize(self, raw: RawScanOutput) -> ScanResult:
        errors: List[str] = []
        findings: List[Finding] = []

        text = self._read_report(raw.report_path, errors)
        if text is None or not text.strip():
            if raw.outcome != ScanOutcome.CLEAN or raw.timed_out:
                errors.append("Scanner report missing or empty")
        else:
            try:
                records, lenient = self._parse(text)
            except ReportParseError as e:
                LOGGER.warning(f"[job {raw.job_id}] Could not parse scanner report: {e}")
                errors.append(f"Report parse failure: {e}")
            else:
                findings = self._to_findings(records, lenient, errors)

        return ScanResult(
            job_id=raw.job_id,
            exit_code=raw.exit_code,
            raw_report_path=raw.report_path,
            findings=tuple(findings),
            duration_ms=raw.duration_ms,
            errors=tuple(errors),
            outcome=raw.outcome,
        )

    def _read_report(self, path: Optional[Path], errors: List[str]) -> Optional[str]:
        if path is None:
            return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
        except OSError as e:
            errors.append(f"Cannot read report {path}: {e}")
            return None

    def _parse(self, text: str) -> Tuple[List[Any], bool]:
        """Parse report text into raw records.

        Returns:
            (records, lenient) where lenient means records that are not
            findings should be skipped silently (JSON-lines event streams).
        """
        fmt = self._format
        stripped = text.lstrip()
        if fmt == "xml" or (fmt == "auto" and stripped.startswith("<")):
            return self._parse_xml(text), False
        if fmt == "jsonl":
            return self._parse_json_lines(text), True

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            if fmt == "json":
                raise ReportParseError(f"invalid JSON: {e}") from e
            return self._parse_json_lines(text), True

        if isinstance(data, list):
            return data, False
        if isinstance(data, dict):
            if "findings" in data:
                if not isinstance(data["findings"], list):
                    raise ReportParseError("'findings' is not a list")
                return data["findings"], False
            # Single event document
            return [data], True
        raise ReportParseError(f"unexpected top-level JSON type {type(data).__name__}")

    def _parse_json_lines(self, text: str) -> List[Any]:
        records: List[Any] = []
        for line_num, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ReportParseError(f"invalid JSON on line {line_num}: {e.msg}") from e
        return records

    def _parse_xml(self, text: str) -> List[Any]:
        try:
            root = ElementTree.fromstring(text)
        except (ElementTree.ParseError, DefusedXmlException) as e:
            raise ReportParseError(f"invalid XML: {e}") from e
        records: List[Dict[str, Any]] = []
        for elem in root.iter("finding"):
            record: Dict[str, Any] = dict(elem.attrib)
            for child in elem:
                if child.text is not None:
                    record[child.tag] = child.text.strip()
            records.append(record)
        return records

    def _to_findings(self, records: List[Any], lenient: bool, errors: List[str]) -> List[Finding]:
        findings: List[Finding] = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                if not lenient:
                    errors.append(f"Finding {index} is not an object")
                continue
            finding = self._to_finding(record, lenient, errors, index)
            if finding is not None:
                findings.append(finding)
        return findings

    def _to_finding(
        self,
        record: Dict[str, Any],
        lenient: bool,
        errors: List[str],
        index: int,
    ) -> Optional[Finding]:
        reason = _first_reason(record)

        rule_key, rule = _lookup(record, _RULE_KEYS)
        if rule is None and reason is not None:
            _, rule = _lookup(reason, ("signature", "rule", "name"))
        target_key, target = _lookup(record, _TARGET_KEYS)
        severity_key, severity_value = _lookup(record, _SEVERITY_KEYS)

        if lenient:
            level = str(severity_value).lower() if severity_value is not None else ""
            if rule is None or level in _NON_FINDING_LEVELS:
                return None
        elif rule is None:
            errors.append(f"Finding {index} has no rule")
            return None

        severity = self._severity(record, severity_value, reason, errors, index)
        used = {k for k in (rule_key, target_key, severity_key, "metadata") if k is not None}
        nested = record.get("metadata")
        metadata: Dict[str, Any] = dict(nested) if isinstance(nested, dict) else {}
        metadata.update((k, v) for k, v in record.items() if k not in used)

        return Finding(
            rule=str(rule),
            target=str(target) if target is not None else "",
            severity=severity,
            metadata=metadata,
        )

    def _severity(
        self,
        record: Dict[str, Any],
        value: Optional[Any],
        reason: Optional[Dict[str, Any]],
        errors: List[str],
        index: int,
    ) -> Severity:
        if value is not None:
            mapped = SEVERITY_MAP.get(str(value).strip().lower())
            if mapped is not None:
                return mapped
            errors.append(f"Finding {index} has unknown severity {value!r}; using info")
            return Severity.INFO

        for source in (record, reason or {}):
            _, score = _lookup(source, ("score",))
            if score is not None:
                try:
                    return severity_from_score(float(score))
                except (TypeError, ValueError):
                    break
        return Severity.INFO
