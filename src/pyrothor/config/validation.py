"""Configuration validation for pyrothor.

Warns on unknown keys (with a close-match suggestion) and reports values
of the wrong type as errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)


class ValidationSeverity(Enum):
    """Severity level for validation issues."""

    ERROR = "error"  # Config will fail at runtime
    WARNING = "warning"  # Likely mistake but config usable


@dataclass
class ConfigValidationIssue:
    """A validation issue for configuration with severity."""

    message: str
    source: str
    severity: ValidationSeverity
    key: Optional[str] = None
    suggestion: Optional[str] = None


# Type names used in the schema below
_STR = "string"
_OPT_STR = "string or null"
_INT = "integer"
_OPT_INT = "integer or null"
_NUM = "number"
_BOOL = "boolean"
_STR_LIST = "list of strings"
_MAPPING = "mapping"

# Valid keys per section and the type each one expects
SECTION_SCHEMAS: Dict[str, Dict[str, str]] = {
    "scanner": {
        "flags": _STR_LIST,
        "binary_dir": _STR,
        "binary_prefix": _STR,
        "report_name": _STR,
        "report_format": _STR,
        "path_flag": _OPT_STR,
        "rebase_flag": _OPT_STR,
        "timeout_seconds": _NUM,
        "grace_seconds": _NUM,
        "exit_codes": _MAPPING,
        "exclude_paths": _STR_LIST,
        "max_file_size_mb": _INT,
        "enterprise_mode": _BOOL,
        "enterprise_flags": _STR_LIST,
        "enterprise_cache_flags": _STR_LIST,
    },
    "package": {
        "url": _OPT_STR,
        "local_path": _STR,
        "sha256": _OPT_STR,
        "size": _OPT_INT,
        "timeout_seconds": _NUM,
        "allow_insecure": _BOOL,
        "retry": _MAPPING,
    },
    "workspace": {
        "temp_root": _OPT_STR,
        "cleanup": _BOOL,
    },
    "controller": {
        "endpoint": _OPT_STR,
        "api_key": _OPT_STR,
        "timeout_seconds": _NUM,
        "allow_insecure": _BOOL,
        "submit": _BOOL,
        "retry": _MAPPING,
    },
    "cache": {
        "enabled": _BOOL,
        "directory": _OPT_STR,
        "rules_dir": _STR,
        "compiled_dir": _STR,
        "flag": _OPT_STR,
    },
    "output": {
        "path": _STR,
    },
}

# Valid top-level keys
VALID_TOP_LEVEL_KEYS: Set[str] = set(SECTION_SCHEMAS) | {"version", "paths", "max_workers"}

VALID_RETRY_KEYS: Set[str] = {"max_attempts", "initial_delay", "backoff_factor", "max_delay"}

VALID_EXIT_CODE_KEYS: Set[str] = {"clean", "findings", "error", "positive_is_findings"}

VALID_REPORT_FORMATS: Set[str] = {"auto", "json", "jsonl", "xml"}


def _matches(value: Any, expected: str) -> bool:
    # bool is an int subclass; never accept it where a number is expected
    if expected == _STR:
        return isinstance(value, str)
    if expected == _OPT_STR:
        return value is None or isinstance(value, str)
    if expected == _INT:
        return isinstance(value, int) and not isinstance(value, bool)
    if expected == _OPT_INT:
        return value is None or (isinstance(value, int) and not isinstance(value, bool))
    if expected == _NUM:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == _BOOL:
        return isinstance(value, bool)
    if expected == _STR_LIST:
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    if expected == _MAPPING:
        return isinstance(value, dict)
    return True


def validate_config(
    data: Dict[str, Any],
    source: str,
) -> List[ConfigValidationIssue]:
    """Validate a configuration dictionary.

    Unknown keys produce warnings; wrong value types produce errors.
    Every issue is also logged.

    Args:
        data: Config dictionary to validate.
        source: Source file path for messages.

    Returns:
        List of validation issues.
    """
    issues: List[ConfigValidationIssue] = []

    if not isinstance(data, dict):
        issues.append(ConfigValidationIssue(
            message=f"Config must be a mapping, got {type(data).__name__}",
            source=source,
            severity=ValidationSeverity.ERROR,
        ))
        return issues

    issues.extend(_unknown_keys(data, VALID_TOP_LEVEL_KEYS, source, prefix=""))

    paths = data.get("paths")
    if paths is not None and not _matches(paths, _STR_LIST):
        issues.append(_type_issue("paths", _STR_LIST, paths, source))

    max_workers = data.get("max_workers")
    if max_workers is not None and (not _matches(max_workers, _INT) or max_workers < 1):
        issues.append(_type_issue("max_workers", "positive integer", max_workers, source))

    for section, schema in SECTION_SCHEMAS.items():
        section_data = data.get(section)
        if section_data is None:
            continue
        if not isinstance(section_data, dict):
            issues.append(_type_issue(section, _MAPPING, section_data, source))
            continue
        issues.extend(_validate_section(section, section_data, schema, source))

    for issue in issues:
        _log_issue(issue)
    return issues


def _validate_section(
    section: str,
    data: Dict[str, Any],
    schema: Dict[str, str],
    source: str,
) -> List[ConfigValidationIssue]:
    issues = _unknown_keys(data, set(schema), source, prefix=f"{section}.")

    for key, expected in schema.items():
        if key not in data:
            continue
        value = data[key]
        if not _matches(value, expected):
            issues.append(_type_issue(f"{section}.{key}", expected, value, source))
            continue
        if key == "retry":
            issues.extend(_unknown_keys(value, VALID_RETRY_KEYS, source, prefix=f"{section}.retry."))
            for retry_key in VALID_RETRY_KEYS & set(value):
                if not _matches(value[retry_key], _NUM):
                    issues.append(
                        _type_issue(f"{section}.retry.{retry_key}", _NUM, value[retry_key], source)
                    )
        elif key == "exit_codes":
            issues.extend(_validate_exit_codes(value, source))
        elif key == "report_format" and value not in VALID_REPORT_FORMATS:
            issues.append(ConfigValidationIssue(
                message=f"Invalid value '{value}' for 'scanner.report_format'. "
                        f"Valid values: {', '.join(sorted(VALID_REPORT_FORMATS))}",
                source=source,
                severity=ValidationSeverity.ERROR,
                key="scanner.report_format",
                suggestion=_suggest_key(value, VALID_REPORT_FORMATS),
            ))
    return issues


def _validate_exit_codes(data: Dict[str, Any], source: str) -> List[ConfigValidationIssue]:
    issues = _unknown_keys(data, VALID_EXIT_CODE_KEYS, source, prefix="scanner.exit_codes.")
    for key in ("clean", "findings", "error"):
        codes = data.get(key)
        if codes is None:
            continue
        if not isinstance(codes, list) or not all(
            isinstance(c, int) and not isinstance(c, bool) for c in codes
        ):
            issues.append(_type_issue(f"scanner.exit_codes.{key}", "list of integers", codes, source))
    flag = data.get("positive_is_findings")
    if flag is not None and not isinstance(flag, bool):
        issues.append(_type_issue("scanner.exit_codes.positive_is_findings", _BOOL, flag, source))
    return issues


def _unknown_keys(
    data: Dict[str, Any],
    valid: Set[str],
    source: str,
    prefix: str,
) -> List[ConfigValidationIssue]:
    issues = []
    for key in data:
        if key in valid:
            continue
        where = "top-level key" if not prefix else "key"
        issues.append(ConfigValidationIssue(
            message=f"Unknown {where} '{prefix}{key}'",
            source=source,
            severity=ValidationSeverity.WARNING,
            key=f"{prefix}{key}",
            suggestion=_suggest_key(str(key), valid),
        ))
    return issues


def _type_issue(key: str, expected: str, value: Any, source: str) -> ConfigValidationIssue:
    return ConfigValidationIssue(
        message=f"'{key}' must be a {expected}, got {type(value).__name__}",
        source=source,
        severity=ValidationSeverity.ERROR,
        key=key,
    )


def _suggest_key(key: str, valid_keys: Iterable[str]) -> Optional[str]:
    """Suggest a valid key for a typo.

    Args:
        key: The unknown key.
        valid_keys: Set of valid keys.

    Returns:
        Suggested key or None if no close match.
    """
    matches = get_close_matches(key, list(valid_keys), n=1, cutoff=0.6)
    return matches[0] if matches else None


def _log_issue(issue: ConfigValidationIssue) -> None:
    msg = f"{issue.source}: {issue.message}"
    if issue.suggestion:
        msg += f" (did you mean '{issue.suggestion}'?)"
    if issue.severity == ValidationSeverity.ERROR:
        LOGGER.error(msg)
    else:
        LOGGER.warning(msg)


def split_issues(
    issues: List[ConfigValidationIssue],
) -> Tuple[List[ConfigValidationIssue], List[ConfigValidationIssue]]:
    """Return (errors, warnings)."""
    errors = [i for i in issues if i.severity == ValidationSeverity.ERROR]
    warnings = [i for i in issues if i.severity == ValidationSeverity.WARNING]
    return errors, warnings
