"""Configuration file loading and merging.

Handles loading configuration from YAML files with:
- Project-level config (pyrothor.yml in the working directory)
- Global config (~/.pyrothor/config/config.yml)
- Environment variable expansion (${VAR})
- Config merging with proper precedence
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from pyrothor.bootstrap.paths import get_pyrothor_home
from pyrothor.config.models import (
    CacheConfig,
    ControllerConfig,
    OutputConfig,
    PackageConfig,
    PyroThorConfig,
    ScannerConfig,
    WorkspaceConfig,
)
from pyrothor.config.validation import split_issues, validate_config
from pyrothor.core.errors import ConfigError
from pyrothor.core.logging import get_logger
from pyrothor.core.retry import RetryPolicy
from pyrothor.scanner.exit_codes import ExitCodeTable

LOGGER = get_logger(__name__)

# Config file names
PROJECT_CONFIG_NAMES = ["pyrothor.yml", "pyrothor.yaml", ".pyrothor.yml", ".pyrothor.yaml"]
GLOBAL_CONFIG_NAME = "config.yml"

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def load_config(
    project_root: Path,
    cli_config_path: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> PyroThorConfig:
    """Load configuration with proper precedence.

    Precedence (highest to lowest):
    1. CLI flags (cli_overrides)
    2. Custom config file (cli_config_path) OR project config (pyrothor.yml)
    3. Global config (~/.pyrothor/config/config.yml)
    4. Built-in defaults

    Args:
        project_root: Directory searched for pyrothor.yml.
        cli_config_path: Optional path to custom config file (--config flag).
        cli_overrides: Dict of CLI flag overrides.

    Returns:
        Merged PyroThorConfig instance.

    Raises:
        ConfigError: If the custom config file doesn't exist, a file has
            parse errors, or a value has the wrong type.
    """
    sources: List[str] = []
    merged: Dict[str, Any] = {}

    # Layer 1: Global config
    global_path = find_global_config()
    if global_path is not None:
        try:
            global_dict = _load_validated(global_path)
        except ConfigError as e:
            LOGGER.warning(f"Ignoring global config: {e.message}")
        else:
            merged = merge_configs(merged, global_dict)
            sources.append(f"global:{global_path}")
            LOGGER.debug(f"Loaded global config from {global_path}")

    # Layer 2: Project or custom config
    if cli_config_path:
        if not cli_config_path.exists():
            raise ConfigError(f"Config file not found: {cli_config_path}")
        merged = merge_configs(merged, _load_validated(cli_config_path))
        sources.append(f"custom:{cli_config_path}")
        LOGGER.debug(f"Loaded custom config from {cli_config_path}")
    else:
        project_path = find_project_config(project_root)
        if project_path is not None:
            merged = merge_configs(merged, _load_validated(project_path))
            sources.append(f"project:{project_path}")
            LOGGER.debug(f"Loaded project config from {project_path}")

    # Layer 3: CLI overrides
    if cli_overrides:
        merged = merge_configs(merged, cli_overrides)
        sources.append("cli")
        LOGGER.debug("Applied CLI overrides")

    config = dict_to_config(merged)
    config._config_sources = sources

    LOGGER.debug(f"Config loaded from sources: {sources}")
    return config


def _load_validated(path: Path) -> Dict[str, Any]:
    try:
        data = load_yaml_file(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    errors, _ = split_issues(validate_config(data, source=str(path)))
    if errors:
        details = "; ".join(issue.message for issue in errors)
        raise ConfigError(f"Invalid configuration in {path}: {details}")
    return data


def find_project_config(project_root: Path) -> Optional[Path]:
    """Find config file in project root.

    Args:
        project_root: Directory to search in.

    Returns:
        Path to config file if found, None otherwise.
    """
    for name in PROJECT_CONFIG_NAMES:
        config_path = project_root / name
        if config_path.exists():
            return config_path
    return None


def find_global_config() -> Optional[Path]:
    """Find global config at ~/.pyrothor/config/config.yml."""
    config_path = get_pyrothor_home() / "config" / GLOBAL_CONFIG_NAME
    if config_path.exists():
        return config_path
    return None


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML config file.

    Performs environment variable expansion on string values.

    Raises:
        yaml.YAMLError: If YAML parsing fails.
        ConfigError: If the document is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    data = yaml.safe_load(content)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(data).__name__}")

    return expand_env_vars(data)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config values.

    Supports ${VAR} and ${VAR:-default} syntax.
    """
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return ENV_VAR_PATTERN.sub(_env_var_replacer, data)
    else:
        return data


def _env_var_replacer(match: re.Match[str]) -> str:
    """Replace environment variable reference with its value."""
    var_name = match.group(1)
    default_value = match.group(2)

    value = os.environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two config dicts, with overlay taking precedence.

    Rules:
    - Scalar values: overlay replaces base
    - Lists: overlay replaces base (no merging)
    - Dicts: recursive merge
    """
    result = base.copy()

    for key, overlay_value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(overlay_value, dict):
            result[key] = merge_configs(result[key], overlay_value)
        else:
            result[key] = overlay_value

    return result


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


def dict_to_config(data: Dict[str, Any]) -> PyroThorConfig:
    """Convert a validated dict to a typed PyroThorConfig."""
    scanner_data = data.get("scanner", {})
    defaults = ScannerConfig()
    scanner = ScannerConfig(
        flags=list(scanner_data.get("flags", defaults.flags)),
        binary_dir=scanner_data.get("binary_dir", defaults.binary_dir),
        binary_prefix=scanner_data.get("binary_prefix", defaults.binary_prefix),
        report_name=scanner_data.get("report_name", defaults.report_name),
        report_format=scanner_data.get("report_format", defaults.report_format),
        path_flag=scanner_data.get("path_flag", defaults.path_flag),
        rebase_flag=scanner_data.get("rebase_flag", defaults.rebase_flag),
        timeout_seconds=float(scanner_data.get("timeout_seconds", defaults.timeout_seconds)),
        grace_seconds=float(scanner_data.get("grace_seconds", defaults.grace_seconds)),
        exit_codes=ExitCodeTable.from_dict(scanner_data.get("exit_codes")),
        exclude_paths=list(scanner_data.get("exclude_paths", defaults.exclude_paths)),
        max_file_size_mb=int(scanner_data.get("max_file_size_mb", defaults.max_file_size_mb)),
        enterprise_mode=scanner_data.get("enterprise_mode", defaults.enterprise_mode),
        enterprise_flags=list(scanner_data.get("enterprise_flags", defaults.enterprise_flags)),
        enterprise_cache_flags=list(
            scanner_data.get("enterprise_cache_flags", defaults.enterprise_cache_flags)
        ),
    )

    package_data = data.get("package", {})
    package_defaults = PackageConfig()
    package = PackageConfig(
        url=package_data.get("url") or None,
        local_path=package_data.get("local_path", package_defaults.local_path),
        sha256=package_data.get("sha256") or None,
        size=package_data.get("size"),
        timeout_seconds=float(
            package_data.get("timeout_seconds", package_defaults.timeout_seconds)
        ),
        allow_insecure=package_data.get("allow_insecure", False),
        retry=RetryPolicy.from_dict(package_data.get("retry")),
    )

    workspace_data = data.get("workspace", {})
    workspace = WorkspaceConfig(
        temp_root=_optional_path(workspace_data.get("temp_root")),
        cleanup=workspace_data.get("cleanup", True),
    )

    controller_data = data.get("controller", {})
    controller = ControllerConfig(
        endpoint=controller_data.get("endpoint") or None,
        api_key=controller_data.get("api_key") or None,
        timeout_seconds=float(controller_data.get("timeout_seconds", 300.0)),
        allow_insecure=controller_data.get("allow_insecure", False),
        submit=controller_data.get("submit", True),
        retry=RetryPolicy.from_dict(controller_data.get("retry")),
    )

    cache_data = data.get("cache", {})
    cache_defaults = CacheConfig()
    cache = CacheConfig(
        enabled=cache_data.get("enabled", False),
        directory=_optional_path(cache_data.get("directory")),
        rules_dir=cache_data.get("rules_dir", cache_defaults.rules_dir),
        compiled_dir=cache_data.get("compiled_dir", cache_defaults.compiled_dir),
        flag=cache_data.get("flag", cache_defaults.flag),
    )

    output_data = data.get("output", {})
    output = OutputConfig(path=output_data.get("path", OutputConfig().path))

    return PyroThorConfig(
        scanner=scanner,
        package=package,
        workspace=workspace,
        controller=controller,
        cache=cache,
        output=output,
        paths=list(data.get("paths", [])),
        max_workers=data.get("max_workers", 4),
    )


DEFAULT_CONFIG_TEMPLATE = """\
# pyrothor configuration
# Values of the form ${VAR} or ${VAR:-default} are read from the environment.

scanner:
  binary_dir: Thor
  binary_prefix: thor-lite
  report_name: scan_report.json
  report_format: auto
  timeout_seconds: 3600
  grace_seconds: 5
  max_file_size_mb: 100
  # Adds --enterprise-mode --ai-enhanced (and --redb-optimized with the rule cache)
  enterprise_mode: false
  exclude_paths:
    - /proc
    - /sys
    - /dev
    - C:\\Windows\\System32
  exit_codes:
    clean: [0]
    findings: [1]
    error: []
    positive_is_findings: true

package:
  local_path: Custom.DFIR.Yara.AllRules.zip
  # url: https://controller.example.com/api/tools/Custom.DFIR.Yara.AllRules.zip
  # sha256: <expected hex digest>
  timeout_seconds: 300
  retry:
    max_attempts: 3
    initial_delay: 1.0
    backoff_factor: 2.0
    max_delay: 30.0

workspace:
  cleanup: true

controller:
  endpoint: ${PYROTHOR_ENDPOINT:-}
  api_key: ${PYROTHOR_API_KEY:-}
  timeout_seconds: 300

cache:
  enabled: false

output:
  path: scan_results.json
"""


def default_config_yaml() -> str:
    """Return the commented default configuration written by init-config."""
    return DEFAULT_CONFIG_TEMPLATE
