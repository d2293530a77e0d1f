"""Bridge between CLI arguments and configuration models."""

from __future__ import annotations

import argparse
from typing import Any, Dict


class ConfigBridge:
    """Translates CLI arguments to configuration overrides."""

    @staticmethod
    def args_to_overrides(args: argparse.Namespace) -> Dict[str, Any]:
        """Convert CLI arguments to a config override dict.

        Only options given on the command line appear in the result, so
        file values survive for everything else.

        Args:
            args: Parsed CLI arguments.

        Returns:
            Dictionary of config overrides.
        """
        overrides: Dict[str, Any] = {}

        paths = getattr(args, "paths", None)
        if paths:
            overrides["paths"] = list(paths)

        output = getattr(args, "output", None)
        if output:
            overrides["output"] = {"path": output}

        package = getattr(args, "package", None)
        if package:
            if package.startswith(("http://", "https://")):
                overrides["package"] = {"url": package}
            else:
                overrides["package"] = {"url": None, "local_path": package}

        timeout = getattr(args, "timeout", None)
        if timeout is not None:
            overrides.setdefault("scanner", {})["timeout_seconds"] = timeout

        if getattr(args, "enterprise_mode", False):
            overrides.setdefault("scanner", {})["enterprise_mode"] = True

        if getattr(args, "rule_cache", False):
            overrides["cache"] = {"enabled": True}

        if getattr(args, "keep_workspace", False):
            overrides["workspace"] = {"cleanup": False}

        if getattr(args, "no_submit", False):
            overrides["controller"] = {"submit": False}

        return overrides
