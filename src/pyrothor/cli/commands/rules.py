"""Rules command implementation."""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path
from typing import Optional

from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.cache.rules import audit_rules, create_rule_cache
from pyrothor.cli.commands import Command
from pyrothor.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from pyrothor.config.models import CacheConfig, PyroThorConfig
from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)


class RulesCommand(Command):
    """Reports how many rules in a directory have fresh cached artifacts."""

    @property
    def name(self) -> str:
        """Command identifier."""
        return "rules"

    def execute(self, args: Namespace, config: Optional[PyroThorConfig] = None) -> int:
        if getattr(args, "rules_command", None) != "sync":
            print("Usage: pyrothor rules sync [DIR]")
            return EXIT_INVALID_USAGE

        cache_config = config.cache if config is not None else CacheConfig()
        rules_dir: Path = args.directory or Path(cache_config.rules_dir)
        if not rules_dir.is_dir():
            LOGGER.error(f"Rule directory not found: {rules_dir}")
            return EXIT_INVALID_USAGE

        cache_dir = cache_config.directory or PyroThorPaths.default().rule_cache_dir
        cache = create_rule_cache(True, cache_dir)
        report = audit_rules(cache, rules_dir)

        print(f"Rules in {rules_dir}: {report.total}")
        print(f"  fresh:   {report.fresh}")
        print(f"  stale:   {report.stale}")
        print(f"  missing: {report.missing}")
        print(f"Cache: {cache_dir} ({cache.entry_count()} entries)")
        return EXIT_SUCCESS
