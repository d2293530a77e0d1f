"""init-config command implementation."""

from __future__ import annotations

from argparse import Namespace
from typing import Optional

from pyrothor.cli.commands import Command
from pyrothor.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from pyrothor.config.loader import default_config_yaml
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)


class InitConfigCommand(Command):
    """Writes the default configuration file."""

    @property
    def name(self) -> str:
        """Command identifier."""
        return "init-config"

    def execute(self, args: Namespace, config: Optional[PyroThorConfig] = None) -> int:
        path = args.path
        if path.exists() and not args.force:
            LOGGER.error(f"{path} already exists (use --force to overwrite)")
            return EXIT_INVALID_USAGE

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(default_config_yaml(), encoding="utf-8")
        except OSError as e:
            LOGGER.error(f"Failed to write {path}: {e}")
            return EXIT_INVALID_USAGE

        print(f"Wrote default configuration to {path}")
        return EXIT_SUCCESS
