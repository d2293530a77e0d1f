"""CLI runner orchestration.

This module handles command dispatch and execution for the pyrothor CLI.
"""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path
from typing import Iterable, Optional

from importlib.metadata import version, PackageNotFoundError

from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.cli.arguments import build_parser
from pyrothor.cli.commands import (
    InitConfigCommand,
    RulesCommand,
    ScanCommand,
    StatusCommand,
)
from pyrothor.cli.config_bridge import ConfigBridge
from pyrothor.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from pyrothor.config import load_config
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.errors import ConfigError
from pyrothor.core.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)


def get_version() -> str:
    """Get pyrothor version.

    Returns:
        Version string from package metadata or fallback.
    """
    try:
        return version("pyrothor")
    except PackageNotFoundError:
        # Fallback for source checkouts without installed metadata.
        from pyrothor import __version__
        return __version__


class CLIRunner:
    """Orchestrates CLI execution with subcommand dispatch."""

    def __init__(self) -> None:
        """Initialize CLIRunner with parser and commands."""
        self.parser = build_parser()
        self._version = get_version()
        self.scan_cmd = ScanCommand(version=self._version)
        self.status_cmd = StatusCommand(version=self._version)
        self.rules_cmd = RulesCommand()
        self.init_config_cmd = InitConfigCommand()

    def run(self, argv: Optional[Iterable[str]] = None) -> int:
        """Run the CLI.

        Args:
            argv: Command-line arguments (defaults to sys.argv).

        Returns:
            Exit code.
        """
        argv_list = list(argv) if argv is not None else None

        try:
            args = self.parser.parse_args(argv_list)
        except SystemExit as e:
            # argparse exits 0 for --help and 2 for usage errors
            return EXIT_SUCCESS if e.code in (0, None) else EXIT_INVALID_USAGE

        # Configure logging as early as possible
        configure_logging(
            debug=args.debug,
            verbose=args.verbose,
            quiet=args.quiet,
            log_file=PyroThorPaths.default().log_file,
        )

        if args.version:
            print(self._version)
            return EXIT_SUCCESS

        command = getattr(args, "command", None)

        if command == "init-config":
            return self.init_config_cmd.execute(args)
        if command in ("scan", "status", "rules"):
            config = self._load_config(args)
            if config is None:
                return EXIT_INVALID_USAGE
            if command == "scan":
                return self.scan_cmd.execute(args, config)
            if command == "status":
                return self.status_cmd.execute(args, config)
            return self.rules_cmd.execute(args, config)

        # No command specified - show help
        self.parser.print_help()
        return EXIT_SUCCESS

    def _load_config(self, args: Namespace) -> Optional[PyroThorConfig]:
        """Load configuration for a command, or None after logging the error."""
        try:
            return load_config(
                project_root=Path.cwd(),
                cli_config_path=getattr(args, "config", None),
                cli_overrides=ConfigBridge.args_to_overrides(args),
            )
        except ConfigError as e:
            LOGGER.error(str(e))
            return None
