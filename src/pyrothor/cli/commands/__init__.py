"""CLI commands package.

This module provides the base Command class and exports all command implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from argparse import Namespace
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pyrothor.config.models import PyroThorConfig


class Command(ABC):
    """Base class for CLI commands.

    All CLI commands should inherit from this class and implement
    the execute method.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Command identifier."""

    @abstractmethod
    def execute(self, args: Namespace, config: Optional["PyroThorConfig"] = None) -> int:
        """Execute the command.

        Args:
            args: Parsed command-line arguments.
            config: Loaded configuration, when the command needs one.

        Returns:
            Exit code (0 for success, non-zero for error).
        """


# Import command implementations for convenience
# ruff: noqa: E402
from pyrothor.cli.commands.init_config import InitConfigCommand
from pyrothor.cli.commands.rules import RulesCommand
from pyrothor.cli.commands.scan import ScanCommand
from pyrothor.cli.commands.status import StatusCommand

__all__ = [
    "Command",
    "InitConfigCommand",
    "RulesCommand",
    "ScanCommand",
    "StatusCommand",
]
