"""Status command implementation."""

from __future__ import annotations

from argparse import Namespace
from typing import Optional

from pyrothor.bootstrap.package import PackageCache
from pyrothor.bootstrap.paths import PyroThorPaths
from pyrothor.bootstrap.platform import resolve
from pyrothor.cache.rules import FileRuleCache
from pyrothor.cli.commands import Command
from pyrothor.cli.exit_codes import EXIT_SUCCESS
from pyrothor.config.models import PyroThorConfig
from pyrothor.core.errors import UnsupportedPlatformError


class StatusCommand(Command):
    """Shows platform, cache and configuration information."""

    def __init__(self, version: str):
        """Initialize StatusCommand.

        Args:
            version: Current pyrothor version string.
        """
        self._version = version

    @property
    def name(self) -> str:
        """Command identifier."""
        return "status"

    def execute(self, args: Namespace, config: Optional[PyroThorConfig] = None) -> int:
        """Execute the status command.

        Returns:
            Exit code (always 0 for status).
        """
        paths = PyroThorPaths.default()

        print(f"pyrothor version: {self._version}")
        try:
            profile = resolve()
        except UnsupportedPlatformError as e:
            print(f"Platform: unsupported ({e.message})")
        else:
            binary_prefix = config.scanner.binary_prefix if config else "thor-lite"
            print(f"Platform: {profile.os}-{profile.arch}")
            print(f"Scanner binary: {profile.binary_name(binary_prefix)}")
            print(f"Workspace root: {profile.temp_root}")
        print(f"Home: {paths.home}")
        print()

        packages = PackageCache(paths.package_cache_dir).entries()
        print(f"Package cache: {paths.package_cache_dir}")
        if packages:
            for entry in packages:
                size_mb = entry.stat().st_size / 1024 / 1024
                print(f"  {entry.stem[:12]}  {size_mb:.1f} MB")
        else:
            print("  (empty)")

        cache_dir = paths.rule_cache_dir
        enabled = False
        if config is not None:
            cache_dir = config.cache.directory or cache_dir
            enabled = config.cache.enabled
        state = "enabled" if enabled else "disabled"
        print(f"Rule cache ({state}): {cache_dir}")
        print(f"  {FileRuleCache(cache_dir).entry_count()} entries")

        if config is not None:
            print()
            sources = ", ".join(config.sources) or "built-in defaults"
            print(f"Config sources: {sources}")
            endpoint = config.controller.endpoint or "(not configured)"
            print(f"Controller: {endpoint}")

        return EXIT_SUCCESS
