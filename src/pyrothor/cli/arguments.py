"""Argument parser construction for the pyrothor CLI.

This module builds the argument parser with subcommands:
- pyrothor scan         - Run the scanner against target paths
- pyrothor status       - Show platform, cache and configuration status
- pyrothor rules sync   - Report rule cache freshness for a rule directory
- pyrothor init-config  - Write a default configuration file
"""

from __future__ import annotations

import argparse
from pathlib import Path


def _add_global_options(parser: argparse.ArgumentParser) -> None:
    """Add global options available to all commands."""
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show pyrothor version and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging and echo scanner output.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (info-level) logging.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Reduce logging output to errors only.",
    )


def _add_config_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        type=Path,
        metavar="FILE",
        help="Configuration file (default: pyrothor.yml in the current directory).",
    )


def _build_scan_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'scan' subcommand parser."""
    scan_parser = subparsers.add_parser(
        "scan",
        help="Run the malware scanner.",
        description=(
            "Fetch the scanner package, stage it in a temporary workspace, "
            "run it against the given paths and write normalized results."
        ),
    )
    _add_config_option(scan_parser)

    target_group = scan_parser.add_argument_group("targets")
    target_group.add_argument(
        "--path", "-p",
        action="append",
        dest="paths",
        metavar="PATH",
        help="Path to scan (can be specified multiple times, default: /).",
    )

    package_group = scan_parser.add_argument_group("scanner")
    package_group.add_argument(
        "--package",
        metavar="URL_OR_PATH",
        help="Scanner package location, overriding the configured source.",
    )
    package_group.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Deadline for the scanner run.",
    )
    package_group.add_argument(
        "--scan-uuid",
        metavar="UUID",
        help="Identifier to use for this scan instead of a generated one.",
    )
    package_group.add_argument(
        "--rule-cache",
        action="store_true",
        help="Enable the precompiled rule cache.",
    )
    package_group.add_argument(
        "--enterprise-mode",
        action="store_true",
        help="Run the scanner with its enterprise feature set.",
    )
    package_group.add_argument(
        "--parallel",
        action="store_true",
        help="Scan each path as a separate job, up to max_workers at a time.",
    )
    package_group.add_argument(
        "--keep-workspace",
        action="store_true",
        help="Do not delete the workspace after the scan (for debugging).",
    )

    output_group = scan_parser.add_argument_group("output")
    output_group.add_argument(
        "--output", "-o",
        metavar="FILE",
        help="Results file (default: scan_results.json).",
    )
    output_group.add_argument(
        "--no-submit",
        action="store_true",
        help="Do not send results to the controller.",
    )


def _build_status_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'status' subcommand parser."""
    status_parser = subparsers.add_parser(
        "status",
        help="Show platform, cache and configuration status.",
    )
    _add_config_option(status_parser)


def _build_rules_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'rules' subcommand parser."""
    rules_parser = subparsers.add_parser(
        "rules",
        help="Inspect the precompiled rule cache.",
    )
    _add_config_option(rules_parser)
    rules_sub = rules_parser.add_subparsers(dest="rules_command")
    sync_parser = rules_sub.add_parser(
        "sync",
        help="Report which rules in a directory have fresh cached artifacts.",
    )
    sync_parser.add_argument(
        "directory",
        nargs="?",
        type=Path,
        help="Rule source directory (default: the configured rules_dir).",
    )


def _build_init_config_parser(subparsers: argparse._SubParsersAction) -> None:
    """Build the 'init-config' subcommand parser."""
    init_parser = subparsers.add_parser(
        "init-config",
        help="Write a default pyrothor.yml.",
    )
    init_parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path("pyrothor.yml"),
        help="Where to write the file (default: pyrothor.yml).",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite an existing file.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the main argument parser with subcommands.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="pyrothor",
        description="pyrothor - Orchestrates an external malware scanner across endpoints.",
    )
    _add_global_options(parser)

    subparsers = parser.add_subparsers(dest="command", title="commands")
    _build_scan_parser(subparsers)
    _build_status_parser(subparsers)
    _build_rules_parser(subparsers)
    _build_init_config_parser(subparsers)

    return parser
