"""Gitignore-style exclusion of scan targets.

Uses the pathspec library so exclude patterns follow gitignore rules
(``**`` globbing, ``!`` negation, comments). Absolute target paths are
matched relative to the filesystem root, with Windows separators and
drive letters normalized to forward slashes.
"""

from __future__ import annotations

from pathlib import Path, PurePath
from typing import List, Sequence

import pathspec

from pyrothor.core.logging import get_logger

LOGGER = get_logger(__name__)


def _normalize(value: str) -> str:
    return value.replace("\\", "/")


class TargetFilter:
    """Drops targets that fall under excluded paths."""

    def __init__(self, patterns: Sequence[str]) -> None:
        clean_patterns = [
            _normalize(p.strip()) for p in patterns if p.strip() and not p.strip().startswith("#")
        ]
        self._patterns = clean_patterns
        self._spec = pathspec.PathSpec.from_lines(
            pathspec.patterns.GitWildMatchPattern,
            clean_patterns,
        )
        if clean_patterns:
            LOGGER.debug(f"Loaded {len(clean_patterns)} exclude patterns")

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    def is_excluded(self, target: PurePath) -> bool:
        rel = _normalize(str(target)).lstrip("/")
        if not rel:
            return False
        return self._spec.match_file(rel)

    def filter(self, targets: Sequence[Path]) -> List[Path]:
        """Return targets that are not excluded, preserving order."""
        kept: List[Path] = []
        for target in targets:
            if self.is_excluded(target):
                LOGGER.info(f"Skipping excluded target: {target}")
                continue
            kept.append(target)
        return kept
