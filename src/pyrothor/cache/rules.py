"""Rule acceleration cache.

Stores precompiled detection-rule artifacts keyed by rule identifier so a
scanner run can skip recompiling rules that have not changed. The cache is
optional: the pipeline always talks to a RuleCache, and a NullRuleCache
stands in when caching is disabled. Any cache failure degrades to a miss.

Cache structure:
    ~/.pyrothor/cache/rules/
        {hash_prefix}/
            {full_hash}.json   - entry metadata
            {full_hash}.bin    - compiled artifact bytes
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pyrothor.core.logging import get_logger
from pyrothor.core.models import Workspace

LOGGER = get_logger(__name__)

# Rule source extensions considered by the accelerator
RULE_SUFFIXES = (".yar", ".yara")

# Suffix of compiled artifacts next to the rule's relative path
COMPILED_SUFFIX = ".compiled"


@dataclass(frozen=True)
class CompiledArtifact:
    """Precompiled form of one rule."""

    rule_id: str
    data: bytes


@dataclass
class CacheEntry:
    """Metadata for a cached artifact.

    An entry is only trusted while ``last_validated_at`` is newer than the
    rule source's modification time.
    """

    rule_id: str
    sha256: str
    size: int
    source_modified_at: float
    last_validated_at: float

    def is_fresh(self, source_modified_at: Optional[float]) -> bool:
        if source_modified_at is None:
            return True
        return self.last_validated_at > source_modified_at


class RuleCache(ABC):
    """Capability interface for the rule acceleration cache."""

    @abstractmethod
    def lookup(
        self, rule_id: str, source_modified_at: Optional[float] = None
    ) -> Optional[CompiledArtifact]:
        """Return the artifact for ``rule_id``, or None on a miss or stale entry."""

    @abstractmethod
    def store(self, rule_id: str, artifact: bytes, source_modified_at: float) -> None:
        """Remember a compiled artifact for ``rule_id``."""

    def entry_count(self) -> int:
        return 0


class NullRuleCache(RuleCache):
    """Cache that never hits and never stores."""

    def lookup(
        self, rule_id: str, source_modified_at: Optional[float] = None
    ) -> Optional[CompiledArtifact]:
        return None

    def store(self, rule_id: str, artifact: bytes, source_modified_at: float) -> None:
        pass


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class FileRuleCache(RuleCache):
    """On-disk rule cache with sharded directories.

    Corrupt or unreadable entries are reported as misses; write failures
    are logged and ignored.
    """

    def __init__(self, cache_dir: Path) -> None:
        self._cache_dir = cache_dir

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def compute_cache_key(self, rule_id: str) -> str:
        return hashlib.sha256(rule_id.encode("utf-8")).hexdigest()

    def _paths(self, rule_id: str) -> Tuple[Path, Path]:
        key = self.compute_cache_key(rule_id)
        base = self._cache_dir / key[:2] / key
        return base.with_suffix(".json"), base.with_suffix(".bin")

    def read_entry(self, rule_id: str) -> Optional[CacheEntry]:
        meta_path, _ = self._paths(rule_id)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, NotADirectoryError):
            return None
        except (ValueError, OSError) as e:
            LOGGER.warning(f"Ignoring corrupt rule cache entry for {rule_id}: {e}")
            return None
        try:
            return CacheEntry(
                rule_id=data["rule_id"],
                sha256=data["sha256"],
                size=int(data["size"]),
                source_modified_at=float(data["source_modified_at"]),
                last_validated_at=float(data["last_validated_at"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            LOGGER.warning(f"Ignoring corrupt rule cache entry for {rule_id}: {e}")
            return None

    def lookup(
        self, rule_id: str, source_modified_at: Optional[float] = None
    ) -> Optional[CompiledArtifact]:
        entry = self.read_entry(rule_id)
        if entry is None or entry.rule_id != rule_id:
            return None
        if not entry.is_fresh(source_modified_at):
            LOGGER.debug(f"Rule cache entry for {rule_id} is stale")
            return None

        _, bin_path = self._paths(rule_id)
        try:
            data = bin_path.read_bytes()
        except OSError as e:
            LOGGER.warning(f"Rule cache artifact for {rule_id} unreadable: {e}")
            return None
        if len(data) != entry.size or hashlib.sha256(data).hexdigest() != entry.sha256:
            LOGGER.warning(f"Rule cache artifact for {rule_id} failed verification")
            return None
        return CompiledArtifact(rule_id=rule_id, data=data)

    def store(self, rule_id: str, artifact: bytes, source_modified_at: float) -> None:
        meta_path, bin_path = self._paths(rule_id)
        entry = {
            "rule_id": rule_id,
            "sha256": hashlib.sha256(artifact).hexdigest(),
            "size": len(artifact),
            "source_modified_at": source_modified_at,
            "last_validated_at": time.time(),
        }
        try:
            _atomic_write(bin_path, artifact)
            _atomic_write(meta_path, json.dumps(entry, indent=2).encode("utf-8"))
        except OSError as e:
            LOGGER.warning(f"Failed to write rule cache entry for {rule_id}: {e}")

    def entry_count(self) -> int:
        if not self._cache_dir.exists():
            return 0
        return sum(1 for _ in self._cache_dir.glob("*/*.json"))

    def clear(self) -> int:
        """Remove all entries. Returns the number of entries removed."""
        count = 0
        if not self._cache_dir.exists():
            return count
        for prefix_dir in self._cache_dir.iterdir():
            if not prefix_dir.is_dir():
                continue
            for cache_file in prefix_dir.iterdir():
                try:
                    cache_file.unlink()
                    if cache_file.suffix == ".json":
                        count += 1
                except OSError:
                    pass
            try:
                prefix_dir.rmdir()
            except OSError:
                pass
        return count


def create_rule_cache(enabled: bool, cache_dir: Optional[Path]) -> RuleCache:
    """Select the cache implementation once at startup."""
    if not enabled or cache_dir is None:
        return NullRuleCache()
    return FileRuleCache(cache_dir)


def iter_rule_sources(rules_dir: Path, suffixes: Sequence[str] = RULE_SUFFIXES) -> List[Path]:
    """List rule source files under ``rules_dir`` in a stable order."""
    if not rules_dir.is_dir():
        return []
    return sorted(
        p for p in rules_dir.rglob("*") if p.is_file() and p.suffix.lower() in suffixes
    )


@dataclass
class RuleCacheReport:
    """Freshness summary of a rule directory against the cache."""

    total: int = 0
    fresh: int = 0
    stale: int = 0
    missing: int = 0


def audit_rules(cache: RuleCache, rules_dir: Path) -> RuleCacheReport:
    """Count how many rules under ``rules_dir`` have a usable cached artifact."""
    report = RuleCacheReport()
    for source in iter_rule_sources(rules_dir):
        report.total += 1
        rule_id = source.relative_to(rules_dir).as_posix()
        mtime = source.stat().st_mtime
        if cache.lookup(rule_id, mtime) is not None:
            report.fresh += 1
        elif cache.lookup(rule_id) is not None:
            report.stale += 1
        else:
            report.missing += 1
    return report


class RuleAccelerator:
    """Connects a RuleCache to a staged workspace.

    Before a run, cached artifacts for the workspace's rules are placed in
    the compiled-rules directory and the scanner is pointed at it. After a
    successful run, artifacts the scanner left there are stored back.
    """

    def __init__(
        self,
        cache: RuleCache,
        rules_dir: str = "custom-signatures/yara",
        compiled_dir: str = "compiled-rules",
        flag: Optional[str] = "--precompiled-rules",
    ) -> None:
        self._cache = cache
        self._rules_dir = rules_dir
        self._compiled_dir = compiled_dir
        self._flag = flag

    @property
    def cache(self) -> RuleCache:
        return self._cache

    def _rule_sources(self, workspace: Workspace) -> List[Tuple[str, float]]:
        """List (rule id, source mtime) pairs; unreadable sources are skipped."""
        rules_root = workspace.root_path / self._rules_dir
        sources: List[Tuple[str, float]] = []
        for source in iter_rule_sources(rules_root):
            rule_id = source.relative_to(rules_root).as_posix()
            try:
                sources.append((rule_id, source.stat().st_mtime))
            except OSError as e:
                LOGGER.warning(f"Skipping unreadable rule source {rule_id}: {e}")
        return sources

    def _compiled_path(self, workspace: Workspace, rule_id: str) -> Path:
        return workspace.root_path / self._compiled_dir / f"{rule_id}{COMPILED_SUFFIX}"

    def prepare(self, workspace: Workspace) -> List[str]:
        """Materialize cache hits into the workspace.

        Returns:
            Extra scanner flags; empty when nothing was found in the cache.
        """
        hits = 0
        for rule_id, mtime in self._rule_sources(workspace):
            artifact = self._cache.lookup(rule_id, mtime)
            if artifact is None:
                continue
            target = self._compiled_path(workspace, rule_id)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(artifact.data)
            except OSError as e:
                LOGGER.warning(f"Could not place cached artifact for {rule_id}: {e}")
                continue
            workspace.owned_files.add(target)
            hits += 1

        if hits == 0 or not self._flag:
            return []
        LOGGER.info(f"[job {workspace.job_id}] Using {hits} precompiled rule(s) from cache")
        return [self._flag, str(workspace.root_path / self._compiled_dir)]

    def harvest(self, workspace: Workspace) -> int:
        """Store compiled artifacts produced by the scanner. Returns the count.

        Artifacts identical to a fresh cache entry, such as those placed by
        ``prepare``, are not stored again.
        """
        stored = 0
        for rule_id, mtime in self._rule_sources(workspace):
            compiled = self._compiled_path(workspace, rule_id)
            if not compiled.is_file():
                continue
            try:
                data = compiled.read_bytes()
            except OSError as e:
                LOGGER.warning(f"Could not read compiled artifact for {rule_id}: {e}")
                continue
            cached = self._cache.lookup(rule_id, mtime)
            if cached is not None and cached.data == data:
                continue
            self._cache.store(rule_id, data, mtime)
            stored += 1
        if stored:
            LOGGER.debug(f"[job {workspace.job_id}] Stored {stored} compiled rule(s) in cache")
        return stored
