"""Tests for the rule acceleration cache."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path

import pytest

from pyrothor.cache.rules import (
    FileRuleCache,
    NullRuleCache,
    RuleAccelerator,
    audit_rules,
    create_rule_cache,
    iter_rule_sources,
)
from pyrothor.core.models import Workspace

LONG_AGO = time.time() - 3600


@pytest.fixture
def cache(tmp_path: Path) -> FileRuleCache:
    return FileRuleCache(tmp_path / "rule-cache")


def _rule(root: Path, name: str, mtime: float = LONG_AGO) -> Path:
    path = root / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("rule x { condition: true }\n")
    os.utime(path, (mtime, mtime))
    return path


class TestFileRuleCache:
    """Tests for on-disk cache entries."""

    def test_store_and_lookup(self, cache: FileRuleCache) -> None:
        cache.store("apt/a.yar", b"compiled", LONG_AGO)

        artifact = cache.lookup("apt/a.yar", LONG_AGO)

        assert artifact is not None
        assert artifact.data == b"compiled"
        assert artifact.rule_id == "apt/a.yar"
        assert cache.entry_count() == 1

    def test_miss(self, cache: FileRuleCache) -> None:
        assert cache.lookup("nothing.yar") is None

    def test_stale_when_source_changed(self, cache: FileRuleCache) -> None:
        cache.store("a.yar", b"compiled", LONG_AGO)
        assert cache.lookup("a.yar", time.time() + 60) is None
        assert cache.lookup("a.yar") is not None

    def test_corrupt_metadata_is_miss(self, cache: FileRuleCache) -> None:
        cache.store("a.yar", b"compiled", LONG_AGO)
        key = cache.compute_cache_key("a.yar")
        (cache.cache_dir / key[:2] / f"{key}.json").write_text("{broken")

        assert cache.lookup("a.yar") is None

    def test_unreadable_metadata_is_miss(self, cache: FileRuleCache) -> None:
        key = cache.compute_cache_key("a.yar")
        (cache.cache_dir / key[:2] / f"{key}.json").mkdir(parents=True)

        assert cache.read_entry("a.yar") is None
        assert cache.lookup("a.yar") is None

    def test_tampered_artifact_is_miss(self, cache: FileRuleCache) -> None:
        cache.store("a.yar", b"compiled", LONG_AGO)
        key = cache.compute_cache_key("a.yar")
        (cache.cache_dir / key[:2] / f"{key}.bin").write_bytes(b"evil!!!!")

        assert cache.lookup("a.yar") is None

    def test_metadata_format(self, cache: FileRuleCache) -> None:
        cache.store("a.yar", b"compiled", 123.0)
        key = cache.compute_cache_key("a.yar")
        data = json.loads((cache.cache_dir / key[:2] / f"{key}.json").read_text())
        assert data["rule_id"] == "a.yar"
        assert data["size"] == len(b"compiled")
        assert data["source_modified_at"] == 123.0

    def test_unwritable_cache_dir(self, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        cache = FileRuleCache(blocker / "cache")

        cache.store("a.yar", b"compiled", LONG_AGO)

        assert cache.lookup("a.yar") is None
        assert cache.entry_count() == 0

    def test_clear(self, cache: FileRuleCache) -> None:
        cache.store("a.yar", b"1", LONG_AGO)
        cache.store("b.yar", b"2", LONG_AGO)
        assert cache.clear() == 2
        assert cache.entry_count() == 0


class TestNullRuleCache:
    def test_never_hits(self) -> None:
        cache = NullRuleCache()
        cache.store("a.yar", b"compiled", LONG_AGO)
        assert cache.lookup("a.yar") is None
        assert cache.entry_count() == 0


class TestCreateRuleCache:
    def test_disabled(self, tmp_path: Path) -> None:
        assert isinstance(create_rule_cache(False, tmp_path), NullRuleCache)

    def test_no_directory(self) -> None:
        assert isinstance(create_rule_cache(True, None), NullRuleCache)

    def test_enabled(self, tmp_path: Path) -> None:
        cache = create_rule_cache(True, tmp_path)
        assert isinstance(cache, FileRuleCache)
        assert cache.cache_dir == tmp_path


class TestRuleAccelerator:
    """Tests for moving artifacts between cache and workspace."""

    @pytest.fixture
    def workspace(self, tmp_path: Path) -> Workspace:
        root = tmp_path / "ws"
        _rule(root / "custom-signatures" / "yara", "apt/a.yar")
        _rule(root / "custom-signatures" / "yara", "b.yara")
        _rule(root / "custom-signatures" / "yara", "README.txt")
        return Workspace(root_path=root, job_id="job-1", binary_path=root / "Thor" / "thor")

    def test_prepare_without_hits(self, cache: FileRuleCache, workspace: Workspace) -> None:
        assert RuleAccelerator(cache).prepare(workspace) == []
        assert not (workspace.root_path / "compiled-rules").exists()

    def test_prepare_materializes_hits(self, cache: FileRuleCache, workspace: Workspace) -> None:
        cache.store("apt/a.yar", b"AAA", LONG_AGO)

        flags = RuleAccelerator(cache).prepare(workspace)

        compiled_dir = workspace.root_path / "compiled-rules"
        assert flags == ["--precompiled-rules", str(compiled_dir)]
        placed = compiled_dir / "apt" / "a.yar.compiled"
        assert placed.read_bytes() == b"AAA"
        assert placed in workspace.owned_files

    def test_prepare_skips_stale(self, cache: FileRuleCache, workspace: Workspace) -> None:
        cache.store("b.yara", b"BBB", LONG_AGO)
        later = time.time() + 60
        os.utime(workspace.root_path / "custom-signatures" / "yara" / "b.yara", (later, later))
        assert RuleAccelerator(cache).prepare(workspace) == []

    def test_prepare_without_flag(self, cache: FileRuleCache, workspace: Workspace) -> None:
        cache.store("apt/a.yar", b"AAA", LONG_AGO)
        assert RuleAccelerator(cache, flag=None).prepare(workspace) == []

    def test_harvest_stores_compiled(self, cache: FileRuleCache, workspace: Workspace) -> None:
        compiled = workspace.root_path / "compiled-rules" / "b.yara.compiled"
        compiled.parent.mkdir(parents=True)
        compiled.write_bytes(b"fresh")

        assert RuleAccelerator(cache).harvest(workspace) == 1
        artifact = cache.lookup("b.yara", LONG_AGO)
        assert artifact is not None and artifact.data == b"fresh"

    def test_harvest_skips_artifacts_placed_from_cache(
        self, cache: FileRuleCache, workspace: Workspace
    ) -> None:
        cache.store("apt/a.yar", b"AAA", LONG_AGO)
        before = cache.read_entry("apt/a.yar")
        accelerator = RuleAccelerator(cache)
        accelerator.prepare(workspace)

        assert accelerator.harvest(workspace) == 0
        assert cache.read_entry("apt/a.yar") == before

    def test_harvest_stores_recompiled_hit(
        self, cache: FileRuleCache, workspace: Workspace
    ) -> None:
        cache.store("apt/a.yar", b"AAA", LONG_AGO)
        accelerator = RuleAccelerator(cache)
        accelerator.prepare(workspace)
        (workspace.root_path / "compiled-rules" / "apt" / "a.yar.compiled").write_bytes(b"CCC")

        assert accelerator.harvest(workspace) == 1
        artifact = cache.lookup("apt/a.yar", LONG_AGO)
        assert artifact is not None and artifact.data == b"CCC"

    def test_unreadable_rule_source_skipped(
        self,
        cache: FileRuleCache,
        workspace: Workspace,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        rules_root = workspace.root_path / "custom-signatures" / "yara"
        monkeypatch.setattr(
            "pyrothor.cache.rules.iter_rule_sources",
            lambda root: [rules_root / "vanished.yar"],
        )
        accelerator = RuleAccelerator(cache)

        assert accelerator.prepare(workspace) == []
        assert accelerator.harvest(workspace) == 0

    def test_null_cache_is_transparent(self, workspace: Workspace) -> None:
        accelerator = RuleAccelerator(NullRuleCache())
        assert accelerator.prepare(workspace) == []
        assert accelerator.harvest(workspace) == 0


class TestAuditRules:
    def test_counts(self, cache: FileRuleCache, tmp_path: Path) -> None:
        rules_dir = tmp_path / "rules"
        _rule(rules_dir, "fresh.yar")
        _rule(rules_dir, "stale.yar")
        _rule(rules_dir, "missing.yar")
        cache.store("fresh.yar", b"1", LONG_AGO)
        cache.store("stale.yar", b"2", LONG_AGO)
        os.utime(rules_dir / "stale.yar", (time.time() + 60, time.time() + 60))

        report = audit_rules(cache, rules_dir)

        assert (report.total, report.fresh, report.stale, report.missing) == (3, 1, 1, 1)

    def test_missing_directory(self, cache: FileRuleCache, tmp_path: Path) -> None:
        assert audit_rules(cache, tmp_path / "nope").total == 0


def test_iter_rule_sources_sorted(tmp_path: Path) -> None:
    _rule(tmp_path, "z.yar")
    _rule(tmp_path, "a/b.YARA")
    _rule(tmp_path, "notes.md")
    assert [p.relative_to(tmp_path).as_posix() for p in iter_rule_sources(tmp_path)] == [
        "a/b.YARA",
        "z.yar",
    ]
