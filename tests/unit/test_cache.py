"""Tests for the signed scan result cache."""

from __future__ import annotations

import json
import os
import shutil
from pathlib import Path

import pytest

from conftest import build_tree, symlinks_supported
from spaceatlas.cache import KEY_FILE, MAX_KEY_NAME, ResultCache, cache_key
from spaceatlas.models import ScanResult
from spaceatlas.mutator import SafeMutator
from spaceatlas.scanner import scan_path


@pytest.fixture
def scanned(scan_root: Path) -> ScanResult:
    return scan_path(str(scan_root))


def _rewrite_payload(cache: ResultCache, entry: Path, edit) -> None:
    """Apply ``edit`` to the decoded payload and sign it again with the real key."""
    envelope = json.loads(entry.read_text(encoding="utf-8"))
    payload = json.loads(envelope["payload"])
    edit(payload)
    data = json.dumps(payload)
    envelope = {"signature": cache._sign(data.encode("utf-8")), "payload": data}
    _ = entry.write_text(json.dumps(envelope), encoding="utf-8")


class TestCacheKey:
    def test_key_is_file_name_safe(self) -> None:
        key = cache_key("/home/user/My Files")

        assert key.endswith(".json")
        assert "/" not in key and "\\" not in key

    def test_distinct_paths_get_distinct_keys(self) -> None:
        assert cache_key("/a/b") != cache_key("/a/c")

    def test_long_paths_use_a_digest(self) -> None:
        key = cache_key("/" + "x" * 500)

        assert key.startswith("h-")
        assert len(key) < MAX_KEY_NAME


class TestRoundTrip:
    def test_save_then_load(self, cache: ResultCache, scanned: ScanResult) -> None:
        saved = cache.save(scanned)
        assert saved is not None and saved.is_file()

        loaded = cache.load(scanned.scan_path)

        assert loaded is not None
        assert loaded.scan_path == scanned.scan_path
        assert (loaded.files, loaded.dirs) == (scanned.files, scanned.dirs)
        assert loaded.scan_time == scanned.scan_time
        assert [(n.path, n.size, n.own_size, n.is_dir) for n in loaded.root.walk()] == \
            [(n.path, n.size, n.own_size, n.is_dir) for n in scanned.root.walk()]

    def test_loaded_tree_has_parent_links(self, cache: ResultCache, scanned: ScanResult) -> None:
        cache.save(scanned)

        loaded = cache.load(scanned.scan_path)
        assert loaded is not None

        for node in loaded.root.walk():
            for child in node.children:
                assert child.parent is node

    def test_key_file_is_private(self, cache: ResultCache, scanned: ScanResult) -> None:
        cache.save(scanned)
        key = cache.cache_dir / KEY_FILE

        assert key.is_file()
        if os.name == "posix":
            assert key.stat().st_mode & 0o077 == 0

    def test_load_accepts_equivalent_path(self, cache: ResultCache, scanned: ScanResult) -> None:
        cache.save(scanned)

        assert cache.load(os.path.join(scanned.scan_path, "docs", "..")) is not None

    def test_save_after_edits(self, cache: ResultCache, scanned: ScanResult) -> None:
        safe = SafeMutator(scanned.root)
        safe.create_directory(scanned.root, "sub")
        a = scanned.root.find(os.path.join(scanned.scan_path, "a.txt"))
        assert a is not None
        safe.delete(a)

        assert cache.save(scanned) is not None
        loaded = cache.load(scanned.scan_path)

        assert loaded is not None
        assert (loaded.files, loaded.dirs) == (2, 5)
        assert {c.name for c in loaded.root.children} == {"docs", "empty", "sub"}


class TestMisses:
    def test_absent_entry(self, cache: ResultCache, tmp_path: Path) -> None:
        assert cache.load(str(tmp_path)) is None

    def test_disabled_cache(self, tmp_path: Path, scanned: ScanResult) -> None:
        cache = ResultCache(tmp_path / "cache", enabled=False)

        assert cache.save(scanned) is None
        assert cache.load(scanned.scan_path) is None
        assert not (tmp_path / "cache").exists()

    def test_garbage_file(self, cache: ResultCache, scanned: ScanResult) -> None:
        entry = cache.save(scanned)
        assert entry is not None
        _ = entry.write_text("{not json", encoding="utf-8")

        assert cache.load(scanned.scan_path) is None

    def test_bad_signature(self, cache: ResultCache, scanned: ScanResult) -> None:
        entry = cache.save(scanned)
        assert entry is not None
        envelope = json.loads(entry.read_text(encoding="utf-8"))
        envelope["payload"] = envelope["payload"].replace('"files":3', '"files":4')
        _ = entry.write_text(json.dumps(envelope), encoding="utf-8")

        assert cache.load(scanned.scan_path) is None

    def test_missing_key(self, cache: ResultCache, scanned: ScanResult) -> None:
        cache.save(scanned)
        (cache.cache_dir / KEY_FILE).unlink()

        assert cache.load(scanned.scan_path) is None

    def test_entry_for_other_root(self, cache: ResultCache, scanned: ScanResult, tmp_path: Path) -> None:
        entry = cache.save(scanned)
        assert entry is not None
        other = build_tree(tmp_path / "other", {})
        shutil.copy(entry, cache.entry_path(str(other)))

        assert cache.load(str(other)) is None

    def test_path_outside_root(self, cache: ResultCache, scanned: ScanResult) -> None:
        entry = cache.save(scanned)
        assert entry is not None

        def escape(payload: dict) -> None:
            child = payload["nodes"][1]
            child["name"] = "etc"
            child["path"] = os.path.join(os.path.dirname(payload["scan_path"]), "..", "etc")

        _rewrite_payload(cache, entry, escape)

        assert cache.load(scanned.scan_path) is None

    def test_inconsistent_totals(self, cache: ResultCache, scanned: ScanResult) -> None:
        entry = cache.save(scanned)
        assert entry is not None

        def inflate(payload: dict) -> None:
            for rec in payload["nodes"]:
                if not rec["is_dir"]:
                    rec["size"] += 1
                    rec["own_size"] += 1
                    break

        _rewrite_payload(cache, entry, inflate)

        assert cache.load(scanned.scan_path) is None

    def test_child_cycle(self, cache: ResultCache, scanned: ScanResult) -> None:
        entry = cache.save(scanned)
        assert entry is not None

        def loop(payload: dict) -> None:
            last = next(r for r in reversed(payload["nodes"]) if r["is_dir"])
            last["children"].append(0)

        _rewrite_payload(cache, entry, loop)

        assert cache.load(scanned.scan_path) is None

    def test_symlink_swapped_directory(self, cache: ResultCache, scanned: ScanResult,
                                       tmp_path: Path) -> None:
        if not symlinks_supported(tmp_path):
            pytest.skip("symlinks not supported here")
        cache.save(scanned)
        outside = build_tree(tmp_path / "outside", {"deep": {"notes.txt": "x"}})
        docs = os.path.join(scanned.scan_path, "docs")
        shutil.rmtree(docs)
        os.symlink(outside, docs, target_is_directory=True)

        assert cache.load(scanned.scan_path) is None


class TestMaintenance:
    def test_invalidate(self, cache: ResultCache, scanned: ScanResult) -> None:
        cache.save(scanned)

        assert cache.invalidate(scanned.scan_path) is True
        assert cache.invalidate(scanned.scan_path) is False
        assert cache.load(scanned.scan_path) is None

    def test_clear_counts_entries_and_keeps_key(self, cache: ResultCache, scanned: ScanResult,
                                                tmp_path: Path) -> None:
        other = scan_path(str(build_tree(tmp_path / "other", {"f": "x"})))
        cache.save(scanned)
        cache.save(other)

        assert cache.clear() == 2
        assert cache.load(scanned.scan_path) is None
        assert (cache.cache_dir / KEY_FILE).is_file()
        assert cache.clear() == 0

    def test_clear_without_directory(self, tmp_path: Path) -> None:
        assert ResultCache(tmp_path / "nowhere").clear() == 0

    def test_save_failure_is_reported_as_none(self, tmp_path: Path, scanned: ScanResult) -> None:
        blocker = tmp_path / "blocker"
        _ = blocker.write_text("not a directory")
        cache = ResultCache(blocker / "cache")

        assert cache.save(scanned) is None

