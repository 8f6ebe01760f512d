"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Union

import pytest

from spaceatlas.cache import ResultCache
from spaceatlas.models import Node


def build_tree(base: Path, layout: Dict[str, Union[str, bytes, dict]]) -> Path:
    """Create files and folders under ``base`` from a nested mapping.

    A dict value is a folder, anything else is file content.
    """
    base.mkdir(parents=True, exist_ok=True)
    for name, value in layout.items():
        target = base / name
        if isinstance(value, dict):
            build_tree(target, value)
        elif isinstance(value, bytes):
            _ = target.write_bytes(value)
        else:
            _ = target.write_text(value)
    return base


def make_node_tree(root_path: str, sizes: Dict[str, int]) -> Node:
    """Build an in-memory tree from ``{"a/b.txt": size}``; folders end with ``/``."""
    root = Node(root_path, True)
    for rel, size in sizes.items():
        parent = root
        parts = [p for p in rel.split("/") if p]
        for i, part in enumerate(parts):
            is_last = i == len(parts) - 1
            is_dir = not is_last or rel.endswith("/")
            existing = next((c for c in parent.children if c.name == part), None)
            if existing is None:
                existing = Node(os.path.join(parent.path, part), is_dir,
                                size=0 if is_dir else size)
                parent.add_child(existing)
            parent = existing
    root.aggregate()
    return root


@pytest.fixture
def scan_root(tmp_path: Path) -> Path:
    """A small real tree to scan."""
    return build_tree(tmp_path / "root", {
        "a.txt": "a" * 100,
        "docs": {
            "readme.md": "hello",
            "deep": {"notes.txt": "x" * 5000},
        },
        "empty": {},
    })


@pytest.fixture
def cache(tmp_path: Path) -> ResultCache:
    return ResultCache(tmp_path / "cache")


@pytest.fixture
def no_user_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep CLI and config tests away from the real home and cache."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("SPACEATLAS_CACHE_DIR", str(tmp_path / "cli-cache"))
    for name in ("SPACEATLAS_CACHE_ENABLED", "SPACEATLAS_PROGRESS_INTERVAL",
                 "SPACEATLAS_TOP_LIMIT", "SPACEATLAS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return home


def symlinks_supported(tmp_path: Path) -> bool:
    probe = tmp_path / "probe-link"
    try:
        os.symlink(tmp_path, probe)
    except (OSError, NotImplementedError):
        return False
    probe.unlink()
    return True
