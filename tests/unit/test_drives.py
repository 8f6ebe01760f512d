"""Tests for volume listing."""

from __future__ import annotations

from types import SimpleNamespace

import psutil
import pytest

from spaceatlas import drives


def _usage(total: int, used: int) -> SimpleNamespace:
    return SimpleNamespace(total=total, used=used, free=total - used, percent=used * 100.0 / total)


def test_list_drives(monkeypatch: pytest.MonkeyPatch) -> None:
    parts = [
        SimpleNamespace(mountpoint="/data", fstype="xfs"),
        SimpleNamespace(mountpoint="/", fstype="ext4"),
        SimpleNamespace(mountpoint="/", fstype="ext4"),
        SimpleNamespace(mountpoint="", fstype="tmpfs"),
    ]
    monkeypatch.setattr(psutil, "disk_partitions", lambda all=False: parts)
    monkeypatch.setattr(psutil, "disk_usage", lambda path: _usage(1000, 250))

    result = drives.list_drives()

    assert [d["mountpoint"] for d in result] == ["/", "/data"]
    assert result[0]["percent"] == pytest.approx(25.0)
    assert result[1]["fstype"] == "xfs"


def test_unreadable_volume_is_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    parts = [SimpleNamespace(mountpoint="/mnt/cd", fstype="iso9660")]

    def fail(path):
        raise PermissionError(13, "denied", path)

    monkeypatch.setattr(psutil, "disk_partitions", lambda all=False: parts)
    monkeypatch.setattr(psutil, "disk_usage", fail)

    assert drives.list_drives() == []


def test_volume_usage(tmp_path) -> None:
    usage = drives.volume_usage(str(tmp_path))

    assert usage is not None
    assert usage["total"] >= usage["used"]  # type: ignore[operator]


def test_volume_usage_of_missing_path(tmp_path) -> None:
    assert drives.volume_usage(str(tmp_path / "missing")) is None
