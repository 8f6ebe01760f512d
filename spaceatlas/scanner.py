from __future__ import annotations
import ctypes
import logging
import os
import stat as statmod
import sys
import time
from typing import Callable, Iterator, List, Optional, Set, Tuple

from .errors import AccessDenied, NotADirectory, NotFound, ScanCancelled
from .models import Node, ScanResult
from .utils import canonical

logger = logging.getLogger(__name__)

S_BLKSIZE = 512  # st_blocks unit, see sys/stat.h
DEFAULT_PROGRESS_INTERVAL = 0.10

ProgressCb = Callable[[int, int], None]  # (files, dirs)
CancelCb = Callable[[], bool]


def _compressed_size(path: str) -> Optional[int]:
    try:
        from ctypes import wintypes
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
        fn = kernel32.GetCompressedFileSizeW
        fn.argtypes = [wintypes.LPCWSTR, ctypes.POINTER(wintypes.DWORD)]
        fn.restype = wintypes.DWORD
        high = wintypes.DWORD(0)
        low = fn(path, ctypes.byref(high))
        if low == 0xFFFFFFFF and ctypes.get_last_error() != 0:
            return None
        return (high.value << 32) + low
    except (AttributeError, OSError):
        return None


def disk_usage(path: str, st: os.stat_result) -> int:
    """Bytes actually allocated for a file.

    Sparse and compressed files report less than their logical length here.
    Falls back to ``st_size`` when the platform has no allocation data.
    """
    blocks = getattr(st, "st_blocks", None)
    if blocks is not None:
        return int(blocks) * S_BLKSIZE
    if sys.platform.startswith("win"):
        size = _compressed_size(path)
        if size is not None:
            return size
    return int(getattr(st, "st_size", 0) or 0)


def _list_dir(path: str) -> List[os.DirEntry]:
    with os.scandir(path) as it:
        return list(it)


def scan_path(root: str,
              progress: Optional[ProgressCb] = None,
              cancel_flag: Optional[CancelCb] = None,
              progress_interval: float = DEFAULT_PROGRESS_INTERVAL) -> ScanResult:
    t0 = time.time()
    root_path = canonical(root)

    try:
        st = os.stat(root_path)
    except FileNotFoundError as e:
        raise NotFound("Scan root does not exist", root_path) from e
    except PermissionError as e:
        raise AccessDenied("Scan root is not accessible", root_path) from e
    except OSError as e:
        raise NotFound(f"Cannot open scan root ({e.strerror or e})", root_path) from e
    if not statmod.S_ISDIR(st.st_mode):
        raise NotADirectory("Scan root is not a directory", root_path)

    try:
        root_entries = _list_dir(root_path)
    except PermissionError as e:
        raise AccessDenied("Scan root cannot be listed", root_path) from e
    except OSError as e:
        raise NotFound(f"Scan root cannot be listed ({e.strerror or e})", root_path) from e

    files = 0
    dirs = 1
    skipped = 0
    seen: Set[Tuple[int, int]] = set()

    last_emit = 0.0
    def emit(force: bool = False):
        nonlocal last_emit
        if not progress:
            return
        now = time.monotonic()
        if force or now - last_emit >= progress_interval:
            last_emit = now
            try:
                progress(files, dirs)
            except Exception:
                logger.warning("Progress observer failed", exc_info=True)

    def check_cancel():
        if cancel_flag and cancel_flag():
            raise ScanCancelled("Scan cancelled", root_path)

    root_node = Node(root_path, True, mtime=st.st_mtime)
    stack: List[Tuple[Node, Iterator[os.DirEntry]]] = [(root_node, iter(root_entries))]
    check_cancel()
    emit()

    while stack:
        node, entries = stack[-1]
        entry = next(entries, None)
        if entry is None:
            stack.pop()
            check_cancel()
            continue
        check_cancel()

        try:
            est = entry.stat(follow_symlinks=False)
        except OSError as e:
            skipped += 1
            logger.debug("Skipping %s: %s", entry.path, e)
            continue

        mode = est.st_mode
        if statmod.S_ISLNK(mode):
            continue

        if statmod.S_ISDIR(mode):
            try:
                child_entries = _list_dir(entry.path)
            except OSError as e:
                skipped += 1
                logger.debug("Skipping directory %s: %s", entry.path, e)
                continue
            dirs += 1
            child = Node(entry.path, True, mtime=est.st_mtime)
            node.add_child(child)
            stack.append((child, iter(child_entries)))
            emit()
            continue

        if not est.st_ino:
            # scandir leaves the identity fields empty on Windows
            try:
                est = os.lstat(entry.path)
            except OSError as e:
                skipped += 1
                logger.debug("Skipping %s: %s", entry.path, e)
                continue

        files += 1
        key = (est.st_dev, est.st_ino)
        if est.st_nlink > 1 and key in seen:
            size = 0
        else:
            if est.st_nlink > 1:
                seen.add(key)
            size = disk_usage(entry.path, est)
        node.add_child(Node(entry.path, False, size=size, mtime=est.st_mtime))
        emit()

    root_node.aggregate()
    emit(force=True)

    elapsed = time.time() - t0
    logger.info("Scanned %s: %d files, %d dirs, %d skipped in %.2fs",
                root_path, files, dirs, skipped, elapsed)
    return ScanResult(
        root=root_node,
        scan_path=root_path,
        files=files,
        dirs=dirs,
        skipped=skipped,
        elapsed_sec=elapsed,
    )
