from __future__ import annotations
import os


def format_bytes(num: int) -> str:
    if num < 0:
        return str(num)
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    x = float(num)
    for u in units:
        if x < 1024.0 or u == units[-1]:
            return f"{x:.2f} {u}" if u != "B" else f"{int(x)} {u}"
        x /= 1024.0
    return f"{x:.2f} PB"


def name_of(path: str) -> str:
    return os.path.basename(path.rstrip("\\/")) or path


def canonical(path: str) -> str:
    """Absolute path with every symlink, ``.`` and ``..`` resolved."""
    return os.path.realpath(os.path.abspath(path))


def canonical_entry(path: str) -> str:
    """Like :func:`canonical`, but the last component is kept as is.

    A symlink named by ``path`` is therefore addressed itself, not its target.
    """
    path = os.path.abspath(path)
    head, tail = os.path.split(path.rstrip("\\/") or path)
    if not tail or tail in (".", ".."):
        return canonical(path)
    return os.path.join(canonical(head), tail)


def is_within(path: str, root: str, allow_equal: bool = True) -> bool:
    """True when canonical ``path`` lies under canonical ``root``."""
    p = os.path.normcase(path)
    r = os.path.normcase(root)
    if p == r:
        return allow_equal
    try:
        return os.path.commonpath([p, r]) == r
    except ValueError:
        # different drives, or mixed absolute/relative
        return False
