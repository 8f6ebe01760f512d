from __future__ import annotations
import os
import weakref
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional, Tuple

from .errors import TreeError
from .utils import format_bytes, name_of


class NodeKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class Node:
    """A file or directory in the size-aggregated tree.

    ``size`` is allocated bytes (for directories, of the whole subtree) and
    ``own_size`` only counts the files sitting directly in a directory.
    The parent link is a weak reference; children are owned by their parent.
    """

    __slots__ = ("_path", "name", "is_dir", "size", "own_size", "mtime",
                 "_children", "_parent", "__weakref__")

    def __init__(self, path: str, is_dir: bool, size: int = 0, mtime: float = 0.0,
                 name: Optional[str] = None):
        self._path = path
        self.name = name if name is not None else name_of(path)
        self.is_dir = is_dir
        self.size = size
        self.own_size = 0 if is_dir else size
        self.mtime = mtime
        self._children: List[Node] = []
        self._parent: Optional[weakref.ref] = None

    def __repr__(self) -> str:
        return f"{self.name} ({format_bytes(self.size)})"

    @property
    def path(self) -> str:
        return self._path

    @property
    def kind(self) -> NodeKind:
        return NodeKind.DIRECTORY if self.is_dir else NodeKind.FILE

    @property
    def parent(self) -> Optional[Node]:
        return self._parent() if self._parent is not None else None

    @property
    def children(self) -> Tuple[Node, ...]:
        return tuple(self._children)

    @property
    def depth(self) -> int:
        return sum(1 for _ in self.ancestors())

    @property
    def percent_of_parent(self) -> float:
        parent = self.parent
        if parent is None or parent.size == 0:
            return 100.0
        return self.size * 100.0 / parent.size

    # -------------------- structure
    def add_child(self, child: Node) -> None:
        if not self.is_dir:
            raise TreeError("Cannot add children to a file node", self._path)
        if child.parent is not None:
            raise TreeError("Node already has a parent", child.path)
        child._parent = weakref.ref(self)
        self._children.append(child)

    def remove_child(self, child: Node) -> None:
        if child.parent is not self:
            raise TreeError("Not a child of this node", child.path)
        self._children.remove(child)
        child._parent = None

    def rebase(self, new_path: str) -> None:
        """Rewrite the paths of this subtree after it was moved on disk."""
        old = self._path
        for n in self.walk():
            n._path = new_path + n._path[len(old):]

    # -------------------- sizes
    def _recompute(self) -> None:
        if not self.is_dir:
            self.own_size = self.size
            return
        total = 0
        direct = 0
        for c in self._children:
            total += c.size
            if not c.is_dir:
                direct += c.size
        self.size = total
        self.own_size = direct

    def aggregate(self) -> None:
        # reversed pre-order visits every child before its parent
        for n in reversed(list(self.walk())):
            n._recompute()

    def refresh_chain(self) -> None:
        """Recompute this node and then every ancestor from their direct children.

        Enough after a structural edit when the subtrees below are already consistent.
        """
        node: Optional[Node] = self
        while node is not None:
            node._recompute()
            node = node.parent

    def update_size(self, size: int) -> None:
        delta = size - self.size
        self.size = size
        if not self.is_dir:
            self.own_size = size
        parent = self.parent
        if parent is not None and not self.is_dir:
            parent.own_size += delta
        for a in self.ancestors():
            a.size += delta

    # -------------------- queries
    def top_children(self, limit: int) -> List[Node]:
        if limit <= 0:
            return []
        # sorted() is stable, ties keep insertion order
        return sorted(self._children, key=lambda n: n.size, reverse=True)[:limit]

    def walk(self) -> Iterator[Node]:
        stack = [self]
        while stack:
            n = stack.pop()
            yield n
            stack.extend(reversed(n._children))

    def ancestors(self) -> Iterator[Node]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def find(self, path: str) -> Optional[Node]:
        if os.path.normcase(path) == os.path.normcase(self._path):
            return self
        try:
            rel = os.path.relpath(path, self._path)
        except ValueError:
            return None
        if rel == os.pardir or rel.startswith(os.pardir + os.sep):
            return None
        node: Optional[Node] = self
        for part in rel.split(os.sep):
            if part in ("", os.curdir):
                continue
            node = next((c for c in node._children if c.name == part), None)
            if node is None:
                return None
        return node

    def count(self) -> Tuple[int, int]:
        files = dirs = 0
        for n in self.walk():
            if n.is_dir:
                dirs += 1
            else:
                files += 1
        return files, dirs


@dataclass
class ScanResult:
    root: Node
    scan_path: str
    files: int
    dirs: int
    skipped: int = 0
    elapsed_sec: float = 0.0
    scan_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_size(self) -> int:
        return self.root.size if self.root is not None else 0

    def recount(self) -> None:
        self.files, self.dirs = self.root.count()

    def __str__(self) -> str:
        return (f"ScanResult[path={self.scan_path}, files={self.files}, dirs={self.dirs}, "
                f"size={format_bytes(self.total_size)}, time={self.scan_time.isoformat()}]")
