"""Filesystem edits that keep the scanned tree in sync.

Every operation resolves paths before comparing them against the scan root,
so ``..`` segments or symlinked components cannot reach outside of it.
Failures raise a :class:`~spaceatlas.errors.SpaceAtlasError` subclass and
leave the tree as it was.
"""
from __future__ import annotations
import logging
import os
import shutil
import sys
import time

from .errors import (
    BoundaryViolation, CycleRejected, InvalidName, NotADirectory, NotFound, TreeError,
    from_os_error,
)
from .models import Node
from .utils import canonical, canonical_entry, is_within

logger = logging.getLogger(__name__)

INVALID_CHARS = frozenset('<>:"/\\|?*\0')
RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)


def validate_name(name: str) -> str:
    if not name or not name.strip():
        raise InvalidName("Folder name is empty")
    if name in (".", ".."):
        raise InvalidName(f"'{name}' is not a valid folder name")
    bad = sorted(set(name) & INVALID_CHARS)
    if bad or any(ord(c) < 32 for c in name):
        shown = "".join(c for c in bad if c != "\0") or "control characters"
        raise InvalidName(f"Folder name contains invalid characters: {shown}")
    # reserved on Windows, rejected everywhere so trees stay portable
    if name.upper().split(".", 1)[0] in RESERVED_NAMES:
        raise InvalidName(f"'{name}' is a reserved device name")
    if sys.platform.startswith("win") and name[-1] in " .":
        raise InvalidName("Folder name cannot end with a space or a dot")
    return name


def _rmtree(path: str) -> None:
    def ignore_missing(exc: BaseException) -> None:
        # removed concurrently by someone else
        if isinstance(exc, FileNotFoundError):
            return
        raise exc

    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=lambda fn, p, exc: ignore_missing(exc))
    else:
        shutil.rmtree(path, onerror=lambda fn, p, info: ignore_missing(info[1]))


class SafeMutator:
    def __init__(self, root: Node):
        if not root.is_dir:
            raise NotADirectory("Scan root must be a directory", root.path)
        self.root = root
        self.boundary = canonical(root.path)

    # -------------------- checks
    def _check_in_tree(self, node: Node) -> None:
        top = node
        for top in node.ancestors():
            pass
        if top is not self.root:
            raise BoundaryViolation("Node is not part of the scanned tree", node.path)

    def _container(self, node: Node) -> str:
        real = canonical(node.path)
        if not is_within(real, self.boundary):
            raise BoundaryViolation("Path escapes the scanned folder", node.path)
        return real

    def _entry(self, node: Node) -> str:
        if node is self.root:
            raise BoundaryViolation("Refusing to modify the scan root", node.path)
        real = canonical_entry(node.path)
        if not is_within(real, self.boundary, allow_equal=False):
            raise BoundaryViolation("Path escapes the scanned folder", node.path)
        return real

    @staticmethod
    def _name_taken(parent: Node, real_parent: str, name: str) -> bool:
        key = os.path.normcase(name)
        if any(os.path.normcase(c.name) == key for c in parent.children):
            return True
        return os.path.lexists(os.path.join(real_parent, name))

    # -------------------- operations
    def create_directory(self, parent: Node, name: str) -> Node:
        if not parent.is_dir:
            raise NotADirectory("Cannot create a folder inside a file", parent.path)
        validate_name(name)
        self._check_in_tree(parent)
        real_parent = self._container(parent)
        if self._name_taken(parent, real_parent, name):
            raise InvalidName(f"'{name}' already exists", parent.path)

        target = os.path.join(real_parent, name)
        try:
            os.mkdir(target)
        except FileExistsError as e:
            raise InvalidName(f"'{name}' already exists", parent.path) from e
        except OSError as e:
            raise from_os_error(e, "Could not create folder", target) from e
        try:
            mtime = os.stat(target).st_mtime
        except OSError:
            mtime = time.time()

        node = Node(os.path.join(parent.path, name), True, mtime=mtime)
        parent.add_child(node)
        parent.refresh_chain()
        logger.info("Created directory %s", node.path)
        return node

    def delete(self, node: Node) -> Node:
        """Delete ``node`` on disk and from the tree. Returns its former parent."""
        self._check_in_tree(node)
        real = self._entry(node)
        if not os.path.lexists(real):
            raise NotFound("Path no longer exists", node.path)

        try:
            if os.path.isdir(real) and not os.path.islink(real):
                _rmtree(real)
            else:
                os.remove(real)
        except OSError as e:
            logger.warning("Delete of %s failed: %s", real, e)
            raise from_os_error(e, "Could not delete", node.path) from e

        parent = node.parent
        if parent is None:
            raise TreeError("Node has no parent", node.path)
        parent.remove_child(node)
        parent.refresh_chain()
        logger.info("Deleted %s", node.path)
        return parent

    def move(self, source: Node, destination: Node) -> Node:
        """Move ``source`` into the ``destination`` folder. Returns the moved node."""
        self._check_in_tree(source)
        self._check_in_tree(destination)
        n = destination
        while n is not None:
            if n is source:
                raise CycleRejected("Cannot move a folder into itself or its subdirectory",
                                    destination.path)
            n = n.parent
        if not destination.is_dir:
            raise NotADirectory("Destination must be a directory", destination.path)

        src_real = self._entry(source)
        dst_real = self._container(destination)
        if is_within(dst_real, src_real):
            raise CycleRejected("Cannot move a folder into itself or its subdirectory",
                                destination.path)
        if not os.path.lexists(src_real):
            raise NotFound("Path no longer exists", source.path)
        if self._name_taken(destination, dst_real, source.name):
            raise InvalidName(f"'{source.name}' already exists in destination", destination.path)

        target = os.path.join(dst_real, source.name)
        try:
            shutil.move(src_real, target)
        except OSError as e:
            logger.warning("Move of %s to %s failed: %s", src_real, target, e)
            raise from_os_error(e, "Could not move", source.path) from e

        old_parent = source.parent
        if old_parent is None:
            raise TreeError("Node has no parent", source.path)
        old_path = source.path
        old_parent.remove_child(source)
        source.rebase(os.path.join(destination.path, source.name))
        destination.add_child(source)
        old_parent.refresh_chain()
        destination.refresh_chain()
        logger.info("Moved %s to %s", old_path, source.path)
        return source
