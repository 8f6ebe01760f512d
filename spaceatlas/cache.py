"""Persisted scan results, one signed JSON file per scan root.

Entries are written as an envelope ``{"signature": ..., "payload": ...}``
where ``payload`` is the JSON of a :class:`CacheEntry` and ``signature`` its
HMAC-SHA256 under a random key kept next to the entries. The tree is stored
as a flat pre-order list of node records whose ``children`` hold record
indices, so deep trees never hit recursion limits on either side.

Loading validates the signature, the schema, the tree shape, the size
totals and that every node path resolves under the recorded scan root.
Any failure is a cache miss; nothing is ever partially loaded.
"""
from __future__ import annotations
import base64
import hashlib
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Literal, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import CacheCorrupt
from .models import Node, ScanResult
from .utils import canonical, is_within

logger = logging.getLogger(__name__)

CACHE_VERSION = 1
KEY_FILE = ".key"
KEY_SIZE = 32
MAX_KEY_NAME = 200


class NodeRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    name: str
    is_dir: bool
    size: int = Field(ge=0)
    own_size: int = Field(ge=0)
    mtime: float
    children: List[int] = Field(default_factory=list)


class CacheEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = CACHE_VERSION
    scan_path: str
    scan_time: datetime
    files: int = Field(ge=0)
    dirs: int = Field(ge=1)
    skipped: int = Field(default=0, ge=0)
    elapsed_sec: float = Field(default=0.0, ge=0.0)
    nodes: List[NodeRecord] = Field(min_length=1)


def cache_key(scan_path: str) -> str:
    key = base64.urlsafe_b64encode(scan_path.encode("utf-8")).decode("ascii")
    if len(key) > MAX_KEY_NAME:
        # too long for a file name, fall back to a digest
        key = "h-" + hashlib.sha256(scan_path.encode("utf-8")).hexdigest()
    return key + ".json"


def _flatten(root: Node) -> List[NodeRecord]:
    order = list(root.walk())
    index = {id(n): i for i, n in enumerate(order)}
    return [
        NodeRecord(
            path=n.path,
            name=n.name,
            is_dir=n.is_dir,
            size=n.size,
            own_size=n.own_size,
            mtime=n.mtime,
            children=[index[id(c)] for c in n.children],
        )
        for n in order
    ]


def _rebuild(entry: CacheEntry) -> Node:
    records = entry.nodes
    first = records[0]
    if first.path != entry.scan_path or not first.is_dir:
        raise CacheCorrupt("Root record does not match the scan path", first.path)
    boundary = canonical(entry.scan_path)

    nodes: List[Optional[Node]] = [None] * len(records)
    nodes[0] = Node(first.path, True, size=first.size, mtime=first.mtime, name=first.name)
    files = dirs = 0

    for i, rec in enumerate(records):
        node = nodes[i]
        if node is None:
            raise CacheCorrupt(f"Record {i} is not attached to the tree", rec.path)
        node.own_size = rec.own_size
        if rec.is_dir:
            dirs += 1
        else:
            files += 1
            if rec.children:
                raise CacheCorrupt("File record has children", rec.path)
            if rec.own_size != rec.size:
                raise CacheCorrupt("File sizes disagree", rec.path)
            continue

        total = direct = 0
        for ci in rec.children:
            if ci <= i or ci >= len(records) or nodes[ci] is not None:
                raise CacheCorrupt(f"Bad child reference {ci}", rec.path)
            crec = records[ci]
            if (crec.name in ("", os.curdir, os.pardir) or os.sep in crec.name
                    or (os.altsep and os.altsep in crec.name)):
                raise CacheCorrupt("Bad node name", crec.path)
            if crec.path != os.path.join(rec.path, crec.name):
                raise CacheCorrupt("Node path does not match its parent", crec.path)
            if not is_within(canonical(crec.path), boundary, allow_equal=False):
                raise CacheCorrupt("Node path escapes the scan root", crec.path)
            child = Node(crec.path, crec.is_dir, size=crec.size, mtime=crec.mtime, name=crec.name)
            node.add_child(child)
            nodes[ci] = child
            total += crec.size
            if not crec.is_dir:
                direct += crec.size
        if total != rec.size or direct != rec.own_size:
            raise CacheCorrupt("Directory totals do not add up", rec.path)

    if files != entry.files or dirs != entry.dirs:
        raise CacheCorrupt("Node counts do not match the recorded counts", entry.scan_path)
    root = nodes[0]
    if root is None:
        raise CacheCorrupt("Missing root record", entry.scan_path)
    return root


class ResultCache:
    def __init__(self, cache_dir: Union[str, Path], enabled: bool = True):
        self.cache_dir = Path(cache_dir).expanduser()
        self.enabled = enabled

    def entry_path(self, scan_path: str) -> Path:
        return self.cache_dir / cache_key(canonical(scan_path))

    # -------------------- signing
    def _key(self, create: bool) -> bytes:
        key_path = self.cache_dir / KEY_FILE
        try:
            key = key_path.read_bytes()
            if len(key) == KEY_SIZE:
                return key
        except FileNotFoundError:
            if not create:
                raise
        if not create:
            raise CacheCorrupt("Cache key is damaged", str(key_path))
        key = os.urandom(KEY_SIZE)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        return key

    def _sign(self, data: bytes, create: bool = False) -> str:
        h = hmac.HMAC(self._key(create), hashes.SHA256())
        h.update(data)
        return h.finalize().hex()

    def _verify(self, data: bytes, signature: str) -> None:
        h = hmac.HMAC(self._key(create=False), hashes.SHA256())
        h.update(data)
        h.verify(bytes.fromhex(signature))

    # -------------------- public
    def save(self, result: ScanResult) -> Optional[Path]:
        """Write ``result``. Failures are logged and reported as ``None``."""
        if not self.enabled:
            return None
        # counts follow the tree, which edits may have changed since the scan
        files, dirs = result.root.count()
        entry = CacheEntry(
            scan_path=result.scan_path,
            scan_time=result.scan_time,
            files=files,
            dirs=dirs,
            skipped=result.skipped,
            elapsed_sec=result.elapsed_sec,
            nodes=_flatten(result.root),
        )
        payload = entry.model_dump_json()
        target = self.entry_path(result.scan_path)
        tmp = target.with_suffix(".tmp")
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            envelope = json.dumps({
                "signature": self._sign(payload.encode("utf-8"), create=True),
                "payload": payload,
            })
            tmp.write_text(envelope, encoding="utf-8")
            os.replace(tmp, target)
        except OSError as e:
            logger.warning("Failed to save cache for %s: %s", result.scan_path, e)
            return None
        logger.debug("Cached %s in %s", result.scan_path, target)
        return target

    def load(self, scan_path: str) -> Optional[ScanResult]:
        if not self.enabled:
            return None
        wanted = canonical(scan_path)
        path = self.cache_dir / cache_key(wanted)
        if not path.is_file():
            return None
        try:
            return self._read(path, wanted)
        except CacheCorrupt as e:
            logger.warning("Ignoring cache entry %s: %s", path, e)
            return None

    def _read(self, path: Path, wanted: str) -> ScanResult:
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise CacheCorrupt(f"Unreadable cache file ({e})") from e
        if not isinstance(envelope, dict):
            raise CacheCorrupt("Unexpected cache layout")
        signature = envelope.get("signature")
        payload = envelope.get("payload")
        if not isinstance(signature, str) or not isinstance(payload, str):
            raise CacheCorrupt("Unexpected cache layout")

        try:
            self._verify(payload.encode("utf-8"), signature)
        except (InvalidSignature, ValueError) as e:
            raise CacheCorrupt("Signature mismatch") from e
        except OSError as e:
            raise CacheCorrupt(f"Cache key unavailable ({e})") from e

        try:
            entry = CacheEntry.model_validate_json(payload)
        except ValidationError as e:
            raise CacheCorrupt(f"Invalid cache entry: {e.error_count()} errors") from e
        if entry.scan_path != wanted:
            raise CacheCorrupt("Entry belongs to another scan root", entry.scan_path)

        root = _rebuild(entry)
        return ScanResult(
            root=root,
            scan_path=entry.scan_path,
            files=entry.files,
            dirs=entry.dirs,
            skipped=entry.skipped,
            elapsed_sec=entry.elapsed_sec,
            scan_time=entry.scan_time,
        )

    def invalidate(self, scan_path: str) -> bool:
        try:
            self.entry_path(scan_path).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Failed to delete cache entry for %s: %s", scan_path, e)
            return False
        return True

    def clear(self) -> int:
        """Delete every entry, carrying on past failures. Returns how many went."""
        if not self.cache_dir.is_dir():
            return 0
        removed = 0
        for path in list(self.cache_dir.glob("*.json")) + list(self.cache_dir.glob("*.tmp")):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Failed to delete cache file %s: %s", path, e)
        return removed
