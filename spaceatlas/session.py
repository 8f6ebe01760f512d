from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

from .cache import ResultCache
from .config import AtlasConfig
from .errors import NotFound
from .models import Node, ScanResult
from .mutator import SafeMutator
from .scanner import CancelCb, ProgressCb, scan_path
from .utils import canonical, canonical_entry

logger = logging.getLogger(__name__)


class Session:
    """One scanned tree: cache lookup, scanning, edits and re-saving."""

    def __init__(self, config: Optional[AtlasConfig] = None, cache: Optional[ResultCache] = None):
        self.config = config or AtlasConfig()
        self.cache = cache or ResultCache(self.config.cache_dir, enabled=self.config.cache_enabled)
        self.result: Optional[ScanResult] = None
        self.from_cache = False
        self._mutator: Optional[SafeMutator] = None

    def load_cached(self, path: str) -> Optional[ScanResult]:
        cached = self.cache.load(path)
        if cached is not None:
            logger.info("Using cached scan of %s from %s", cached.scan_path, cached.scan_time)
            self._attach(cached, from_cache=True)
        return cached

    def adopt(self, result: ScanResult, save: bool = True) -> ScanResult:
        if save:
            self.cache.save(result)
        self._attach(result, from_cache=False)
        return result

    def open(self, path: str, use_cache: bool = True,
             progress: Optional[ProgressCb] = None,
             cancel_flag: Optional[CancelCb] = None) -> ScanResult:
        if use_cache:
            cached = self.load_cached(path)
            if cached is not None:
                return cached
        return self.rescan(path, progress=progress, cancel_flag=cancel_flag)

    def rescan(self, path: Optional[str] = None,
               progress: Optional[ProgressCb] = None,
               cancel_flag: Optional[CancelCb] = None) -> ScanResult:
        if path is None:
            if self.result is None:
                raise ValueError("Nothing scanned yet")
            path = self.result.scan_path
        result = scan_path(path, progress=progress, cancel_flag=cancel_flag,
                           progress_interval=self.config.progress_interval)
        return self.adopt(result)

    def _attach(self, result: ScanResult, from_cache: bool) -> None:
        self.result = result
        self.from_cache = from_cache
        self._mutator = None

    @property
    def mutator(self) -> SafeMutator:
        if self.result is None:
            raise ValueError("Nothing scanned yet")
        if self._mutator is None:
            self._mutator = SafeMutator(self.result.root)
        return self._mutator

    def node(self, path: str) -> Node:
        if self.result is None:
            raise ValueError("Nothing scanned yet")
        root = self.result.root
        found = root.find(canonical_entry(path))
        if found is None and canonical(path) == root.path:
            # a link naming the scan root itself
            found = root
        if found is None:
            raise NotFound("Not part of the scanned tree", path)
        return found

    def persist(self) -> Optional[Path]:
        if self.result is None:
            return None
        self.result.recount()
        return self.cache.save(self.result)
