from __future__ import annotations
import logging
import threading
from typing import List, Optional, Tuple

from .errors import ScanCancelled, SpaceAtlasError
from .models import ScanResult
from .scanner import DEFAULT_PROGRESS_INTERVAL, ProgressCb, scan_path

logger = logging.getLogger(__name__)


class CancelFlag:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()


class ScanJob:
    """A scan running on a background thread.

    Poll :meth:`progress` for the latest ``(files, dirs)`` snapshot or
    :meth:`subscribe` to be called with it. :meth:`result` re-raises
    :class:`ScanCancelled` or the scan error.
    """

    def __init__(self, root: str, progress_interval: float = DEFAULT_PROGRESS_INTERVAL):
        self.root = root
        self.progress_interval = progress_interval
        self.cancel_flag = CancelFlag()
        self._lock = threading.Lock()
        self._snapshot: Tuple[int, int] = (0, 0)
        self._subscribers: List[ProgressCb] = []
        self._result: Optional[ScanResult] = None
        self._error: Optional[BaseException] = None
        self._finished = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"scan:{root}", daemon=True)

    def subscribe(self, callback: ProgressCb) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def start(self) -> ScanJob:
        self._thread.start()
        return self

    def progress(self) -> Tuple[int, int]:
        with self._lock:
            return self._snapshot

    def cancel(self) -> None:
        self.cancel_flag.cancel()

    @property
    def done(self) -> bool:
        return self._finished.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> ScanResult:
        if not self.wait(timeout):
            raise TimeoutError(f"Scan of {self.root} still running")
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise RuntimeError(f"Scan of {self.root} finished without a result")
        return self._result

    def _on_progress(self, files: int, dirs: int) -> None:
        with self._lock:
            self._snapshot = (files, dirs)
            subscribers = list(self._subscribers)
        for cb in subscribers:
            cb(files, dirs)

    def _run(self) -> None:
        try:
            self._result = scan_path(self.root,
                                     progress=self._on_progress,
                                     cancel_flag=self.cancel_flag,
                                     progress_interval=self.progress_interval)
        except ScanCancelled as e:
            logger.info("Scan of %s cancelled", self.root)
            self._error = e
        except SpaceAtlasError as e:
            logger.error("Scan of %s failed: %s", self.root, e)
            self._error = e
        except Exception as e:
            logger.exception("Scan of %s failed", self.root)
            self._error = e
        finally:
            self._finished.set()
