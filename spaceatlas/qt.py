from __future__ import annotations
from typing import Optional

from PySide6.QtCore import QObject, QThread, Signal

from .errors import ScanCancelled
from .scanner import DEFAULT_PROGRESS_INTERVAL, scan_path
from .worker import CancelFlag


class ScanThread(QThread):
    progress = Signal(int, int)  # files, dirs
    done = Signal(object)        # ScanResult
    cancelled = Signal()
    error = Signal(str)

    def __init__(self, path: str, progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
                 parent: Optional[QObject] = None):
        super().__init__(parent)
        self.path = path
        self.progress_interval = progress_interval
        self.cancel_flag = CancelFlag()

    def cancel(self):
        self.cancel_flag.cancel()

    def run(self):
        def prog(files: int, dirs: int):
            self.progress.emit(files, dirs)
        try:
            res = scan_path(self.path, progress=prog, cancel_flag=self.cancel_flag,
                            progress_interval=self.progress_interval)
        except ScanCancelled:
            self.cancelled.emit()
            return
        except Exception as e:
            self.error.emit(str(e))
            return
        self.done.emit(res)
