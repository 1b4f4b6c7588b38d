"""Thread-safe progress tracking for transfers."""

from __future__ import annotations

import threading
import time
from typing import Tuple

from .errors import TransferCancelledException
from .fileops import format_size


class ProgressTracker:
    """Thread-safe progress tracking for file operations."""

    def __init__(self, total_files: int = 0, total_bytes: int = 0) -> None:
        self._lock = threading.RLock()
        self._total_files = total_files
        self._total_bytes = total_bytes
        self._completed_files = 0
        self._completed_bytes = 0
        self._file_bytes = 0
        self._current_file = ""
        self._cancelled = False
        self._start_time = time.time()

    def add_files(self, count: int = 1) -> None:
        with self._lock:
            self._total_files += count

    def update_file_progress(self, filename: str, bytes_transferred: int, total_file_bytes: int) -> None:
        """Update progress for current file."""
        with self._lock:
            self._current_file = filename
            self._file_bytes = bytes_transferred

    def complete_file(self) -> None:
        """Mark current file as completed."""
        with self._lock:
            self._completed_files += 1
            self._completed_bytes += self._file_bytes
            self._file_bytes = 0

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True

    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def check_cancelled(self) -> None:
        """Raise :class:`TransferCancelledException` once :meth:`cancel` was called."""
        if self.is_cancelled():
            raise TransferCancelledException("Transfer cancelled")

    def callback(self, filename: str):
        """Return an ``on_progress`` callback bound to ``filename``.

        The callback raises :class:`TransferCancelledException` after
        :meth:`cancel`, which aborts the underlying get/put mid-file.
        """
        def _progress(transferred: int, total: int) -> None:
            self.check_cancelled()
            self.update_file_progress(filename, transferred, total)

        return _progress

    @property
    def completed_files(self) -> int:
        with self._lock:
            return self._completed_files

    @property
    def transferred_bytes(self) -> int:
        with self._lock:
            return self._completed_bytes + self._file_bytes

    def get_progress(self) -> Tuple[float, str, float]:
        """Get current progress as (fraction, status_message, speed_bytes_per_sec)."""
        with self._lock:
            elapsed = time.time() - self._start_time
            transferred = self._completed_bytes + self._file_bytes
            speed = transferred / elapsed if elapsed > 0 else 0.0

            if self._total_files == 0:
                return 0.0, "Preparing...", speed

            if self._total_bytes > 0:
                fraction = min(transferred / self._total_bytes, 1.0)
            else:
                fraction = self._completed_files / self._total_files

            if self._current_file:
                status = f"Processing {self._current_file} ({format_size(transferred)})"
            else:
                status = "Processing files..."
            return fraction, status, speed
