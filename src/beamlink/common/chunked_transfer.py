"""
Progress tracking for chunked payload copies.

Provides:
- TransferStats: cumulative byte count with speed and ETA calculation
- ProgressTracker: reports (bytes_transferred, bytes_total) after every chunk
- format_bytes / format_time helpers for display
"""
import time
import logging
import threading
from typing import Callable, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class TransferStats:
    """Statistics for a transfer in progress"""
    bytes_transferred: int = 0
    bytes_total: int = 0
    start_time: float = 0.0
    last_update_time: float = 0.0
    last_bytes: int = 0
    speed_bps: float = 0.0  # Bytes per second
    eta_seconds: float = 0.0

    def update(self, bytes_transferred: int):
        """Update stats with new byte count"""
        now = time.time()
        self.bytes_transferred = bytes_transferred

        # Calculate speed (smoothed over last interval)
        if self.last_update_time > 0:
            time_delta = now - self.last_update_time
            if time_delta > 0.1:  # Update at most every 100ms
                bytes_delta = bytes_transferred - self.last_bytes
                self.speed_bps = bytes_delta / time_delta
                self.last_update_time = now
                self.last_bytes = bytes_transferred

                remaining = max(self.bytes_total - bytes_transferred, 0)
                if self.speed_bps > 0:
                    self.eta_seconds = remaining / self.speed_bps
                else:
                    self.eta_seconds = 0
        else:
            self.last_update_time = now
            self.last_bytes = bytes_transferred

    @property
    def percent(self) -> float:
        """Get completion percentage"""
        if self.bytes_total == 0:
            return 0.0
        return (self.bytes_transferred / self.bytes_total) * 100

    @property
    def elapsed_seconds(self) -> float:
        """Get elapsed time since start"""
        if self.start_time == 0:
            return 0.0
        return time.time() - self.start_time


class ProgressTracker:
    """
    Accumulates bytes across every file of one session and reports progress.

    The total is the size declared in the handshake, not the sum of the
    per-file headers; the two are not required to agree.

    Usage:
        tracker = ProgressTracker(metadata.total_size, callback=on_progress)
        tracker.start()
        for chunk in chunks:
            tracker.update(len(chunk))
    """

    def __init__(self, total_bytes: int, callback: Optional[ProgressCallback] = None):
        self.total_bytes = total_bytes
        self.callback = callback
        self.stats = TransferStats(bytes_total=total_bytes)
        self._lock = threading.Lock()

    @property
    def bytes_transferred(self) -> int:
        return self.stats.bytes_transferred

    def start(self):
        """Start tracking progress"""
        with self._lock:
            self.stats.start_time = time.time()
            self.stats.last_update_time = 0

    def update(self, bytes_added: int):
        """Add bytes from one chunk and invoke the callback"""
        with self._lock:
            self.stats.update(self.stats.bytes_transferred + bytes_added)
            transferred = self.stats.bytes_transferred
        self._invoke_callback(transferred)

    def _invoke_callback(self, transferred: int):
        if self.callback:
            try:
                self.callback(transferred, self.total_bytes)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

    def get_progress_string(self) -> str:
        """Get a formatted progress string"""
        percent = min(self.stats.percent, 100.0)
        transferred = format_bytes(self.stats.bytes_transferred)
        total = format_bytes(self.stats.bytes_total)
        speed = format_bytes(self.stats.speed_bps) + "/s"
        eta = format_time(self.stats.eta_seconds)

        bar_width = 20
        filled = int(bar_width * percent / 100)
        bar = '█' * filled + '░' * (bar_width - filled)

        return f"[{bar}] {percent:.1f}% ({transferred}/{total}) - {speed} - ETA: {eta}"


def format_bytes(size: float) -> str:
    """Format byte size as human-readable string"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if abs(size) < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"


def format_time(seconds: float) -> str:
    """Format seconds as human-readable time"""
    if seconds <= 0:
        return "calculating..."
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        mins = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds / 3600)
        mins = int((seconds % 3600) / 60)
        return f"{hours}h {mins}m"
