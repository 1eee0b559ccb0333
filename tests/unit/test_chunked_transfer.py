"""
Unit tests for chunked_transfer.py - Progress tracking
"""
from beamlink.common.chunked_transfer import (
    ProgressTracker, TransferStats, format_bytes, format_time
)


class TestProgressTracker:
    """Tests for ProgressTracker"""

    def test_reports_cumulative_bytes(self):
        events = []
        tracker = ProgressTracker(100, lambda done, total: events.append((done, total)))
        tracker.start()
        for _ in range(4):
            tracker.update(25)

        assert events == [(25, 100), (50, 100), (75, 100), (100, 100)]
        assert tracker.bytes_transferred == 100

    def test_callback_errors_do_not_stop_tracking(self):
        def broken(done, total):
            raise RuntimeError("ui gone")

        tracker = ProgressTracker(10, broken)
        tracker.update(5)
        tracker.update(5)
        assert tracker.bytes_transferred == 10

    def test_no_callback(self):
        tracker = ProgressTracker(10)
        tracker.update(3)
        assert tracker.bytes_transferred == 3

    def test_may_exceed_declared_total(self):
        events = []
        tracker = ProgressTracker(4, lambda done, total: events.append(done))
        tracker.update(3)
        tracker.update(3)
        assert events == [3, 6]
        assert "100.0%" in tracker.get_progress_string()


class TestTransferStats:
    """Tests for TransferStats"""

    def test_percent(self):
        stats = TransferStats(bytes_transferred=25, bytes_total=100)
        assert stats.percent == 25.0

    def test_percent_zero_total(self):
        assert TransferStats().percent == 0.0


class TestFormatting:
    """Tests for format_bytes and format_time"""

    def test_format_bytes(self):
        assert format_bytes(512) == "512.0 B"
        assert format_bytes(2048) == "2.0 KB"
        assert format_bytes(5 * 1024 * 1024) == "5.0 MB"

    def test_format_time(self):
        assert format_time(0) == "calculating..."
        assert format_time(42) == "42s"
        assert format_time(125) == "2m 5s"
        assert format_time(7260) == "2h 1m"
