"""Tests for progress events and run metrics."""

import pytest

from billofmaterial.monitoring.metrics import FetchMetrics
from billofmaterial.monitoring.progress import ProgressChannel, ProgressEvent


class TestProgressChannel:
    """Tests for ProgressChannel."""

    async def test_drains_until_closed(self):
        """Every emitted event is delivered, then iteration stops."""
        channel = ProgressChannel()
        channel.emit("Starting...")
        channel.emit("Analyzed a", 1, 2)
        channel.close()

        events = [event async for event in channel]
        assert events == [ProgressEvent("Starting..."), ProgressEvent("Analyzed a", 1, 2)]
        assert channel.emitted == 2

    async def test_emit_after_close_raises(self):
        """A closed channel rejects new events."""
        channel = ProgressChannel()
        channel.close()
        channel.close()
        with pytest.raises(RuntimeError):
            channel.emit("late")

    async def test_single_consumer(self):
        """The stream cannot be iterated twice."""
        channel = ProgressChannel()
        channel.close()
        assert [e async for e in channel] == []
        with pytest.raises(RuntimeError):
            channel.__aiter__()

    def test_percent(self):
        """Percent is derived from current and total."""
        assert ProgressEvent("x", 1, 4).percent == 25.0
        assert ProgressEvent("x").percent is None
        assert ProgressEvent("x", 0, 0).percent is None


class TestFetchMetrics:
    """Tests for FetchMetrics."""

    def test_peak_in_flight(self):
        """The peak tracks the highest concurrent count."""
        metrics = FetchMetrics()
        metrics.acquire()
        metrics.acquire()
        metrics.release()
        metrics.acquire()
        metrics.release()
        metrics.release()

        assert metrics.requests == 3
        assert metrics.peak_in_flight == 2
        assert metrics.in_flight == 0

    def test_failures_recorded(self):
        """Failures are counted per provider and kept in a bounded buffer."""
        metrics = FetchMetrics()
        for i in range(25):
            metrics.record_failure(f"pkg-{i}", "registry", "HTTP 500")
        metrics.record_failure("pkg", "security", "HTTP 503")

        assert metrics.failures == {"registry": 25, "security": 1}
        assert metrics.failure_count == 26
        assert len(metrics.recent_errors) == 20
        assert metrics.to_dict()["recent_errors"][-1]["provider"] == "security"
