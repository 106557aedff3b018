"""Tests for the per-identity RequestRateTracker."""

from iris.security.rate_limiter import RequestRateTracker


class TestRequestRateTracker:
    def test_counts_requests_in_window(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        for i in range(3):
            snapshot = tracker.record("u1", f"q{i}")
        assert snapshot.request_count == 3
        assert snapshot.repeat_count == 1

    def test_counts_repeats(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        tracker.record("u1", "same")
        tracker.record("u1", "other")
        snapshot = tracker.record("u1", "same")
        assert snapshot.request_count == 3
        assert snapshot.repeat_count == 2

    def test_old_requests_leave_window(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        tracker.record("u1", "a")
        clock.advance(30)
        tracker.record("u1", "b")
        clock.advance(31)
        snapshot = tracker.record("u1", "a")
        assert snapshot.request_count == 2
        assert snapshot.repeat_count == 1

    def test_idle_identities_are_evicted(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        tracker.record("old", "a")
        clock.advance(61)
        tracker.record("new", "a")
        assert len(tracker) == 1
        assert "old" not in tracker.requests

    def test_get_stats(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        tracker.record("u1", "a")
        tracker.record("u1", "a")
        tracker.record("u1", "b")
        assert tracker.get_stats("u1") == {"recent_requests": 3, "distinct_queries": 2}
        assert tracker.get_stats("nobody") == {"recent_requests": 0, "distinct_queries": 0}

    def test_reset_identity(self, clock):
        tracker = RequestRateTracker(window_seconds=60, clock=clock)
        tracker.record("u1", "a")
        tracker.reset_identity("u1")
        assert tracker.record("u1", "a").request_count == 1
