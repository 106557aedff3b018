"""Tests for iris.routing.health_monitor."""

import pytest

from iris.routing.health_monitor import NEUTRAL_SCORE, HealthMonitor


def _monitor(clock, **kwargs) -> HealthMonitor:
    return HealthMonitor(clock=clock, **kwargs)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestHealthScore:
    def test_unknown_provider_is_neutral(self, clock):
        assert _monitor(clock).score("nobody") == NEUTRAL_SCORE

    def test_all_successes_score_100(self, clock):
        hm = _monitor(clock)
        for _ in range(10):
            hm.record("p", 100.0, True)
        assert hm.score("p") == 100

    def test_all_failures_score_0(self, clock):
        hm = _monitor(clock)
        for _ in range(10):
            hm.record("p", 100.0, False)
        assert hm.score("p") == 0

    def test_mixed_window(self, clock):
        hm = _monitor(clock)
        for _ in range(5):
            hm.record("p", 100.0, True)
        for _ in range(5):
            hm.record("p", 100.0, False)
        # 0.7 * 0.5 + 0.3 * 0.5
        assert hm.score("p") == 50

    def test_cold_start_pulls_toward_neutral(self, clock):
        hm = _monitor(clock, min_samples=5)
        hm.record("p", 100.0, True)
        # raw 100, one of five samples: 50 + 50 * 1/5
        assert hm.score("p") == 60
        hm2 = _monitor(clock, min_samples=5)
        hm2.record("p", 100.0, False)
        assert hm2.score("p") == 40

    def test_record_returns_new_score(self, clock):
        hm = _monitor(clock)
        assert hm.record("p", 100.0, False) == hm.score("p")

    @pytest.mark.parametrize("history", [[], [True] * 3, [True] * 20, [True, False] * 10])
    def test_consecutive_failures_never_raise_score(self, clock, history):
        hm = _monitor(clock)
        for ok in history:
            hm.record("p", 100.0, ok)
        previous = hm.score("p")
        for _ in range(60):
            current = hm.record("p", 100.0, False)
            assert current <= previous
            previous = current

    def test_window_is_bounded(self, clock):
        hm = _monitor(clock, window_size=50)
        for _ in range(120):
            hm.record("p", 10.0, True)
        assert hm.sample_count("p") == 50
        snap = hm.snapshot("p")
        assert snap["samples"] == 50
        assert snap["total_requests"] == 120

    def test_old_failures_age_out(self, clock):
        hm = _monitor(clock, window_size=10)
        for _ in range(10):
            hm.record("p", 10.0, False)
        for _ in range(10):
            hm.record("p", 10.0, True)
        assert hm.score("p") == 100


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


class TestAnomalies:
    def test_not_anomalous_without_enough_samples(self, clock):
        hm = _monitor(clock, min_samples=5)
        for _ in range(4):
            hm.record("p", 100.0, True)
        assert not hm.is_anomalous("p", 10_000.0)

    def test_spike_is_anomalous(self, clock):
        hm = _monitor(clock)
        for latency in (100, 110, 90, 105, 95, 100, 102, 98):
            hm.record("p", float(latency), True)
        assert hm.is_anomalous("p", 1000.0)
        assert not hm.is_anomalous("p", 110.0)

    def test_anomalous_success_lowers_score(self, clock):
        hm = _monitor(clock)
        for latency in (100, 110, 90, 105, 95, 100, 102, 98, 101, 99):
            hm.record("p", float(latency), True)
        assert hm.score("p") == 100
        hm.record("p", 5000.0, True)
        assert hm.score("p") < 100
        assert hm.snapshot("p")["anomalies"] == 1

    def test_failures_ignored_for_latency_stats(self, clock):
        hm = _monitor(clock)
        for _ in range(6):
            hm.record("p", 100.0, True)
        for _ in range(6):
            hm.record("p", 30_000.0, False)
        assert hm.is_anomalous("p", 1000.0)

    def test_unknown_provider_not_anomalous(self, clock):
        assert not _monitor(clock).is_anomalous("nobody", 1e9)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class TestReport:
    @pytest.mark.parametrize("score,label", [(100, "healthy"), (80, "healthy"), (79, "warning"), (60, "warning"), (59, "critical")])
    def test_status_label(self, score, label):
        assert HealthMonitor.status_label(score) == label

    def test_report_includes_requested_providers(self, clock):
        hm = _monitor(clock)
        for _ in range(5):
            hm.record("good", 50.0, True)
            hm.record("bad", 50.0, False)
        report = hm.report(["good", "bad", "fresh"])
        assert report["providers"]["good"]["status"] == "healthy"
        assert report["providers"]["bad"]["status"] == "critical"
        assert report["providers"]["fresh"]["health_score"] == NEUTRAL_SCORE
        assert report["system_health"] == round((100 + 0 + 50) / 3)
        assert report["timestamp"] == clock.now

    def test_snapshot_statistics(self, clock):
        hm = _monitor(clock)
        hm.record("p", 100.0, True)
        hm.record("p", 300.0, True)
        hm.record("p", 999.0, False)
        snap = hm.snapshot("p")
        assert snap["success_rate"] == pytest.approx(2 / 3)
        assert snap["mean_latency_ms"] == pytest.approx(200.0)
        assert snap["total_failures"] == 1

    def test_reset(self, clock):
        hm = _monitor(clock)
        for _ in range(10):
            hm.record("p", 10.0, False)
        hm.reset("p")
        assert hm.score("p") == NEUTRAL_SCORE
        assert hm.sample_count("p") == 0
