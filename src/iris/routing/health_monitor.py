"""Health Monitor: per-provider latency/success history and a 0-100 health score."""

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50


@dataclass(frozen=True)
class HealthSample:
    timestamp: float
    latency_ms: float
    success: bool
    anomalous: bool = False


@dataclass
class HealthRecord:
    """Ring buffer of recent samples for one provider, plus the derived score."""

    samples: deque[HealthSample]
    score: int = NEUTRAL_SCORE
    total_requests: int = 0
    total_failures: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def _latency_stats(latencies: list[float]) -> tuple[float, float]:
    """Return (mean, population standard deviation)."""
    mean = sum(latencies) / len(latencies)
    variance = sum((x - mean) ** 2 for x in latencies) / len(latencies)
    return mean, math.sqrt(variance)


class HealthMonitor:
    """
    Tracks the last ``window_size`` attempts per provider and scores them.

    The score blends the success ratio with a latency-normality term. A
    successful sample whose latency exceeds mean + ``anomaly_sigma`` standard
    deviations of the window's successful latencies is flagged anomalous when
    recorded; anomalous samples count as successes but not as "normal" ones,
    so a one-off spike costs a fixed amount regardless of how slow it was.
    With fewer than ``min_samples`` samples the score is pulled toward 50.
    """

    def __init__(
        self,
        window_size: int = 50,
        min_samples: int = 5,
        anomaly_sigma: float = 3.0,
        success_weight: float = 0.7,
        clock: Callable[[], float] = time.time,
    ):
        self.window_size = window_size
        self.min_samples = min_samples
        self.anomaly_sigma = anomaly_sigma
        self.success_weight = success_weight
        self.latency_weight = 1.0 - success_weight
        self._clock = clock
        self._records: dict[str, HealthRecord] = {}
        self._records_lock = threading.Lock()

    def _record_for(self, provider_id: str) -> HealthRecord:
        record = self._records.get(provider_id)
        if record is None:
            with self._records_lock:
                record = self._records.setdefault(
                    provider_id, HealthRecord(samples=deque(maxlen=self.window_size))
                )
        return record

    def _is_anomalous_locked(self, record: HealthRecord, latency_ms: float) -> bool:
        latencies = [s.latency_ms for s in record.samples if s.success]
        if len(latencies) < self.min_samples:
            return False
        mean, stdev = _latency_stats(latencies)
        return latency_ms > mean + self.anomaly_sigma * stdev

    def _compute_score_locked(self, record: HealthRecord) -> int:
        n = len(record.samples)
        if n == 0:
            return NEUTRAL_SCORE
        successes = sum(1 for s in record.samples if s.success)
        normal = sum(1 for s in record.samples if s.success and not s.anomalous)
        raw = 100.0 * (self.success_weight * successes / n + self.latency_weight * normal / n)
        if n < self.min_samples:
            raw = NEUTRAL_SCORE + (raw - NEUTRAL_SCORE) * n / self.min_samples
        return max(0, min(100, round(raw)))

    def record(self, provider_id: str, latency_ms: float, success: bool) -> int:
        """Record a completed attempt and return the recomputed score."""
        record = self._record_for(provider_id)
        with record.lock:
            anomalous = success and self._is_anomalous_locked(record, latency_ms)
            record.samples.append(
                HealthSample(
                    timestamp=self._clock(),
                    latency_ms=latency_ms,
                    success=success,
                    anomalous=anomalous,
                )
            )
            record.total_requests += 1
            if not success:
                record.total_failures += 1
            record.score = self._compute_score_locked(record)
            score = record.score

        if anomalous:
            logger.warning(
                "Latency anomaly for %s: %.1fms (health score now %d)", provider_id, latency_ms, score
            )
        return score

    def score(self, provider_id: str) -> int:
        record = self._records.get(provider_id)
        if record is None:
            return NEUTRAL_SCORE
        with record.lock:
            return record.score

    def is_anomalous(self, provider_id: str, latency_ms: float) -> bool:
        """Would ``latency_ms`` be flagged against the provider's current window?"""
        record = self._records.get(provider_id)
        if record is None:
            return False
        with record.lock:
            return self._is_anomalous_locked(record, latency_ms)

    def sample_count(self, provider_id: str) -> int:
        record = self._records.get(provider_id)
        if record is None:
            return 0
        with record.lock:
            return len(record.samples)

    def snapshot(self, provider_id: str) -> dict:
        """Window statistics for one provider."""
        record = self._records.get(provider_id)
        if record is None:
            return {
                'health_score': NEUTRAL_SCORE,
                'samples': 0,
                'success_rate': None,
                'mean_latency_ms': None,
                'anomalies': 0,
                'total_requests': 0,
                'total_failures': 0,
            }
        with record.lock:
            samples = list(record.samples)
            score = record.score
            total_requests = record.total_requests
            total_failures = record.total_failures
        latencies = [s.latency_ms for s in samples if s.success]
        return {
            'health_score': score,
            'samples': len(samples),
            'success_rate': (sum(1 for s in samples if s.success) / len(samples)) if samples else None,
            'mean_latency_ms': (sum(latencies) / len(latencies)) if latencies else None,
            'anomalies': sum(1 for s in samples if s.anomalous),
            'total_requests': total_requests,
            'total_failures': total_failures,
        }

    @staticmethod
    def status_label(score: int) -> str:
        if score >= 80:
            return "healthy"
        if score >= 60:
            return "warning"
        return "critical"

    def report(self, provider_ids: list[str] | None = None) -> dict:
        """Per-provider health report plus the average as overall system health."""
        ids = provider_ids if provider_ids is not None else list(self._records)
        providers = {}
        for pid in ids:
            snap = self.snapshot(pid)
            snap['status'] = self.status_label(snap['health_score'])
            providers[pid] = snap
        system_health = (
            round(sum(p['health_score'] for p in providers.values()) / len(providers))
            if providers
            else 100
        )
        return {'timestamp': self._clock(), 'providers': providers, 'system_health': system_health}

    def reset(self, provider_id: str) -> None:
        """Drop all samples for a provider."""
        record = self._records.get(provider_id)
        if record is None:
            return
        with record.lock:
            record.samples.clear()
            record.score = NEUTRAL_SCORE
        logger.info("Health history for %s reset", provider_id)
