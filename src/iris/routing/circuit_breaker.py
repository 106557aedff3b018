"""Circuit Breaker: suppresses calls to repeatedly failing providers."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitRecord:
    """Breaker state for one provider. Mutated only while holding ``lock``."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at: float | None = None
    trial_in_flight: bool = False
    last_failure_time: float | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CircuitBreaker:
    """
    Per-provider CLOSED / OPEN / HALF_OPEN state machine.

    - CLOSED: calls allowed; ``failure_threshold`` consecutive failures open it.
    - OPEN: calls refused until ``recovery_timeout`` seconds after ``opened_at``.
      Failures reported while open leave ``opened_at`` untouched.
    - HALF_OPEN: entered by the first acquire() after the cooldown; exactly one
      trial call is admitted. Success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._circuits: dict[str, CircuitRecord] = {}
        self._circuits_lock = threading.Lock()

    def _circuit(self, provider_id: str) -> CircuitRecord:
        record = self._circuits.get(provider_id)
        if record is None:
            with self._circuits_lock:
                record = self._circuits.setdefault(provider_id, CircuitRecord())
        return record

    def _cooldown_elapsed(self, record: CircuitRecord) -> bool:
        return record.opened_at is not None and (
            self._clock() - record.opened_at >= self.recovery_timeout
        )

    def is_available(self, provider_id: str) -> bool:
        """Non-mutating peek: would acquire() admit a call right now?"""
        record = self._circuit(provider_id)
        with record.lock:
            if record.state == CircuitState.CLOSED:
                return True
            if record.state == CircuitState.OPEN:
                return self._cooldown_elapsed(record)
            return not record.trial_in_flight

    def acquire(self, provider_id: str) -> tuple[bool, str]:
        """Return (allowed, reason), moving OPEN -> HALF_OPEN once the cooldown is over."""
        record = self._circuit(provider_id)
        with record.lock:
            if record.state == CircuitState.CLOSED:
                return True, "circuit_closed"
            if record.state == CircuitState.OPEN:
                if self._cooldown_elapsed(record):
                    record.state = CircuitState.HALF_OPEN
                    record.trial_in_flight = True
                    logger.info("Circuit breaker for %s: OPEN -> HALF_OPEN", provider_id)
                    return True, "circuit_testing_recovery"
                wait_time = int(self.recovery_timeout - (self._clock() - record.opened_at))
                return False, f"circuit_open_wait_{wait_time}s"
            if not record.trial_in_flight:
                record.trial_in_flight = True
                return True, "circuit_half_open_testing"
            return False, "circuit_half_open_limit_reached"

    def release(self, provider_id: str) -> None:
        """Give back a half-open trial slot without a verdict (caller cancelled)."""
        record = self._circuit(provider_id)
        with record.lock:
            if record.state == CircuitState.HALF_OPEN:
                record.trial_in_flight = False

    def record_success(self, provider_id: str) -> None:
        """Record a successful call; recovers half-open circuits."""
        record = self._circuit(provider_id)
        with record.lock:
            if record.state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker for %s: HALF_OPEN -> CLOSED (recovered)", provider_id)
            record.state = CircuitState.CLOSED
            record.consecutive_failures = 0
            record.opened_at = None
            record.trial_in_flight = False

    def record_failure(self, provider_id: str) -> None:
        """Record a failed call; may open the circuit."""
        record = self._circuit(provider_id)
        with record.lock:
            record.consecutive_failures += 1
            record.last_failure_time = self._clock()
            if record.state == CircuitState.HALF_OPEN:
                record.state = CircuitState.OPEN
                record.opened_at = self._clock()
                record.trial_in_flight = False
                logger.warning("Circuit breaker for %s: HALF_OPEN -> OPEN (trial failed)", provider_id)
            elif (
                record.state == CircuitState.CLOSED
                and record.consecutive_failures >= self.failure_threshold
            ):
                record.state = CircuitState.OPEN
                record.opened_at = self._clock()
                logger.warning(
                    "Circuit breaker for %s: CLOSED -> OPEN (%s failures)",
                    provider_id,
                    record.consecutive_failures,
                )

    def get_state(self, provider_id: str) -> CircuitState:
        """Get current circuit state for provider"""
        record = self._circuit(provider_id)
        with record.lock:
            return record.state

    def consecutive_failures(self, provider_id: str) -> int:
        record = self._circuit(provider_id)
        with record.lock:
            return record.consecutive_failures

    def opened_at(self, provider_id: str) -> float | None:
        record = self._circuit(provider_id)
        with record.lock:
            return record.opened_at

    def snapshot(self, provider_id: str) -> dict:
        record = self._circuit(provider_id)
        with record.lock:
            return {
                'state': record.state.value,
                'consecutive_failures': record.consecutive_failures,
                'opened_at': record.opened_at,
                'last_failure_time': record.last_failure_time,
                'trial_in_flight': record.trial_in_flight,
            }

    def reset(self, provider_id: str) -> None:
        """Manually reset circuit for provider"""
        record = self._circuit(provider_id)
        with record.lock:
            record.state = CircuitState.CLOSED
            record.consecutive_failures = 0
            record.opened_at = None
            record.trial_in_flight = False
        logger.info("Circuit breaker for %s: manually reset to CLOSED", provider_id)
