"""
Core Type Definitions
=====================

Centralized type definitions shared by the orchestration components.

RoutingDecision is the single result object returned by Orchestrator.route()
for every outcome: cache hit, provider success, threat block, exhausted chain
or expired deadline. Failures are carried in ``final_error`` together with the
attempt trail so a caller can always explain what happened.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from iris.core.exceptions import IrisError
    from iris.security.threat_classifier import ThreatAssessment


class TaskType(StrEnum):
    """Coarse request categories used to pick chains and cache thresholds."""

    CODE = "code"
    CREATIVE = "creative"
    FAST = "fast"
    ULTRA_FAST = "ultra_fast"
    COMPLEX = "complex"
    REASONING = "reasoning"
    GENERAL = "general"


class AttemptOutcome(StrEnum):
    """Result of a single provider attempt within a chain walk."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"  # circuit refused the attempt after the candidate list was built
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptRecord:
    """One hop of the failover walk."""

    provider_id: str
    outcome: AttemptOutcome
    latency_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'provider_id': self.provider_id,
            'outcome': self.outcome.value,
            'latency_ms': round(self.latency_ms, 2),
            'error': self.error,
        }


@dataclass(frozen=True)
class RoutingConstraints:
    """Caller-supplied limits for a single route() call."""

    max_cost: float | None = None
    preferred_provider: str | None = None
    deadline_seconds: float | None = None
    identity: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class RoutingDecision:
    """Outcome and provenance of a routed request."""

    task_type: TaskType
    selected_provider: str | None = None
    cache_hit: bool = False
    response: str | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    final_error: IrisError | None = None
    threat: ThreatAssessment | None = None
    trace_id: str | None = None
    elapsed_ms: float = 0.0

    @property
    def attempted_providers(self) -> list[str]:
        """Providers actually called, in chain order."""
        return [a.provider_id for a in self.attempts if a.outcome != AttemptOutcome.SKIPPED]

    @property
    def success(self) -> bool:
        return self.final_error is None and self.response is not None

    def raise_for_error(self) -> None:
        """Raise ``final_error`` if the request failed."""
        if self.final_error is not None:
            raise self.final_error

    def to_dict(self) -> dict[str, Any]:
        return {
            'task_type': self.task_type.value,
            'selected_provider': self.selected_provider,
            'cache_hit': self.cache_hit,
            'success': self.success,
            'response': self.response,
            'attempted_providers': self.attempted_providers,
            'attempts': [a.to_dict() for a in self.attempts],
            'final_error': self.final_error.to_dict() if self.final_error else None,
            'threat': self.threat.to_dict() if self.threat else None,
            'trace_id': self.trace_id,
            'elapsed_ms': round(self.elapsed_ms, 2),
        }
