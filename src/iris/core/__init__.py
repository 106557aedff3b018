"""Core iris module: shared types and errors."""

from iris.core.exceptions import (
    ChainExhaustedError,
    ConfigurationInvalidError,
    ErrorCode,
    IrisError,
    ProviderError,
    ProviderTimeoutError,
    RequestCancelledError,
    ThreatBlockedError,
    ValidationError,
)
from iris.core.types import (
    AttemptOutcome,
    AttemptRecord,
    RoutingConstraints,
    RoutingDecision,
    TaskType,
)

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "ChainExhaustedError",
    "ConfigurationInvalidError",
    "ErrorCode",
    "IrisError",
    "ProviderError",
    "ProviderTimeoutError",
    "RequestCancelledError",
    "RoutingConstraints",
    "RoutingDecision",
    "TaskType",
    "ThreatBlockedError",
    "ValidationError",
]
