"""
Custom Exceptions for IRIS
==========================

Structured error handling lets callers react to routing failures by type
instead of parsing strings. Every error carries enough detail (attempt trail,
threat assessment, configuration problems) to explain itself.

Error Codes:
- 1xxx: Client errors (user input, validation)
- 2xxx: Security errors (threat policy)
- 3xxx: Resource errors (provider unavailable, chain exhausted)
- 4xxx: Execution errors (timeouts, backend failures, cancellation)
- 5xxx: System errors (internal, configuration)
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from iris.core.types import AttemptRecord
    from iris.security.threat_classifier import ThreatAssessment


class ErrorCode(IntEnum):
    """Structured error codes for user-friendly messages"""

    # 1xxx: Client Errors
    VALIDATION_ERROR = 1001
    UNKNOWN_TASK_TYPE = 1002

    # 2xxx: Security Errors
    THREAT_BLOCKED = 2001

    # 3xxx: Resource Errors
    PROVIDER_UNAVAILABLE = 3001
    CHAIN_EXHAUSTED = 3002

    # 4xxx: Execution Errors
    PROVIDER_ERROR = 4001
    PROVIDER_TIMEOUT = 4002
    REQUEST_CANCELLED = 4003

    # 5xxx: System Errors
    INTERNAL_ERROR = 5001
    CONFIGURATION_INVALID = 5002


class IrisError(Exception):
    """Base exception for all IRIS errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for structured logging"""
        return {
            'error_type': self.__class__.__name__,
            'error_code': int(self.error_code),
            'message': self.message,
            'details': self.details,
        }

    def user_message(self) -> str:
        """Get user-friendly error message based on error code"""
        code_messages = {
            ErrorCode.VALIDATION_ERROR: "Invalid input provided",
            ErrorCode.UNKNOWN_TASK_TYPE: "Unknown task type",
            ErrorCode.THREAT_BLOCKED: "Request blocked by security policy",
            ErrorCode.PROVIDER_UNAVAILABLE: "AI provider unavailable",
            ErrorCode.CHAIN_EXHAUSTED: "No AI provider could serve this request",
            ErrorCode.PROVIDER_ERROR: "AI provider returned an error",
            ErrorCode.PROVIDER_TIMEOUT: "AI provider timed out",
            ErrorCode.REQUEST_CANCELLED: "Request cancelled",
            ErrorCode.INTERNAL_ERROR: "Internal error",
            ErrorCode.CONFIGURATION_INVALID: "Configuration error",
        }
        return f"Error {self.error_code}: {code_messages.get(self.error_code, self.message)}"


class ValidationError(IrisError):
    """Raised when request input validation fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class ProviderError(IrisError):
    """Raised when a backend reports a failure"""

    def __init__(
        self,
        provider_id: str,
        message: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, ErrorCode.PROVIDER_ERROR, details)
        self.provider_id = provider_id
        self.status = status
        self.details.setdefault('provider_id', provider_id)
        if status is not None:
            self.details.setdefault('status', status)


class ProviderTimeoutError(IrisError):
    """Raised when a provider attempt exceeds its timeout"""

    def __init__(self, provider_id: str, timeout_seconds: float):
        super().__init__(
            f"Provider {provider_id} timed out after {timeout_seconds:g}s",
            ErrorCode.PROVIDER_TIMEOUT,
            {'provider_id': provider_id, 'timeout_seconds': timeout_seconds},
        )
        self.provider_id = provider_id
        self.timeout_seconds = timeout_seconds


class ThreatBlockedError(IrisError):
    """Raised when the threat classifier blocks a request"""

    def __init__(self, assessment: ThreatAssessment):
        super().__init__(
            f"Request blocked (threat score {assessment.score:.2f})",
            ErrorCode.THREAT_BLOCKED,
            {
                'score': assessment.score,
                'triggered_rules': sorted(assessment.triggered_rules),
            },
        )
        self.assessment = assessment


class ChainExhaustedError(IrisError):
    """Raised when every candidate in a failover chain failed or none existed"""

    def __init__(self, task_type: str, attempts: list[AttemptRecord] | None = None):
        attempts = list(attempts or [])
        if attempts:
            message = (
                f"All {len(attempts)} candidate provider(s) failed for task type '{task_type}'"
            )
        else:
            message = f"No eligible provider for task type '{task_type}'"
        super().__init__(
            message,
            ErrorCode.CHAIN_EXHAUSTED,
            {'task_type': task_type, 'attempts': [a.to_dict() for a in attempts]},
        )
        self.task_type = task_type
        self.attempts = attempts


class RequestCancelledError(IrisError):
    """Raised when the outer request deadline expires during the chain walk"""

    def __init__(self, reason: str, attempts: list[AttemptRecord] | None = None):
        attempts = list(attempts or [])
        super().__init__(
            f"Request cancelled: {reason}",
            ErrorCode.REQUEST_CANCELLED,
            {'reason': reason, 'attempts': [a.to_dict() for a in attempts]},
        )
        self.reason = reason
        self.attempts = attempts


class ConfigurationInvalidError(IrisError):
    """Raised at startup when configuration cannot produce a working router"""

    def __init__(self, problems: list[str]):
        super().__init__(
            "Configuration validation failed:\n" + "\n".join(f"  - {p}" for p in problems),
            ErrorCode.CONFIGURATION_INVALID,
            {'problems': list(problems)},
        )
        self.problems = list(problems)
