"""Tests for iris.core: exceptions, routing types and the structured logger."""

import json
import logging

import pytest

from iris.config.settings import LoggingConfig
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
from iris.core.structured_logger import StructuredLogger, TraceContext, configure_logging, current_trace_id
from iris.core.types import AttemptOutcome, AttemptRecord, RoutingDecision, TaskType
from iris.security.threat_classifier import ThreatAssessment, ThreatDecision


class TestExceptions:
    def test_base_to_dict(self):
        err = IrisError("boom", details={"k": 1})
        assert err.to_dict() == {
            "error_type": "IrisError",
            "error_code": 5001,
            "message": "boom",
            "details": {"k": 1},
        }

    def test_user_message(self):
        assert ValidationError("bad").user_message() == "Error 1001: Invalid input provided"

    def test_provider_error_details(self):
        err = ProviderError("groq", "HTTP 429", status=429)
        assert err.error_code == ErrorCode.PROVIDER_ERROR
        assert err.details == {"provider_id": "groq", "status": 429}

    def test_timeout_message(self):
        err = ProviderTimeoutError("openai", 20.0)
        assert err.message == "Provider openai timed out after 20s"

    def test_threat_blocked(self):
        assessment = ThreatAssessment(
            score=0.93, triggered_rules=frozenset({"b", "a"}), decision=ThreatDecision.BLOCK
        )
        err = ThreatBlockedError(assessment)
        assert err.details["triggered_rules"] == ["a", "b"]
        assert "0.93" in err.message

    def test_chain_exhausted_with_and_without_attempts(self):
        empty = ChainExhaustedError("code")
        assert empty.message == "No eligible provider for task type 'code'"
        failed = ChainExhaustedError("code", [AttemptRecord("a", AttemptOutcome.ERROR, 3.0, "down")])
        assert failed.message.startswith("All 1 candidate")
        assert failed.details["attempts"][0]["outcome"] == "error"

    def test_request_cancelled(self):
        err = RequestCancelledError("deadline")
        assert err.error_code == ErrorCode.REQUEST_CANCELLED
        assert err.attempts == []

    def test_configuration_invalid_lists_problems(self):
        err = ConfigurationInvalidError(["one", "two"])
        assert "  - one" in err.message and "  - two" in err.message
        assert err.problems == ["one", "two"]


class TestRoutingDecision:
    def test_attempted_providers_excludes_skipped(self):
        decision = RoutingDecision(
            task_type=TaskType.CODE,
            attempts=[
                AttemptRecord("a", AttemptOutcome.SKIPPED, error="circuit_half_open_limit_reached"),
                AttemptRecord("b", AttemptOutcome.TIMEOUT, 20000.0),
                AttemptRecord("c", AttemptOutcome.SUCCESS, 12.5),
            ],
            response="ok",
            selected_provider="c",
        )
        assert decision.attempted_providers == ["b", "c"]
        assert decision.success

    def test_failure(self):
        decision = RoutingDecision(task_type=TaskType.FAST, final_error=ChainExhaustedError("fast"))
        assert not decision.success
        with pytest.raises(ChainExhaustedError):
            decision.raise_for_error()

    def test_success_does_not_raise(self):
        RoutingDecision(task_type=TaskType.FAST, response="x").raise_for_error()

    def test_to_dict_is_json_serializable(self):
        attempts = [AttemptRecord("a", AttemptOutcome.ERROR, 1.234)]
        decision = RoutingDecision(
            task_type=TaskType.GENERAL,
            attempts=attempts,
            final_error=ChainExhaustedError("general", attempts),
            trace_id="abc12345",
        )
        data = json.loads(json.dumps(decision.to_dict()))
        assert data["final_error"]["error_code"] == 3002
        assert data["attempts"][0]["latency_ms"] == 1.23
        assert data["success"] is False


class TestStructuredLogger:
    def test_trace_context(self):
        assert current_trace_id() is None
        with TraceContext("trace-1") as trace_id:
            assert trace_id == "trace-1"
            assert current_trace_id() == "trace-1"
        assert current_trace_id() is None

    def test_generated_trace_id(self):
        with TraceContext() as trace_id:
            assert len(trace_id) == 8

    def test_json_entry_with_trace_and_redaction(self, caplog):
        logger = StructuredLogger("Test", logging.getLogger("iris_test.structured"))
        with caplog.at_level(logging.INFO, logger="iris_test.structured"):
            with TraceContext("t-42"):
                logger.info("Calling provider", provider="openai", auth="Bearer sk-abcdef123456")
        entry = json.loads(caplog.records[-1].getMessage())
        assert entry["trace_id"] == "t-42"
        assert entry["component"] == "Test"
        assert entry["provider"] == "openai"
        assert entry["auth"] == "[REDACTED]"

    def test_disabled_level_skipped(self, caplog):
        logger = StructuredLogger("Test", logging.getLogger("iris_test.quiet"))
        with caplog.at_level(logging.WARNING, logger="iris_test.quiet"):
            logger.debug("hidden")
        assert caplog.records == []

    def test_bound_fields(self, caplog):
        logger = StructuredLogger("Test", logging.getLogger("iris_test.bound")).bind(provider="groq")
        with caplog.at_level(logging.INFO, logger="iris_test.bound"):
            logger.info("attempt", latency_ms=12.5)
        entry = json.loads(caplog.records[-1].getMessage())
        assert entry["provider"] == "groq"
        assert entry["latency_ms"] == 12.5
        assert "trace_id" not in entry


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_iris_logger(self):
        root = logging.getLogger("iris")
        saved = (list(root.handlers), root.level, root.propagate)
        yield
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
        root.propagate = saved[2]

    def test_json_format_wraps_plain_records(self):
        configure_logging(LoggingConfig(level="debug", format="json"))
        root = logging.getLogger("iris")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        record = logging.LogRecord("iris.routing.failover", logging.INFO, __file__, 1, "key sk-secret123", None, None)
        entry = json.loads(root.handlers[0].format(record))
        assert entry["component"] == "iris.routing.failover"
        assert entry["message"] == "key [REDACTED]"

    def test_text_format(self):
        configure_logging(LoggingConfig(level="warning", format="text"))
        handler = logging.getLogger("iris").handlers[0]
        record = logging.LogRecord("iris.cli", logging.WARNING, __file__, 1, "Bearer abc.def", None, None)
        line = handler.format(record)
        assert "WARNING" in line and "iris.cli" in line
        assert "abc.def" not in line

    def test_reconfigure_replaces_handler(self):
        configure_logging(LoggingConfig())
        configure_logging(LoggingConfig())
        assert len(logging.getLogger("iris").handlers) == 1
