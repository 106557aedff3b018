"""Tests for iris.config.settings: Pydantic configuration and load_settings()"""

from importlib import metadata as importlib_metadata
from pathlib import Path
from unittest.mock import patch

import pydantic
import pytest
import yaml

from iris.config.settings import (
    DEFAULT_SIMILARITY_THRESHOLDS,
    CacheConfig,
    LoggingConfig,
    ProviderConfig,
    Settings,
    ThreatConfig,
    _project_version,
    load_settings,
)
from iris.core.exceptions import ConfigurationInvalidError, ErrorCode
from iris.core.types import TaskType

EXAMPLE_CONFIG = Path(__file__).parents[2] / "config" / "iris.example.yaml"


def _minimal(**overrides) -> dict:
    data = {
        "providers": {
            "local": {
                "kind": "ollama",
                "base_url": "http://localhost:11434",
                "model": "llama3",
                "local": True,
                "task_types": ["code", "general"],
            },
        },
        "failover": {"chains": {"code": ["local"], "general": ["local"]}},
    }
    data.update(overrides)
    return data


def _write(tmp_path, data) -> Path:
    path = tmp_path / "iris.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("OPENAI_API_KEY", "GROQ_API_KEY", "GEMINI_API_KEY", "IRIS_CONFIG"):
        monkeypatch.delenv(name, raising=False)


class TestHelpers:
    def test_project_version_returns_string(self):
        assert _project_version()

    @patch(
        "iris.config.settings.metadata.version",
        side_effect=importlib_metadata.PackageNotFoundError,
    )
    def test_project_version_fallback(self, mock_meta):
        assert _project_version() == "0.0.0-dev"


class TestSubConfigs:
    def test_threshold_overrides_merge_with_defaults(self):
        cfg = CacheConfig(similarity_thresholds={"code": 0.9})
        assert cfg.similarity_thresholds[TaskType.CODE] == 0.9
        assert cfg.similarity_thresholds[TaskType.CREATIVE] == DEFAULT_SIMILARITY_THRESHOLDS[TaskType.CREATIVE]

    @pytest.mark.parametrize("value", [0.0, 1.5, -0.2])
    def test_threshold_out_of_range(self, value):
        with pytest.raises(pydantic.ValidationError):
            CacheConfig(similarity_thresholds={"fast": value})

    def test_watermarks_must_be_ordered(self):
        with pytest.raises(pydantic.ValidationError, match="low_watermark"):
            ThreatConfig(low_watermark=0.8, high_watermark=0.4)

    def test_rate_limits_must_be_ordered(self):
        with pytest.raises(pydantic.ValidationError, match="rate_soft_limit"):
            ThreatConfig(rate_soft_limit=10, rate_hard_limit=10)

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_log_level_invalid(self):
        with pytest.raises(pydantic.ValidationError):
            LoggingConfig(level="verbose")

    def test_api_key_resolution(self, monkeypatch):
        monkeypatch.setenv("TEST_PROVIDER_KEY", "from-env")
        literal = ProviderConfig(kind="openai_compatible", base_url="u", model="m", api_key="literal")
        from_env = ProviderConfig(
            kind="openai_compatible", base_url="u", model="m", api_key_env="TEST_PROVIDER_KEY"
        )
        neither = ProviderConfig(kind="ollama", base_url="u", model="m")
        assert literal.resolve_api_key() == "literal"
        assert from_env.resolve_api_key() == "from-env"
        assert neither.resolve_api_key() is None

    def test_unknown_kind_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            ProviderConfig(kind="carrier-pigeon", base_url="u", model="m")


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.providers == {}
        assert settings.failover.failure_threshold == 3
        assert settings.failover.cooldown_seconds == 300
        assert settings.threat.low_watermark == 0.4
        assert settings.threat.high_watermark == 0.8
        assert settings.cache.similarity_thresholds[TaskType.CODE] == 0.98

    def test_from_yaml(self, tmp_path):
        settings = Settings.from_yaml(_write(tmp_path, _minimal()))
        assert list(settings.providers) == ["local"]
        assert settings.failover.chains[TaskType.CODE] == ["local"]

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "nope.yaml")

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        data = _minimal(orchestrator={"attempt_timeout_seconds": 20, "request_deadline_seconds": 90})
        monkeypatch.setenv("IRIS_ORCHESTRATOR__ATTEMPT_TIMEOUT_SECONDS", "7")
        settings = Settings.from_yaml(_write(tmp_path, data))
        assert settings.orchestrator.attempt_timeout_seconds == 7
        assert settings.orchestrator.request_deadline_seconds == 90

    def test_enabled_providers(self, tmp_path):
        data = _minimal()
        data["providers"]["spare"] = {"kind": "ollama", "base_url": "u", "model": "m", "enabled": False}
        settings = Settings.from_yaml(_write(tmp_path, data))
        assert list(settings.enabled_providers()) == ["local"]


class TestLoadSettings:
    def test_minimal_config_loads(self, tmp_path):
        settings = load_settings(_write(tmp_path, _minimal()))
        assert settings.validate_required_config() == []

    def test_example_config_loads(self, monkeypatch):
        for name in ("OPENAI_API_KEY", "GROQ_API_KEY", "GEMINI_API_KEY"):
            monkeypatch.setenv(name, "test-key")
        settings = load_settings(EXAMPLE_CONFIG)
        assert set(settings.failover.chains) == set(TaskType)
        assert settings.providers["ollama"].local

    def test_example_config_without_keys(self):
        with pytest.raises(ConfigurationInvalidError) as exc_info:
            load_settings(EXAMPLE_CONFIG)
        assert any("$OPENAI_API_KEY" in p for p in exc_info.value.problems)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationInvalidError) as exc_info:
            load_settings(tmp_path / "missing.yaml")
        assert exc_info.value.error_code == ErrorCode.CONFIGURATION_INVALID

    def test_malformed_value_reports_location(self, tmp_path):
        data = _minimal(orchestrator={"attempt_timeout_seconds": -1})
        with pytest.raises(ConfigurationInvalidError) as exc_info:
            load_settings(_write(tmp_path, data))
        assert any(p.startswith("orchestrator.attempt_timeout_seconds") for p in exc_info.value.problems)

    def test_unknown_task_type_in_chain(self, tmp_path):
        data = _minimal(failover={"chains": {"poetry": ["local"]}})
        with pytest.raises(ConfigurationInvalidError):
            load_settings(_write(tmp_path, data))

    def test_no_providers(self, tmp_path):
        with pytest.raises(ConfigurationInvalidError) as exc_info:
            load_settings(_write(tmp_path, {"failover": {"chains": {"general": ["ghost"]}}}))
        problems = exc_info.value.problems
        assert "At least one enabled provider must be configured" in problems
        assert any("unknown provider(s): ghost" in p for p in problems)

    def test_no_chains(self, tmp_path):
        data = _minimal(failover={"chains": {}})
        with pytest.raises(ConfigurationInvalidError, match="failover chain"):
            load_settings(_write(tmp_path, data))

    def test_empty_chain(self, tmp_path):
        data = _minimal(failover={"chains": {"code": []}})
        with pytest.raises(ConfigurationInvalidError, match="is empty"):
            load_settings(_write(tmp_path, data))

    def test_duplicate_in_chain(self, tmp_path):
        data = _minimal(failover={"chains": {"code": ["local", "local"]}})
        with pytest.raises(ConfigurationInvalidError, match="more than once"):
            load_settings(_write(tmp_path, data))

    def test_chain_without_capable_provider(self, tmp_path):
        data = _minimal(failover={"chains": {"creative": ["local"]}})
        with pytest.raises(ConfigurationInvalidError, match="No enabled provider registered for task type 'creative'"):
            load_settings(_write(tmp_path, data))

    def test_disabled_provider_not_capable(self, tmp_path):
        data = _minimal()
        data["providers"]["local"]["enabled"] = False
        with pytest.raises(ConfigurationInvalidError):
            load_settings(_write(tmp_path, data))
