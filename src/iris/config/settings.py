"""
Pydantic Settings Configuration
=================================

Type-safe configuration for the orchestration core. Values are validated when
loaded and load_settings() fails fast with every problem listed, so a broken
provider registry or failover chain is caught at startup rather than on the
first request.
"""

import os
from importlib import metadata
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from iris.core.exceptions import ConfigurationInvalidError
from iris.core.types import TaskType


def _project_version() -> str:
    """Resolve the project version from package metadata."""
    try:
        return metadata.version("iris-router")
    except metadata.PackageNotFoundError:
        return "0.0.0-dev"


DEFAULT_SIMILARITY_THRESHOLDS: Dict[TaskType, float] = {
    TaskType.CODE: 0.98,
    TaskType.FAST: 0.95,
    TaskType.ULTRA_FAST: 0.95,
    TaskType.REASONING: 0.96,
    TaskType.COMPLEX: 0.96,
    TaskType.GENERAL: 0.95,
    TaskType.CREATIVE: 0.99,
}


class ProviderConfig(BaseModel):
    """Configuration for a single backend provider"""
    kind: Literal["ollama", "openai_compatible"] = Field(..., description="Backend implementation")
    base_url: str = Field(..., description="Base URL of the provider API")
    model: str = Field(..., description="Model name sent to the provider")
    api_key: Optional[str] = Field(None, description="API key (prefer api_key_env)")
    api_key_env: Optional[str] = Field(None, description="Environment variable holding the API key")
    task_types: List[TaskType] = Field(default_factory=lambda: [TaskType.GENERAL], description="Task types this provider can serve")
    cost_per_unit: float = Field(0.0, ge=0.0, description="Relative cost per request unit")
    priority: int = Field(1, ge=0, description="Static priority (informational; chains decide order)")
    local: bool = Field(False, description="Runs locally/sandboxed; admitted under RESTRICT_TO_LOCAL")
    enabled: bool = Field(True, description="Register this provider at startup")
    timeout_seconds: Optional[float] = Field(None, gt=0, le=600, description="Per-attempt timeout override")

    model_config = ConfigDict(extra='allow')

    def resolve_api_key(self) -> Optional[str]:
        """Return the configured key, reading api_key_env when no literal key is set."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


class FailoverConfig(BaseModel):
    """Circuit breaker and fallback chain configuration"""
    chains: Dict[TaskType, List[str]] = Field(default_factory=dict, description="Ordered provider ids per task type")
    failure_threshold: int = Field(3, ge=1, le=100, description="Consecutive failures before a circuit opens")
    cooldown_seconds: float = Field(300.0, gt=0, description="Time an open circuit waits before a half-open trial")
    min_health_score: int = Field(0, ge=0, le=100, description="Skip closed providers scoring below this (0 disables)")

    model_config = ConfigDict(extra='allow')


class HealthConfig(BaseModel):
    """Health monitor configuration"""
    window_size: int = Field(50, ge=2, le=10000, description="Samples kept per provider")
    min_samples: int = Field(5, ge=1, description="Samples required before the score leaves neutral")
    anomaly_sigma: float = Field(3.0, gt=0, description="Standard deviations above the mean that flag a latency anomaly")
    success_weight: float = Field(0.7, ge=0.0, le=1.0, description="Weight of success ratio vs latency normality")

    model_config = ConfigDict(extra='allow')


class CacheConfig(BaseModel):
    """Semantic cache configuration"""
    enabled: bool = Field(True, description="Enable response caching")
    memory_budget_bytes: int = Field(64 * 1024 * 1024, ge=1024, description="Total cache memory budget")
    similarity_thresholds: Dict[TaskType, float] = Field(
        default_factory=lambda: dict(DEFAULT_SIMILARITY_THRESHOLDS),
        description="Cosine similarity required for a hit, per task type",
    )
    ttl_seconds: Optional[float] = Field(None, gt=0, description="Entry time-to-live (None keeps entries until evicted)")
    embedder: Literal["hashing", "sentence-transformers"] = Field("hashing", description="Embedding backend")
    embedding_dim: int = Field(256, ge=16, le=8192, description="Dimension of the hashing embedder")
    embedding_model: str = Field("all-MiniLM-L6-v2", description="sentence-transformers model name")

    @field_validator('similarity_thresholds')
    @classmethod
    def validate_thresholds(cls, v: Dict[TaskType, float]) -> Dict[TaskType, float]:
        for task_type, threshold in v.items():
            if not 0.0 < threshold <= 1.0:
                raise ValueError(f"Similarity threshold for '{task_type}' must be in (0, 1], got {threshold}")
        merged = dict(DEFAULT_SIMILARITY_THRESHOLDS)
        merged.update(v)
        return merged

    model_config = ConfigDict(extra='allow')


class ThreatRuleConfig(BaseModel):
    """A single pattern rule for the threat classifier"""
    id: str = Field(..., min_length=1, description="Stable rule identifier reported in assessments")
    pattern: str = Field(..., min_length=1, description="Case-insensitive regular expression")
    weight: float = Field(..., gt=0.0, le=1.0, description="Risk contributed when the rule matches")
    description: str = Field("", description="Human-readable explanation")


class ThreatConfig(BaseModel):
    """Threat classifier configuration"""
    enabled: bool = Field(True, description="Assess requests before routing")
    low_watermark: float = Field(0.4, ge=0.0, le=1.0, description="Scores below this are allowed")
    high_watermark: float = Field(0.8, ge=0.0, le=1.0, description="Scores above this are blocked")
    pattern_weight: float = Field(1.0, ge=0.0, description="Weight of the pattern stage")
    behavioral_weight: float = Field(0.3, ge=0.0, description="Weight of the behavioral stage")
    semantic_weight: float = Field(0.5, ge=0.0, description="Weight of the semantic stage")
    rules: Optional[List[ThreatRuleConfig]] = Field(None, description="Pattern rules (None uses the built-in set)")
    extra_rules: List[ThreatRuleConfig] = Field(default_factory=list, description="Rules appended to the active set")
    max_input_length: int = Field(10000, ge=1, description="Longer inputs trigger input.too_long")
    rate_window_seconds: float = Field(60.0, gt=0, description="Behavioral sliding window")
    rate_soft_limit: int = Field(20, ge=1, description="Requests per window before behavioral risk starts")
    rate_hard_limit: int = Field(60, ge=2, description="Requests per window at which behavioral risk saturates")
    repetition_limit: int = Field(5, ge=1, description="Identical queries per window at which repetition risk saturates")
    semantic_floor: float = Field(0.6, ge=0.0, lt=1.0, description="Similarity below this contributes no semantic risk")
    malicious_corpus: Optional[List[str]] = Field(None, description="Known-malicious prompts (None uses the built-in set)")
    audit_size: int = Field(1000, ge=1, description="Audit trail entries kept in memory")

    @model_validator(mode='after')
    def validate_watermarks(self) -> 'ThreatConfig':
        if self.low_watermark >= self.high_watermark:
            raise ValueError(
                f"low_watermark ({self.low_watermark}) must be below high_watermark ({self.high_watermark})"
            )
        if self.rate_soft_limit >= self.rate_hard_limit:
            raise ValueError("rate_soft_limit must be below rate_hard_limit")
        return self

    model_config = ConfigDict(extra='allow')


class OrchestratorConfig(BaseModel):
    """Request execution configuration"""
    attempt_timeout_seconds: float = Field(20.0, gt=0, le=600, description="Timeout for a single provider attempt")
    request_deadline_seconds: float = Field(60.0, gt=0, le=3600, description="Total time budget across all attempts")
    recent_routes: int = Field(100, ge=0, le=10000, description="Route summaries kept for status()")

    model_config = ConfigDict(extra='allow')


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = Field("INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: Literal["json", "text"] = Field("json", description="Log format (json, text)")

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v_upper

    model_config = ConfigDict(extra='allow')


class Settings(BaseSettings):
    """
    Main application settings with type validation.

    Configuration is loaded from:
    1. YAML config file (if provided)
    2. Environment variables with IRIS_ prefix (override)
    3. Default values (fallback)

    Environment variable mapping uses double-underscore nesting:
      IRIS_ORCHESTRATOR__ATTEMPT_TIMEOUT_SECONDS
      IRIS_CACHE__MEMORY_BUDGET_BYTES
      IRIS_THREAT__HIGH_WATERMARK
    """

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict, description="Provider registry")
    failover: FailoverConfig = Field(default_factory=FailoverConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    threat: ThreatConfig = Field(default_factory=ThreatConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    project_name: str = Field("IRIS", description="Project name")
    version: str = Field(default_factory=_project_version, description="Project version")

    model_config = SettingsConfigDict(
        env_prefix='IRIS_',
        env_nested_delimiter='__',
        extra='allow',
        validate_assignment=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        # IRIS_* variables win over values passed in from the YAML file
        return env_settings, init_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "Settings":
        """
        Load settings from a YAML file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            pydantic.ValidationError: If a value is malformed
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables only."""
        return cls()

    def enabled_providers(self) -> Dict[str, ProviderConfig]:
        return {pid: p for pid, p in self.providers.items() if p.enabled}

    def validate_required_config(self) -> List[str]:
        """
        Validate cross-field requirements that single fields cannot express.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        enabled = self.enabled_providers()

        if not enabled:
            errors.append("At least one enabled provider must be configured")

        if not self.failover.chains:
            errors.append("At least one failover chain must be configured")

        for task_type, chain in self.failover.chains.items():
            if not chain:
                errors.append(f"Failover chain for '{task_type}' is empty")
                continue
            unknown = [pid for pid in chain if pid not in self.providers]
            if unknown:
                errors.append(f"Failover chain for '{task_type}' references unknown provider(s): {', '.join(unknown)}")
            if len(set(chain)) != len(chain):
                errors.append(f"Failover chain for '{task_type}' lists a provider more than once")
            capable = [pid for pid in chain if pid in enabled and task_type in enabled[pid].task_types]
            if not capable:
                errors.append(f"No enabled provider registered for task type '{task_type}'")

        for pid, provider in enabled.items():
            if provider.api_key_env and not provider.resolve_api_key():
                errors.append(f"Provider '{pid}' expects an API key in ${provider.api_key_env}, which is not set")

        return errors


def load_settings(config_path: Optional[str | Path] = None) -> Settings:
    """
    Load and validate application settings.

    Raises:
        ConfigurationInvalidError: If the configuration is malformed or incomplete
    """
    try:
        settings = Settings.from_yaml(config_path) if config_path else Settings.from_env()
    except FileNotFoundError as e:
        raise ConfigurationInvalidError([str(e)]) from e
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ConfigurationInvalidError(problems) from e

    errors = settings.validate_required_config()
    if errors:
        raise ConfigurationInvalidError(errors)

    return settings


__all__ = [
    'Settings',
    'ProviderConfig',
    'FailoverConfig',
    'HealthConfig',
    'CacheConfig',
    'ThreatRuleConfig',
    'ThreatConfig',
    'OrchestratorConfig',
    'LoggingConfig',
    'DEFAULT_SIMILARITY_THRESHOLDS',
    'load_settings',
]
