"""
Configuration with Pydantic Settings.

Every field can be set from the environment with the ``CRAFT_`` prefix and
``__`` between nested sections, e.g. ``CRAFT_INFERENCE__API_KEY`` or
``CRAFT_STAGES__CODER__TEMPERATURE``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.models import PipelineMode, StageKind


class InferenceConfig(BaseModel):
    """Connection to the OpenAI-compatible inference service."""

    base_url: str = Field("https://api.cerebras.ai/v1", description="Base URL of the chat completions API")
    api_key: str | None = Field(None, description="Bearer token for the inference service")
    timeout: float = Field(120.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(3, ge=1, description="Attempts per stage call, including the first")
    retry_wait_min: float = Field(1.0, ge=0)
    retry_wait_max: float = Field(10.0, ge=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class StageEndpoint(BaseModel):
    """Request parameters for one stage."""

    model: str
    temperature: float = Field(0.5, ge=0.0, le=2.0)
    max_tokens: int = Field(12000, gt=0)
    top_p: float = Field(0.9, gt=0.0, le=1.0)
    reasoning_effort: str | None = Field(None, description="low, medium or high when the model supports it")
    use_completion_tokens: bool = Field(
        True, description="Send max_completion_tokens instead of the legacy max_tokens field"
    )

    @field_validator("reasoning_effort")
    @classmethod
    def validate_reasoning_effort(cls, v: str | None) -> str | None:
        if v is not None and v not in {"low", "medium", "high"}:
            raise ValueError("reasoning_effort must be one of low, medium, high")
        return v


_STAGE_DEFAULTS: dict[str, dict] = {
    "planner": {
        "model": StageKind.PLANNER.model_name,
        "temperature": 0.3,
        "max_tokens": 12000,
        "top_p": 0.85,
        "use_completion_tokens": False,
    },
    "themer": {
        "model": StageKind.THEMER.model_name,
        "temperature": 0.5,
        "max_tokens": 12000,
        "top_p": 0.9,
        "reasoning_effort": "medium",
    },
    "coder": {
        "model": StageKind.CODER.model_name,
        "temperature": 0.7,
        "max_tokens": 16000,
        "top_p": 0.8,
    },
    "reviewer": {
        "model": StageKind.REVIEWER.model_name,
        "temperature": 0.5,
        "max_tokens": 12000,
        "top_p": 0.9,
        "reasoning_effort": "medium",
    },
}


class StagesConfig(BaseModel):
    planner: StageEndpoint = Field(default_factory=lambda: StageEndpoint(**_STAGE_DEFAULTS["planner"]))
    themer: StageEndpoint = Field(default_factory=lambda: StageEndpoint(**_STAGE_DEFAULTS["themer"]))
    coder: StageEndpoint = Field(default_factory=lambda: StageEndpoint(**_STAGE_DEFAULTS["coder"]))
    reviewer: StageEndpoint = Field(default_factory=lambda: StageEndpoint(**_STAGE_DEFAULTS["reviewer"]))

    @model_validator(mode="before")
    @classmethod
    def fill_stage_defaults(cls, data: Any) -> Any:
        """Partial stage overrides such as CRAFT_STAGES__CODER__TEMPERATURE keep the other defaults."""
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for name, defaults in _STAGE_DEFAULTS.items():
            if isinstance(merged.get(name), dict):
                merged[name] = {**defaults, **merged[name]}
        return merged

    def for_stage(self, stage: StageKind) -> StageEndpoint:
        return getattr(self, stage.value)


class PipelineConfig(BaseModel):
    """Behaviour of the generation pipeline."""

    multi_stage: bool = Field(True, description="Run Planner, Themer, Coder and Reviewer instead of Coder only")
    reviewer_min_length: int = Field(50, ge=0, description="Shorter reviewer output falls back to the coder's")
    notify_interval: float = Field(0.1, ge=0.0, description="Minimum seconds between throttled state deliveries")
    extra_instructions: str | None = Field(None, description="Appended to every stage prompt")

    @property
    def mode(self) -> PipelineMode:
        return PipelineMode.MULTI if self.multi_stage else PipelineMode.SINGLE


class ObservabilityConfig(BaseModel):
    enable_tracing: bool = Field(False)
    log_level: str = Field("INFO")
    log_dir: Path | None = Field(None, description="Directory for markdown and JSON session logs")

    # OpenTelemetry configuration
    otlp_endpoint: str | None = Field(None)
    service_name: str = Field("promptcraft")
    service_version: str = Field("1.0.0")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return level


class APIConfig(BaseModel):
    host: str = Field("127.0.0.1")
    port: int = Field(8000, gt=0, le=65535)
    reload: bool = Field(False)
    enable_cors: bool = Field(True)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="CRAFT_", env_nested_delimiter="__", case_sensitive=False, extra="ignore"
    )

    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    environment: str = Field("development", description="Environment: development, staging, production")
    debug: bool = Field(False)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
