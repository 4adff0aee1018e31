from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseModel):
    api_key: SecretStr | None = Field(default=None, description="API key for the OpenAI-compatible endpoint.")
    base_url: str = Field("https://openrouter.ai/api/v1", description="Base URL of the chat completions API.")
    default_model: str = Field("anthropic/claude-sonnet-4.5", min_length=1)
    backup_model: str | None = Field(default=None, description="Model used once the primary model is exhausted.")
    timeout_seconds: float = Field(60.0, gt=0.0, description="Bound applied to every outbound completion call.")
    max_retries: int = Field(3, ge=1, description="Attempts against the primary model before falling back.")
    retry_delay_seconds: float = Field(1.0, ge=0.0, description="Linear backoff step between attempts.")
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(2000, ge=1)


class CacheSettings(BaseModel):
    enabled: bool = Field(True)
    backend: Literal["redis", "memory", "none"] = "redis"
    redis_url: str = Field("redis://localhost:6379/0")
    namespace: str = Field("aladdin", min_length=1)
    default_ttl_seconds: int = Field(3600, ge=1)
    memory_max_entries: int = Field(1000, ge=1)


class QualitySettings(BaseModel):
    cache_enabled: bool = Field(True)
    cache_ttl_seconds: int = Field(3600, ge=1)
    temperature: float = Field(0.2, ge=0.0, le=1.0, description="Grading favours determinism.")
    max_tokens: int = Field(2000, ge=1)
    quick_check_max_tokens: int = Field(500, ge=1)
    consistency_max_tokens: int = Field(1000, ge=1)
    llm_agreement_tolerance: float = Field(
        5.0,
        ge=0.0,
        description="Largest gap between the model's overall score and the weighted score that still trusts the model.",
    )
    decision_tier_tolerance: int = Field(1, ge=0)
    quick_check_tier_tolerance: int = Field(2, ge=0)


class RoutingSettings(BaseModel):
    relevance_floor: float = Field(0.3, ge=0.0, le=1.0)
    keyword_saturation: int = Field(3, ge=1, description="Keyword hits that saturate relevance at 1.0.")
    preferred_department_boost: float = Field(0.9, ge=0.0, le=1.0)


class OrchestrationSettings(BaseModel):
    max_concurrency: int = Field(8, ge=1)
    department_timeout_seconds: float | None = Field(default=None, gt=0.0)
    primary_share: float = Field(0.5, ge=0.0, le=1.0)
    ingest_threshold: float = Field(0.75, ge=0.0, le=1.0)
    modify_threshold: float = Field(0.5, ge=0.0, le=1.0)
    consistency_threshold: float = Field(0.75, ge=0.0, le=1.0)
    specialist_max_revisions: int | None = Field(default=None, ge=0)
    specialist_temperature: float = Field(0.7, ge=0.0, le=2.0)


class BrainSettings(BaseModel):
    enabled: bool = Field(False)
    base_url: str = Field("http://localhost:8000")
    api_key: SecretStr | None = Field(default=None)
    timeout_seconds: float = Field(30.0, gt=0.0)
    max_retries: int = Field(3, ge=1)
    retry_backoff_seconds: float = Field(1.0, ge=0.0)


class ContextStoreSettings(BaseModel):
    enabled: bool = Field(False)
    base_url: str = Field("http://localhost:3000/api")
    api_key: SecretStr | None = Field(default=None)
    timeout_seconds: float = Field(15.0, gt=0.0)
    page_size: int = Field(50, ge=1)
    depth: int = Field(1, ge=0, le=2, description="Relationship depth; recursive expansion is never requested.")
    cache_ttl_seconds: int = Field(300, ge=1)


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    metrics_port: int | None = Field(default=None, ge=1, le=65535, description="Expose /metrics on this port when set.")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["development", "staging", "production", "test"] = "development"
    llm: LLMSettings = Field(default_factory=LLMSettings)  # type: ignore[arg-type]
    cache: CacheSettings = Field(default_factory=CacheSettings)  # type: ignore[arg-type]
    quality: QualitySettings = Field(default_factory=QualitySettings)  # type: ignore[arg-type]
    routing: RoutingSettings = Field(default_factory=RoutingSettings)  # type: ignore[arg-type]
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)  # type: ignore[arg-type]
    brain: BrainSettings = Field(default_factory=BrainSettings)  # type: ignore[arg-type]
    context_store: ContextStoreSettings = Field(default_factory=ContextStoreSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    openrouter_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
        description="Provider key honoured for compatibility with existing deployments.",
    )

    def resolved_llm(self) -> LLMSettings:
        if self.llm.api_key is None and self.openrouter_api_key is not None:
            return self.llm.model_copy(update={"api_key": self.openrouter_api_key})
        return self.llm


@lru_cache
def get_settings() -> Settings:
    return Settings()
