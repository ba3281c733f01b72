"""Configuration management for the SailMatch AI core.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached; the gateway receives an immutable
GatewayConfig built from it rather than reading settings itself.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError

PROVIDERS = ("openrouter", "deepseek", "groq", "gemini")

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class ProviderRoute(BaseModel):
    """One provider and the models to try on it, in order."""
    model_config = ConfigDict(frozen=True)

    provider: str
    models: tuple[str, ...] = ()
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class UseCaseRoute(BaseModel):
    """Per-use-case override of the provider list and sampling defaults."""
    model_config = ConfigDict(frozen=True)

    providers: tuple[ProviderRoute, ...] = ()
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class ProviderCredentials(BaseSettings):
    """API keys, read from the conventional environment variable names."""
    deepseek_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    google_gemini_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

    def for_provider(self, provider: str) -> Optional[str]:
        keys = {
            "deepseek": self.deepseek_api_key,
            "groq": self.groq_api_key,
            "gemini": self.google_gemini_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return keys.get(provider) or None


class AISettings(BaseSettings):
    """AI gateway configuration."""
    environment: str = Field(default="development", description="development or production")
    provider_override: Optional[str] = Field(
        default=None,
        description="Restrict every use case to this single provider"
    )
    default_temperature: float = Field(default=0.5, ge=0, le=2)
    default_max_tokens: int = Field(default=4000, gt=0)

    attempt_timeout_seconds: float = Field(default=60.0, gt=0)
    chain_deadline_seconds: float = Field(default=180.0, gt=0)

    providers: list[ProviderRoute] = Field(default_factory=list)
    use_cases: dict[str, UseCaseRoute] = Field(default_factory=dict)

    credentials: ProviderCredentials = Field(default_factory=ProviderCredentials)

    model_config = SettingsConfigDict(
        env_prefix="AI_",
        env_file=".env",
        extra="ignore"
    )


class AssessmentSettings(BaseSettings):
    """Registration assessment configuration."""
    use_case: str = Field(default="assess-registration")
    vision_use_case: str = Field(default="assess-passport")
    default_threshold: int = Field(default=80, ge=0, le=100)
    default_passport_pass_score: int = Field(default=7, ge=0, le=10)
    face_match_min_confidence: float = Field(default=0.70, ge=0, le=1)
    photo_penalty: int = Field(default=3, ge=0, le=10)

    model_config = SettingsConfigDict(
        env_prefix="ASSESSMENT_",
        env_file=".env",
        extra="ignore"
    )


class AssistantSettings(BaseSettings):
    """Chat assistant configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    use_case: str = Field(default="assistant-chat")
    max_tool_iterations: int = Field(default=5, gt=0)
    max_history_messages: int = Field(default=20, gt=0)
    max_leg_references: int = Field(default=6, gt=0)
    session_ttl_minutes: int = Field(default=60)

    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/tool_audit.log")

    # Security
    require_auth: bool = Field(default=False)
    secret_key: str = Field(default="change-me-in-production")
    token_expire_minutes: int = Field(default=60)

    model_config = SettingsConfigDict(
        env_prefix="ASSISTANT_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    ai: AISettings = Field(default_factory=AISettings)
    assessment: AssessmentSettings = Field(default_factory=AssessmentSettings)
    assistant: AssistantSettings = Field(default_factory=AssistantSettings)

    model_config = SettingsConfigDict(
        env_prefix="SAILMATCH_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        data = load_yaml_config(path)
        return cls(**data)


class GatewayConfig(BaseModel):
    """
    Immutable routing table handed to the AI gateway.

    Built once from settings. Resolves which (provider, model) pairs a use
    case tries, in which order, with which sampling parameters.
    """
    model_config = ConfigDict(frozen=True)

    providers: tuple[ProviderRoute, ...] = ()
    use_cases: dict[str, UseCaseRoute] = Field(default_factory=dict)
    default_temperature: float = DEFAULT_TEMPERATURE
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    attempt_timeout_seconds: float = 60.0
    chain_deadline_seconds: float = 180.0
    api_keys: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: AISettings) -> "GatewayConfig":
        providers = tuple(settings.providers)
        use_cases = dict(settings.use_cases)

        override = settings.provider_override
        if override:
            if override not in PROVIDERS:
                raise ConfigurationError(f"Unknown provider override: {override}")
            providers = tuple(p for p in providers if p.provider == override)
            if not providers:
                raise ConfigurationError(
                    f"Provider {override} not configured for environment {settings.environment}"
                )
            use_cases = {}

        api_keys = {
            name: key
            for name in PROVIDERS
            if (key := settings.credentials.for_provider(name))
        }

        return cls(
            providers=providers,
            use_cases=use_cases,
            default_temperature=settings.default_temperature,
            default_max_tokens=settings.default_max_tokens,
            attempt_timeout_seconds=settings.attempt_timeout_seconds,
            chain_deadline_seconds=settings.chain_deadline_seconds,
            api_keys=api_keys,
        )

    def routes_for(self, use_case: str) -> tuple[ProviderRoute, ...]:
        """Provider routes for a use case; the base list when none is overridden."""
        override = self.use_cases.get(use_case)
        if override and override.providers:
            return override.providers
        return self.providers

    def has_credential(self, provider: str) -> bool:
        return bool(self.api_keys.get(provider))

    def api_key(self, provider: str) -> Optional[str]:
        return self.api_keys.get(provider)

    def resolve_temperature(
        self,
        use_case: str,
        route: ProviderRoute,
        explicit: Optional[float] = None
    ) -> float:
        """Explicit value, then use-case override, then provider entry, then default."""
        if explicit is not None:
            return explicit
        override = self.use_cases.get(use_case)
        if override and override.temperature is not None:
            return override.temperature
        if route.temperature is not None:
            return route.temperature
        return self.default_temperature

    def resolve_max_tokens(
        self,
        use_case: str,
        route: ProviderRoute,
        explicit: Optional[int] = None
    ) -> int:
        if explicit is not None:
            return explicit
        override = self.use_cases.get(use_case)
        if override and override.max_tokens is not None:
            return override.max_tokens
        if route.max_tokens is not None:
            return route.max_tokens
        return self.default_max_tokens


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("SAILMATCH_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
