"""
Centralized configuration management for the signal persistence engine.

This module provides configuration management using environment variables
with sensible defaults and validation.
"""

from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

KNOWN_ADVISORY_PROVIDERS = ["openai", "anthropic", "local"]

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_PROMPTS_PATH = PROJECT_ROOT / "config" / "signal_engine" / "prompts.yaml"


class OpenAIConfig(BaseSettings):
    """OpenAI advisory provider configuration."""

    api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    model: str = Field(default="gpt-4", alias="OPENAI_MODEL")
    max_tokens: int = Field(default=1000, alias="OPENAI_MAX_TOKENS")
    temperature: float = Field(default=0.3, alias="OPENAI_TEMPERATURE")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )


class AnthropicConfig(BaseSettings):
    """Anthropic advisory provider configuration."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field(default="claude-3-sonnet-20240229", alias="ANTHROPIC_MODEL")
    max_tokens: int = Field(default=1000, alias="ANTHROPIC_MAX_TOKENS")
    temperature: float = Field(default=0.3, alias="ANTHROPIC_TEMPERATURE")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )


class LocalAIConfig(BaseSettings):
    """Local (Ollama) advisory provider configuration."""

    base_url: str = Field(default="http://localhost:11434", alias="LOCAL_AI_URL")
    model: str = Field(default="llama2", alias="LOCAL_AI_MODEL")
    max_tokens: int = Field(default=1000, alias="LOCAL_AI_MAX_TOKENS")
    temperature: float = Field(default=0.3, alias="LOCAL_AI_TEMPERATURE")
    enabled: bool = Field(default=True, alias="LOCAL_AI_ENABLED")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )


class AdvisoryConfig(BaseSettings):
    """Advisory fallback chain configuration."""

    provider_order: Annotated[List[str], NoDecode] = Field(
        default=["openai", "anthropic", "local"],
        alias="ADVISORY_PROVIDER_ORDER"
    )
    call_timeout: float = Field(default=15.0, alias="ADVISORY_CALL_TIMEOUT")  # seconds
    overall_timeout: float = Field(default=40.0, alias="ADVISORY_OVERALL_TIMEOUT")  # seconds
    prompts_path: str = Field(
        default=str(DEFAULT_PROMPTS_PATH),
        alias="ADVISORY_PROMPTS_PATH"
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )

    @field_validator('provider_order', mode='before')
    @classmethod
    def parse_provider_order(cls, v):
        """Parse comma-separated provider list."""
        if isinstance(v, str):
            v = [provider.strip().lower() for provider in v.split(',') if provider.strip()]
        unknown = [provider for provider in v if provider not in KNOWN_ADVISORY_PROVIDERS]
        if unknown:
            raise ValueError(
                f"Unknown advisory providers {unknown}. Must be among: {KNOWN_ADVISORY_PROVIDERS}"
            )
        return v

    @field_validator('call_timeout', 'overall_timeout')
    @classmethod
    def validate_timeouts(cls, v):
        """Validate timeouts are positive."""
        if v <= 0:
            raise ValueError("Advisory timeouts must be positive")
        return v


class CacheConfig(BaseSettings):
    """Prediction cache configuration."""

    ttl_seconds: float = Field(default=120.0, alias="PREDICTION_CACHE_TTL")
    bucket_seconds: int = Field(default=300, alias="PREDICTION_CACHE_BUCKET")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )

    @field_validator('ttl_seconds', 'bucket_seconds')
    @classmethod
    def validate_positive(cls, v):
        """Validate cache windows are positive."""
        if v <= 0:
            raise ValueError("Cache TTL and bucket size must be positive")
        return v


class TechnicalAnalysisConfig(BaseSettings):
    """Technical analysis configuration."""

    history_days: int = Field(default=30, alias="TECHNICAL_HISTORY_DAYS")
    fetch_attempts: int = Field(default=3, alias="TECHNICAL_FETCH_ATTEMPTS")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO", alias="LOG_LEVEL")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        alias="LOG_FORMAT"
    )
    file_path: str = Field(default="data/logs/signal_engine.log", alias="LOG_FILE_PATH")
    max_file_size: int = Field(default=10485760, alias="LOG_MAX_FILE_SIZE")  # 10MB
    backup_count: int = Field(default=5, alias="LOG_BACKUP_COUNT")
    enable_console: bool = Field(default=True, alias="LOG_ENABLE_CONSOLE")
    enable_file: bool = Field(default=False, alias="LOG_ENABLE_FILE")

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False
    )

    @field_validator('level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class Config(BaseSettings):
    """Main configuration class."""

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    @property
    def openai(self) -> OpenAIConfig:
        """Get OpenAI configuration."""
        return OpenAIConfig(**{})

    @property
    def anthropic(self) -> AnthropicConfig:
        """Get Anthropic configuration."""
        return AnthropicConfig(**{})

    @property
    def local_ai(self) -> LocalAIConfig:
        """Get local AI configuration."""
        return LocalAIConfig(**{})

    @property
    def advisory(self) -> AdvisoryConfig:
        """Get advisory chain configuration."""
        return AdvisoryConfig(**{})

    @property
    def cache(self) -> CacheConfig:
        """Get prediction cache configuration."""
        return CacheConfig(**{})

    @property
    def technical(self) -> TechnicalAnalysisConfig:
        """Get technical analysis configuration."""
        return TechnicalAnalysisConfig(**{})

    @property
    def logging(self) -> LoggingConfig:
        """Get logging configuration."""
        return LoggingConfig(**{})

    # Service-specific settings
    service_name: str = Field(default="signal_engine", alias="SERVICE_NAME")
    prediction_model_version: str = Field(default="1.0.0", alias="PREDICTION_MODEL_VERSION")

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment. Must be one of: {valid_envs}")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )


# Global configuration instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global config
    config = Config()
    return config
