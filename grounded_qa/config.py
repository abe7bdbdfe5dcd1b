"""Configuration management using pydantic-settings."""

from dataclasses import dataclass
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SonarModel(str, Enum):
    """Supported Perplexity Sonar models."""

    SONAR_PRO = "sonar-pro"
    SONAR_REASONING = "sonar-reasoning"
    SONAR_REASONING_PRO = "sonar-reasoning-pro"


class ReasoningEffort(str, Enum):
    """Reasoning effort hint forwarded to reasoning-capable models."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Environment(str, Enum):
    """Application environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class ModelSpec:
    """Static capabilities of a Sonar model."""

    name: str
    display_name: str
    max_tokens: int
    supports_reasoning: bool


MODEL_SPECS: dict[SonarModel, ModelSpec] = {
    SonarModel.SONAR_PRO: ModelSpec("sonar-pro", "Sonar Pro", 4000, False),
    SonarModel.SONAR_REASONING: ModelSpec("sonar-reasoning", "Sonar Reasoning", 8000, True),
    SonarModel.SONAR_REASONING_PRO: ModelSpec(
        "sonar-reasoning-pro", "Sonar Reasoning Pro", 8000, True
    ),
}


def get_model_spec(model: SonarModel | str) -> ModelSpec:
    """Look up the catalogue entry for a model.

    Raises:
        ValueError: If the model is not in the catalogue
    """
    return MODEL_SPECS[SonarModel(model)]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Perplexity Configuration
    perplexity_api_key: str | None = Field(
        default=None,
        description="Perplexity API key",
    )
    perplexity_base_url: str = Field(
        default="https://api.perplexity.ai",
        description="Perplexity API base URL",
    )
    perplexity_model: SonarModel = Field(
        default=SonarModel.SONAR_REASONING_PRO,
        description="Default Sonar model",
    )
    perplexity_debug: bool = Field(
        default=False,
        description="Log every outgoing request payload",
    )

    # Generation defaults
    reasoning_effort: ReasoningEffort = Field(
        default=ReasoningEffort.HIGH,
        description="Default reasoning effort for reasoning models",
    )
    temperature: float = Field(
        default=0.2,
        description="Default sampling temperature",
    )
    max_tokens: int = Field(
        default=2000,
        description="Default output size cap",
    )
    show_thinking_process: bool = Field(
        default=True,
        description="Keep the <think> reasoning trace in answers",
    )

    # Transport and streaming
    request_timeout: float = Field(
        default=60.0,
        description="HTTP request timeout in seconds",
    )
    stream_chunk_delay: float = Field(
        default=0.05,
        description="Pause between streamed chunks in seconds",
    )

    # Citations
    max_citations: int = Field(
        default=5,
        description="Maximum number of citations per answer",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )

    @property
    def is_configured(self) -> bool:
        """Whether a usable API key is present."""
        return bool(self.perplexity_api_key and self.perplexity_api_key.strip())

    def validate_provider_config(self) -> None:
        """Validate that the API key is set."""
        if not self.is_configured:
            raise ValueError("Perplexity API key is required (set PERPLEXITY_API_KEY)")


# Global settings instance - lazy loaded
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
