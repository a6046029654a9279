"""Application configuration from environment variables."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ModelProvider(str, Enum):
    """LLM provider types."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENROUTER = "openrouter"


class ModelConfig(BaseModel):
    """Configuration for a model assignment."""

    provider: ModelProvider
    model_id: str
    temperature: float = 0.7
    max_tokens: int = 2000


# =============================================================================
# Model Assignments
# =============================================================================

MODEL_ASSIGNMENTS: dict[str, ModelConfig] = {
    "advocate": ModelConfig(
        provider=ModelProvider.ANTHROPIC,
        model_id="claude-sonnet-4-20250514",
    ),
    "juror": ModelConfig(
        provider=ModelProvider.OPENAI,
        model_id="gpt-5.2",
        temperature=0.9,
        max_tokens=800,
    ),
    "judge": ModelConfig(
        provider=ModelProvider.ANTHROPIC,
        model_id="claude-opus-4-5-20251101",
        temperature=0.3,
        max_tokens=3000,
    ),
}


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Keys
    anthropic_api_key: str = Field(default="", description="Anthropic API key")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Application settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./arena.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Debate settings
    jury_size: int = Field(default=7, ge=1, description="Number of AI jurors")
    debate_rounds: int = Field(default=3, description="Number of AI debate rounds")

    # Job queue
    job_max_retries: int = Field(default=3, ge=1, description="Default max attempts per job")
    job_backoff_base_seconds: float = Field(
        default=60.0, gt=0, description="Base delay for exponential job backoff"
    )
    job_stale_after_seconds: float = Field(
        default=900.0,
        gt=0,
        description="Running jobs older than this are treated as abandoned",
    )

    # Worker / drain
    drain_batch_size: int = Field(default=5, ge=1, description="Jobs claimed per drain cycle")
    drain_concurrency: int = Field(default=3, ge=1, description="Jobs executed concurrently")
    drain_secret: str = Field(default="", description="Shared secret for the drain trigger")
    worker_enabled: bool = Field(default=True, description="Run the in-process worker loop")
    worker_poll_interval_seconds: float = Field(
        default=60.0, gt=0, description="Worker polling interval"
    )

    # Generative client
    llm_timeout_seconds: float = Field(default=60.0, gt=0, description="Hard per-call timeout")
    llm_retries: int = Field(default=3, ge=1, description="Attempts per generative call")
    llm_retry_delay_seconds: float = Field(default=1.0, ge=0, description="Initial retry delay")
    llm_retry_max_delay_seconds: float = Field(default=20.0, ge=0, description="Retry delay cap")
    llm_allow_fallback: bool = Field(
        default=False,
        description="Return flagged fallback output instead of failing on parse errors",
    )

    # Model overrides
    advocate_model: str = Field(default="", description="Override model for advocates")
    juror_model: str = Field(default="", description="Override model for jurors")
    judge_model: str = Field(default="", description="Override model for the judge")

    @field_validator("debate_rounds")
    @classmethod
    def fixed_rounds(cls, v: int) -> int:
        """The debate pipeline is built around exactly three rounds."""
        if v != 3:
            raise ValueError("debate_rounds must be 3")
        return v

    @property
    def has_anthropic_key(self) -> bool:
        """Check if Anthropic API key is configured."""
        return bool(
            self.anthropic_api_key and self.anthropic_api_key != "sk-ant-..."
        )

    @property
    def has_openai_key(self) -> bool:
        """Check if OpenAI API key is configured."""
        return bool(self.openai_api_key and self.openai_api_key != "sk-...")

    @property
    def has_openrouter_key(self) -> bool:
        """Check if OpenRouter API key is configured."""
        return bool(
            self.openrouter_api_key and self.openrouter_api_key != "sk-or-..."
        )

    def get_model_provider(self, model: str) -> ModelProvider:
        """Determine which provider to use for a given model."""
        # OpenRouter format: provider/model
        if "/" in model:
            return ModelProvider.OPENROUTER

        if model.startswith("gpt-"):
            return ModelProvider.OPENAI

        if model.startswith("claude-"):
            return ModelProvider.ANTHROPIC

        # Default to OpenRouter for unknown models
        return ModelProvider.OPENROUTER

    def model_for_role(self, role: str) -> ModelConfig:
        """Resolve the model assignment for a persona role, honouring overrides."""
        config = MODEL_ASSIGNMENTS.get(role)
        if config is None:
            raise ValueError(f"Unknown persona role: {role}")

        override = getattr(self, f"{role}_model", "")
        if override:
            return config.model_copy(
                update={
                    "model_id": override,
                    "provider": self.get_model_provider(override),
                }
            )
        return config


# =============================================================================
# Singleton
# =============================================================================


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
