"""Configuration management for the agent runtime.

Settings are resolved in layers:
1. Default values (hardcoded)
2. A .env file (or the file passed to ``load_settings``)
3. Environment variables (highest priority)

Each concern lives in its own settings class with its own env prefix, and
``Settings`` aggregates them.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMConfig(BaseSettings):
    """Configuration for chat model providers."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_model: str = Field(
        default="claude-sonnet-4-5-20250929",
        description="Model used when a runtime is created without a model id",
    )

    anthropic_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Anthropic API key",
    )
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key",
    )
    google_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Google API key",
    )

    allow_passthrough: bool = Field(
        default=True,
        description="Hand unknown model ids to the engine as plain strings",
    )

    @field_validator("anthropic_api_key", "openai_api_key", "google_api_key", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Convert empty strings to None."""
        if v == "" or v is None:
            return None
        return v

    def get_api_key(self, provider: str) -> Optional[str]:
        """Look up the plain-text API key for a provider name.

        Args:
            provider: Credential name (``anthropic``, ``openai``, ``google``).

        Returns:
            The key, or None when it is not configured.
        """
        secret = getattr(self, f"{provider}_api_key", None)
        if secret is None:
            return None
        return secret.get_secret_value()


class StorageConfig(BaseSettings):
    """Configuration for the checkpoint store."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sqlite_path: Path = Field(
        default=Path("./data/langgraph.sqlite"),
        description="Path to the SQLite checkpoint database",
    )

    busy_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds SQLite waits on a locked database before failing",
    )

    page_size: int = Field(
        default=100,
        gt=0,
        description="Rows fetched per page when listing checkpoints",
    )


class WorkspaceConfig(BaseSettings):
    """Configuration for workspace file synchronization."""

    model_config = SettingsConfigDict(
        env_prefix="WORKSPACE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    path: Optional[Path] = Field(
        default=None,
        description="Directory mirrored by agent runtimes (None for state-only storage)",
    )

    reconcile_interval: float = Field(
        default=2.0,
        ge=0.0,
        description="Seconds between disk reconciliation passes (0 disables)",
    )

    @field_validator("path", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: Any) -> Any:
        """Convert empty strings to None."""
        if v == "":
            return None
        return v


class LoggingConfig(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )

    format: Literal["json", "console", "rich"] = Field(
        default="rich",
        description="Log format",
    )

    file: Optional[Path] = Field(
        default=None,
        description="Log file path (None for stdout only)",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "production", "test"] = Field(
        default="development",
        description="Application environment",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def credential_status(self) -> dict[str, bool]:
        """Report which provider credentials are configured.

        Returns:
            Dictionary mapping provider names to presence.
        """
        return {
            provider: self.llm.get_api_key(provider) is not None
            for provider in ("anthropic", "openai", "google")
        }


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Load settings from environment and an optional .env file.

    Args:
        env_file: Optional path to .env file. If not provided, will look for
                  .env in the current directory.

    Returns:
        Loaded and validated settings.
    """
    if env_file is None:
        return Settings()

    return Settings(
        _env_file=env_file,
        llm=LLMConfig(_env_file=env_file),
        storage=StorageConfig(_env_file=env_file),
        workspace=WorkspaceConfig(_env_file=env_file),
        logging=LoggingConfig(_env_file=env_file),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance.

    Returns:
        The global settings instance.
    """
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance (mainly for testing)."""
    global _settings
    _settings = None
