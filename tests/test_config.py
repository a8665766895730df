"""Tests for configuration module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_runtime.config import (
    LogLevel,
    Settings,
    WorkspaceConfig,
    get_settings,
    load_settings,
    reset_settings,
)

ENV_VARS = [
    "LLM_DEFAULT_MODEL",
    "LLM_ANTHROPIC_API_KEY",
    "LLM_OPENAI_API_KEY",
    "LLM_GOOGLE_API_KEY",
    "LLM_ALLOW_PASSTHROUGH",
    "STORAGE_SQLITE_PATH",
    "WORKSPACE_PATH",
    "WORKSPACE_RECONCILE_INTERVAL",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "ENVIRONMENT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the caller's environment and .env file."""
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    reset_settings()
    yield
    reset_settings()


def test_default_settings() -> None:
    """Test that default settings can be loaded."""
    settings = load_settings()

    assert settings.environment == "development"
    assert settings.llm.default_model == "claude-sonnet-4-5-20250929"
    assert settings.llm.allow_passthrough is True
    assert settings.storage.sqlite_path == Path("./data/langgraph.sqlite")
    assert settings.workspace.path is None
    assert settings.logging.level == LogLevel.INFO


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that prefixed environment variables override defaults."""
    monkeypatch.setenv("LLM_DEFAULT_MODEL", "gpt-4o")
    monkeypatch.setenv("LLM_OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("STORAGE_SQLITE_PATH", "/var/lib/agent/state.sqlite")
    monkeypatch.setenv("WORKSPACE_PATH", "/srv/workspace")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    settings = load_settings()

    assert settings.llm.default_model == "gpt-4o"
    assert settings.llm.get_api_key("openai") == "sk-test"
    assert settings.storage.sqlite_path == Path("/var/lib/agent/state.sqlite")
    assert settings.workspace.path == Path("/srv/workspace")
    assert settings.logging.level == LogLevel.DEBUG


def test_empty_values_become_none(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that blank keys and paths count as unset."""
    monkeypatch.setenv("LLM_ANTHROPIC_API_KEY", "")
    monkeypatch.setenv("WORKSPACE_PATH", "")

    settings = load_settings()

    assert settings.llm.anthropic_api_key is None
    assert settings.llm.get_api_key("anthropic") is None
    assert settings.workspace.path is None


def test_credential_status(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test reporting which provider keys are present."""
    monkeypatch.setenv("LLM_ANTHROPIC_API_KEY", "sk-ant")

    status = load_settings().credential_status()

    assert status == {"anthropic": True, "openai": False, "google": False}


def test_api_keys_are_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that keys do not leak through repr."""
    monkeypatch.setenv("LLM_ANTHROPIC_API_KEY", "sk-very-secret")

    settings = load_settings()

    assert "sk-very-secret" not in repr(settings)


def test_load_from_env_file(tmp_path: Path) -> None:
    """Test loading every section from an explicit .env file."""
    env_file = tmp_path / "custom.env"
    env_file.write_text(
        "ENVIRONMENT=test\n"
        "LLM_DEFAULT_MODEL=claude-3-haiku\n"
        "STORAGE_BUSY_TIMEOUT=1.5\n"
        "WORKSPACE_RECONCILE_INTERVAL=0\n"
        "LOG_FORMAT=json\n"
    )

    settings = load_settings(env_file)

    assert settings.environment == "test"
    assert settings.llm.default_model == "claude-3-haiku"
    assert settings.storage.busy_timeout == 1.5
    assert settings.workspace.reconcile_interval == 0
    assert settings.logging.format == "json"


def test_invalid_values_rejected() -> None:
    """Test field validation."""
    with pytest.raises(ValidationError):
        WorkspaceConfig(reconcile_interval=-1)

    with pytest.raises(ValidationError):
        Settings(environment="staging")


def test_get_settings_is_cached() -> None:
    """Test the global settings instance and its reset."""
    first = get_settings()

    assert get_settings() is first
    reset_settings()
    assert get_settings() is not first
