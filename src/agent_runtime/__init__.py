"""Agent Runtime - deep agents with durable checkpoints and synced workspaces."""

__version__ = "0.1.0"

from agent_runtime.config import Settings, get_settings, load_settings
from agent_runtime.exceptions import (
    AgentRuntimeError,
    ConfigurationError,
)

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "load_settings",
    "AgentRuntimeError",
    "ConfigurationError",
]
