"""Custom exceptions for the agent runtime."""


class AgentRuntimeError(Exception):
    """Base exception for all agent runtime errors."""

    pass


class ConfigurationError(AgentRuntimeError):
    """Raised when there's a configuration error."""

    pass


class ProviderError(ConfigurationError):
    """Raised when a chat model provider cannot be resolved."""

    pass


class ProviderCredentialMissing(ProviderError):
    """Raised when the credential for a provider is not configured."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} API key not configured")


class ProviderUnsupported(ProviderError):
    """Raised when no supported provider matches a model identifier."""

    def __init__(self, model_id: str, reason: str = "no provider registered") -> None:
        self.model_id = model_id
        super().__init__(f"Unsupported model '{model_id}': {reason}")


class StorageError(AgentRuntimeError):
    """Raised when there's an error with the checkpoint storage backend."""

    pass


class StorageInitError(StorageError):
    """Raised when the checkpoint store cannot be opened or its schema is incompatible."""

    pass


class StorageIOError(StorageError):
    """Raised when reading or writing checkpoints fails."""

    pass


class SerializationError(StorageIOError):
    """Raised when a stored blob cannot be encoded or decoded."""

    pass


class StoreClosedError(StorageError):
    """Raised when the checkpoint store is used after close()."""

    pass


class WorkspaceError(AgentRuntimeError):
    """Raised when there's an error with the synced workspace backend."""

    pass


class BackendNotConfiguredError(WorkspaceError):
    """Raised when a file operation runs before configure()."""

    pass


class BackendStateError(WorkspaceError):
    """Raised when configure() is called on an already configured workspace."""

    pass


class BackendClosedError(WorkspaceError):
    """Raised when the workspace is used after close()."""

    pass


class WorkspacePathError(WorkspaceError, ValueError):
    """Raised when a virtual path escapes the workspace namespace."""

    pass


class SyncWarning(UserWarning):
    """Disk synchronization failed; the in-memory workspace is still correct."""

    pass
