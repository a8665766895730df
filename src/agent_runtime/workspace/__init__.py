"""Agent workspace files, optionally mirrored to a directory on disk."""

from agent_runtime.workspace.disk import LocalDisk
from agent_runtime.workspace.reconciler import WorkspaceReconciler
from agent_runtime.workspace.synced import (
    SyncedWorkspace,
    VirtualFile,
    WorkspaceMode,
    WriteResult,
    normalize_path,
)

__all__ = [
    "LocalDisk",
    "SyncedWorkspace",
    "VirtualFile",
    "WorkspaceMode",
    "WorkspaceReconciler",
    "WriteResult",
    "normalize_path",
]
