"""Persistence layer for resumable conversation state."""

from agent_runtime.persistence.base import (
    Checkpoint,
    CheckpointStore,
    PendingWrite,
    ThreadSummary,
    new_checkpoint_id,
)
from agent_runtime.persistence.serde import JsonSerializer, Serializer
from agent_runtime.persistence.sqlite import SCHEMA_VERSION, SQLiteCheckpointStore

__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "JsonSerializer",
    "PendingWrite",
    "SCHEMA_VERSION",
    "SQLiteCheckpointStore",
    "Serializer",
    "ThreadSummary",
    "new_checkpoint_id",
]
