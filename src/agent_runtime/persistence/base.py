"""Base interface for checkpoint persistence."""

import itertools
import os
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, NamedTuple, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

_id_lock = threading.Lock()
_last_id_ns = 0
_id_suffix = itertools.count()


def new_checkpoint_id() -> str:
    """Create a checkpoint id that sorts after every id issued before it.

    Ids are a zero-padded nanosecond timestamp, forced strictly increasing
    within the process, followed by the pid and a counter to keep them unique.
    """
    global _last_id_ns
    with _id_lock:
        now = max(time.time_ns(), _last_id_ns + 1)
        _last_id_ns = now
        suffix = next(_id_suffix)
    return f"{now:020d}-{os.getpid():x}-{suffix:06x}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Checkpoint(BaseModel):
    """An immutable snapshot of a thread's state at one execution step."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    thread_id: str = Field(..., min_length=1, description="Thread identifier")
    checkpoint_id: str = Field(
        ..., min_length=1, description="Identifier, ordered within the thread"
    )
    state: Any = Field(..., description="Opaque state, encoded by the store serializer")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Execution bookkeeping"
    )
    parent_checkpoint_id: Optional[str] = Field(
        None, description="Checkpoint this one was derived from"
    )
    checkpoint_ns: str = Field("", description="Checkpoint namespace (subgraph)")
    created_at: datetime = Field(
        default_factory=_utcnow, description="Checkpoint creation time"
    )


class PendingWrite(NamedTuple):
    """An intermediate channel write recorded against a checkpoint."""

    task_id: str
    channel: str
    value: Any


class ThreadSummary(NamedTuple):
    """Checkpoint count and latest id for one thread."""

    thread_id: str
    checkpoint_count: int
    latest_checkpoint_id: str


class CheckpointStore(ABC):
    """Abstract base class for checkpoint storage backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open the backing store and create its schema if needed."""
        pass

    @abstractmethod
    async def put(self, checkpoint: Checkpoint) -> Checkpoint:
        """Durably append a checkpoint.

        Args:
            checkpoint: Checkpoint to store

        Returns:
            The stored checkpoint
        """
        pass

    @abstractmethod
    async def get_latest(
        self, thread_id: str, checkpoint_ns: str = ""
    ) -> Optional[Checkpoint]:
        """Get the checkpoint with the greatest id for a thread.

        Args:
            thread_id: Thread identifier
            checkpoint_ns: Checkpoint namespace

        Returns:
            Checkpoint if found, None otherwise
        """
        pass

    @abstractmethod
    async def get(
        self, thread_id: str, checkpoint_id: str, checkpoint_ns: str = ""
    ) -> Optional[Checkpoint]:
        """Get a specific checkpoint.

        Args:
            thread_id: Thread identifier
            checkpoint_id: Checkpoint identifier
            checkpoint_ns: Checkpoint namespace

        Returns:
            Checkpoint if found, None otherwise
        """
        pass

    @abstractmethod
    def list(
        self,
        thread_id: Optional[str],
        *,
        checkpoint_ns: Optional[str] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> AsyncIterator[Checkpoint]:
        """Iterate over checkpoints ordered by checkpoint id.

        Args:
            thread_id: Thread identifier (None for every thread)
            checkpoint_ns: Restrict to one namespace (None for all)
            before: Only checkpoints with a smaller id
            limit: Maximum number of checkpoints to yield
            descending: Newest first instead of oldest first

        Returns:
            Async iterator of checkpoints
        """
        pass

    @abstractmethod
    async def delete(self, thread_id: str) -> int:
        """Delete all checkpoints for a thread.

        Args:
            thread_id: Thread identifier

        Returns:
            Number of checkpoints deleted
        """
        pass

    @abstractmethod
    async def put_writes(
        self,
        thread_id: str,
        checkpoint_ns: str,
        checkpoint_id: str,
        task_id: str,
        writes: Sequence[tuple[int, str, Any]],
        task_path: str = "",
        replace: bool = False,
    ) -> None:
        """Store intermediate writes linked to a checkpoint.

        Args:
            thread_id: Thread identifier
            checkpoint_ns: Checkpoint namespace
            checkpoint_id: Checkpoint the writes belong to
            task_id: Task that produced the writes
            writes: ``(index, channel, value)`` triples
            task_path: Path of the task in the graph
            replace: Overwrite existing writes with the same index
        """
        pass

    @abstractmethod
    async def get_writes(
        self, thread_id: str, checkpoint_ns: str, checkpoint_id: str
    ) -> List[PendingWrite]:
        """Load the intermediate writes linked to a checkpoint."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying storage handle."""
        pass
