"""LangGraph checkpointer backed by the SQLite checkpoint store."""

import asyncio
from typing import Any, AsyncIterator, Iterator, Optional, Sequence

import structlog
from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.base import (
    WRITES_IDX_MAP,
    BaseCheckpointSaver,
    ChannelVersions,
    CheckpointMetadata,
    CheckpointTuple,
    get_checkpoint_id,
)
from langgraph.checkpoint.base import Checkpoint as GraphCheckpoint

from agent_runtime.persistence.base import Checkpoint
from agent_runtime.persistence.sqlite import SQLiteCheckpointStore

logger = structlog.get_logger()


def _config(thread_id: str, checkpoint_ns: str, checkpoint_id: str) -> RunnableConfig:
    return {
        "configurable": {
            "thread_id": thread_id,
            "checkpoint_ns": checkpoint_ns,
            "checkpoint_id": checkpoint_id,
        }
    }


class LangGraphCheckpointSaver(BaseCheckpointSaver):
    """Exposes a ``SQLiteCheckpointStore`` through LangGraph's saver interface.

    The graph checkpoint dict is stored as the checkpoint state, so the store
    should be built with a LangGraph serializer (``JsonPlusSerializer``) that
    can encode messages. Checkpoint ids produced by LangGraph are uuid6
    strings and already sort by creation time.

    The async methods are the primary interface. The sync ones hop onto the
    loop the saver was created on and must be called from another thread.
    """

    def __init__(self, store: SQLiteCheckpointStore) -> None:
        super().__init__()
        self.store = store
        self.loop = asyncio.get_running_loop()

    async def _to_tuple(self, checkpoint: Checkpoint) -> CheckpointTuple:
        writes = await self.store.get_writes(
            checkpoint.thread_id, checkpoint.checkpoint_ns, checkpoint.checkpoint_id
        )
        parent_config = (
            _config(
                checkpoint.thread_id,
                checkpoint.checkpoint_ns,
                checkpoint.parent_checkpoint_id,
            )
            if checkpoint.parent_checkpoint_id
            else None
        )
        return CheckpointTuple(
            config=_config(
                checkpoint.thread_id, checkpoint.checkpoint_ns, checkpoint.checkpoint_id
            ),
            checkpoint=checkpoint.state,
            metadata=checkpoint.metadata,
            parent_config=parent_config,
            pending_writes=[(w.task_id, w.channel, w.value) for w in writes],
        )

    async def aget_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        configurable = config["configurable"]
        thread_id = configurable["thread_id"]
        checkpoint_ns = configurable.get("checkpoint_ns", "")
        checkpoint_id = get_checkpoint_id(config)

        if checkpoint_id:
            checkpoint = await self.store.get(thread_id, checkpoint_id, checkpoint_ns)
        else:
            checkpoint = await self.store.get_latest(thread_id, checkpoint_ns)

        if checkpoint is None:
            return None
        return await self._to_tuple(checkpoint)

    async def alist(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> AsyncIterator[CheckpointTuple]:
        thread_id = None
        checkpoint_ns = None
        if config is not None:
            thread_id = config["configurable"].get("thread_id")
            checkpoint_ns = config["configurable"].get("checkpoint_ns")
        before_id = get_checkpoint_id(before) if before else None

        yielded = 0
        async for checkpoint in self.store.list(
            thread_id,
            checkpoint_ns=checkpoint_ns,
            before=before_id,
            limit=None if filter else limit,
            descending=True,
        ):
            if filter and any(checkpoint.metadata.get(k) != v for k, v in filter.items()):
                continue
            yield await self._to_tuple(checkpoint)
            yielded += 1
            if limit is not None and yielded >= limit:
                return

    async def aput(
        self,
        config: RunnableConfig,
        checkpoint: GraphCheckpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        configurable = config["configurable"]
        thread_id = configurable["thread_id"]
        checkpoint_ns = configurable.get("checkpoint_ns", "")

        await self.store.put(
            Checkpoint(
                thread_id=thread_id,
                checkpoint_ns=checkpoint_ns,
                checkpoint_id=checkpoint["id"],
                parent_checkpoint_id=configurable.get("checkpoint_id"),
                state=checkpoint,
                metadata=dict(metadata),
            )
        )
        return _config(thread_id, checkpoint_ns, checkpoint["id"])

    async def aput_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        configurable = config["configurable"]
        await self.store.put_writes(
            configurable["thread_id"],
            configurable.get("checkpoint_ns", ""),
            configurable["checkpoint_id"],
            task_id,
            [
                (WRITES_IDX_MAP.get(channel, idx), channel, value)
                for idx, (channel, value) in enumerate(writes)
            ],
            task_path=task_path,
            replace=all(channel in WRITES_IDX_MAP for channel, _ in writes),
        )

    async def adelete_thread(self, thread_id: str) -> None:
        await self.store.delete(thread_id)

    def _run_sync(self, coro: Any) -> Any:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self.loop:
            coro.close()
            raise asyncio.InvalidStateError(
                "Synchronous checkpointer calls are only allowed from a thread other "
                "than the event loop; use the async methods instead"
            )
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    def get_tuple(self, config: RunnableConfig) -> Optional[CheckpointTuple]:
        return self._run_sync(self.aget_tuple(config))

    def list(
        self,
        config: Optional[RunnableConfig],
        *,
        filter: Optional[dict[str, Any]] = None,
        before: Optional[RunnableConfig] = None,
        limit: Optional[int] = None,
    ) -> Iterator[CheckpointTuple]:
        async def collect() -> list[CheckpointTuple]:
            return [
                item
                async for item in self.alist(
                    config, filter=filter, before=before, limit=limit
                )
            ]

        yield from self._run_sync(collect())

    def put(
        self,
        config: RunnableConfig,
        checkpoint: GraphCheckpoint,
        metadata: CheckpointMetadata,
        new_versions: ChannelVersions,
    ) -> RunnableConfig:
        return self._run_sync(self.aput(config, checkpoint, metadata, new_versions))

    def put_writes(
        self,
        config: RunnableConfig,
        writes: Sequence[tuple[str, Any]],
        task_id: str,
        task_path: str = "",
    ) -> None:
        self._run_sync(self.aput_writes(config, writes, task_id, task_path))

    def delete_thread(self, thread_id: str) -> None:
        self._run_sync(self.adelete_thread(thread_id))
