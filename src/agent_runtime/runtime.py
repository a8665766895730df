"""Agent runtime construction.

A ``RuntimeContext`` owns everything a process shares between runtimes (the
settings, the provider registry, one checkpoint store and the default
workspace path) and closes it on shutdown. Each ``AgentRuntime`` it creates
gets its own synced workspace.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Optional, Union

import structlog
from langgraph.checkpoint.serde.jsonplus import JsonPlusSerializer

from agent_runtime.config import Settings, get_settings
from agent_runtime.exceptions import AgentRuntimeError
from agent_runtime.persistence.langgraph_saver import LangGraphCheckpointSaver
from agent_runtime.persistence.serde import Serializer
from agent_runtime.persistence.sqlite import SQLiteCheckpointStore
from agent_runtime.providers import ProviderRegistry, default_registry
from agent_runtime.workspace.deepagents_backend import SyncedWorkspaceBackend
from agent_runtime.workspace.reconciler import WorkspaceReconciler
from agent_runtime.workspace.synced import SyncedWorkspace

logger = structlog.get_logger()

EngineFactory = Callable[..., Any]
PathLike = Union[str, Path, None]


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def create_deep_agent_engine(*, model: Any, checkpointer: Any, backend: Any) -> Any:
    """Build a deep agent around the supplied model, checkpointer and backend."""
    from deepagents import create_deep_agent

    return create_deep_agent(model=model, checkpointer=checkpointer, backend=backend)


class AgentRuntime:
    """One agent instance together with the workspace it writes to."""

    def __init__(
        self,
        agent: Any,
        workspace: SyncedWorkspace,
        model_id: str,
        reconciler: Optional[WorkspaceReconciler] = None,
        on_close: Optional[Callable[["AgentRuntime"], None]] = None,
    ) -> None:
        self.agent = agent
        self.workspace = workspace
        self.model_id = model_id
        self.reconciler = reconciler
        self._on_close = on_close

    @property
    def synced(self) -> bool:
        return self.workspace.root is not None

    async def close(self) -> None:
        """Stop reconciliation and flush the workspace. Safe to call twice."""
        if self.reconciler is not None:
            await self.reconciler.stop()
        self.workspace.close()

        on_close, self._on_close = self._on_close, None
        if on_close is not None:
            on_close(self)


class RuntimeContext:
    """Explicitly owned replacement for process-wide runtime globals."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        registry: Optional[ProviderRegistry] = None,
        engine_factory: Optional[EngineFactory] = None,
        serde: Optional[Serializer] = None,
    ) -> None:
        """Initialize runtime context.

        Args:
            settings: Application settings (defaults to the global settings)
            registry: Provider registry (defaults to the built-in providers)
            engine_factory: Builds the agent from model, checkpointer and backend
            serde: Serializer for the checkpoint store (LangGraph's by default)
        """
        self.settings = settings or get_settings()
        self.registry = registry or default_registry(self.settings.llm)
        self.engine_factory = engine_factory or create_deep_agent_engine
        self.serde = serde or JsonPlusSerializer()
        self._workspace_path: Optional[Path] = self.settings.workspace.path
        self._store: Optional[SQLiteCheckpointStore] = None
        self._saver: Optional[LangGraphCheckpointSaver] = None
        self._store_lock = asyncio.Lock()
        self._runtimes: list[AgentRuntime] = []
        self._closed = False

    @property
    def workspace_path(self) -> Optional[Path]:
        return self._workspace_path

    @property
    def runtimes(self) -> tuple[AgentRuntime, ...]:
        """Runtimes created here and not yet closed."""
        return tuple(self._runtimes)

    def set_workspace_path(self, path: PathLike) -> None:
        """Set the directory new runtimes sync to by default (None disables sync)."""
        self._workspace_path = Path(path) if path is not None else None
        logger.info("workspace_path_set", path=str(path) if path is not None else None)

    def _check_open(self) -> None:
        if self._closed:
            raise AgentRuntimeError("Runtime context is closed")

    async def get_checkpointer(self) -> SQLiteCheckpointStore:
        """Return the context's checkpoint store, creating it on first use."""
        self._check_open()
        async with self._store_lock:
            if self._store is None:
                store = SQLiteCheckpointStore(
                    self.settings.storage.sqlite_path,
                    self.serde,
                    busy_timeout=self.settings.storage.busy_timeout,
                    page_size=self.settings.storage.page_size,
                )
                await store.initialize()
                self._store = store
            return self._store

    async def get_saver(self) -> LangGraphCheckpointSaver:
        """Return the LangGraph view of the checkpoint store."""
        store = await self.get_checkpointer()
        if self._saver is None:
            self._saver = LangGraphCheckpointSaver(store)
        return self._saver

    async def create_agent_runtime(
        self,
        model_id: Optional[str] = None,
        workspace_path: Any = UNSET,
    ) -> AgentRuntime:
        """Create an agent wired to the checkpoint store and a synced workspace.

        Args:
            model_id: Model to use (defaults to the configured default model)
            workspace_path: Directory to sync to; ``None`` forces state-only
                storage and leaving it unset uses the context default

        Returns:
            The new runtime
        """
        self._check_open()
        model_id = model_id or self.settings.llm.default_model
        logger.info("creating_agent_runtime", model=model_id)

        model = self.registry.create(model_id)
        saver = await self.get_saver()

        sync_path = self._workspace_path if workspace_path is UNSET else workspace_path
        workspace = SyncedWorkspace()
        workspace.configure(sync_path)

        reconciler = None
        interval = self.settings.workspace.reconcile_interval
        if sync_path is not None and interval > 0:
            reconciler = WorkspaceReconciler(workspace, interval)
            reconciler.start()

        try:
            agent = self.engine_factory(
                model=model,
                checkpointer=saver,
                backend=SyncedWorkspaceBackend(workspace),
            )
        except BaseException:
            if reconciler is not None:
                await reconciler.stop()
            workspace.close()
            raise

        runtime = AgentRuntime(agent, workspace, model_id, reconciler, on_close=self._forget)
        self._runtimes.append(runtime)
        logger.info(
            "agent_runtime_created",
            model=model_id,
            storage="disk sync" if sync_path is not None else "state-only",
            sync_path=str(sync_path) if sync_path is not None else None,
        )
        return runtime

    def _forget(self, runtime: AgentRuntime) -> None:
        if runtime in self._runtimes:
            self._runtimes.remove(runtime)

    async def close(self) -> None:
        """Close every runtime and the checkpoint store. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        runtimes, self._runtimes = self._runtimes, []
        for runtime in runtimes:
            await runtime.close()

        async with self._store_lock:
            store, self._store = self._store, None
            self._saver = None
        if store is not None:
            await store.close()

        logger.info("runtime_context_closed", runtimes=len(runtimes))

    async def __aenter__(self) -> "RuntimeContext":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
