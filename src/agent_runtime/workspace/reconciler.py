"""Periodic disk-to-memory reconciliation for a synced workspace."""

import asyncio
from typing import Optional

import structlog

from agent_runtime.exceptions import WorkspaceError
from agent_runtime.workspace.synced import SyncedWorkspace, WorkspaceMode

logger = structlog.get_logger()


class WorkspaceReconciler:
    """Runs ``workspace.reconcile()`` on the event loop every ``interval`` seconds.

    Passes run on the loop itself, between the caller's own operations, so the
    workspace never sees concurrent access.
    """

    def __init__(self, workspace: SyncedWorkspace, interval: float) -> None:
        """Initialize reconciler.

        Args:
            workspace: Workspace to reconcile
            interval: Seconds between passes
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.workspace = workspace
        self.interval = interval
        self.passes = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="workspace-reconciler")
        logger.debug("reconciler_started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("reconciler_stopped", passes=self.passes)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.workspace.mode is WorkspaceMode.CLOSED:
                return
            try:
                self.workspace.reconcile()
            except WorkspaceError as e:
                logger.error("reconcile_failed", error=str(e))
            self.passes += 1
