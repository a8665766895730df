"""Tests for periodic workspace reconciliation."""

import asyncio
import os
import time
from pathlib import Path

import pytest

from agent_runtime.workspace import SyncedWorkspace, WorkspaceReconciler


async def wait_for_passes(reconciler: WorkspaceReconciler, passes: int) -> None:
    for _ in range(200):
        if reconciler.passes >= passes:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"reconciler ran {reconciler.passes} passes, expected {passes}")


def test_interval_must_be_positive() -> None:
    """Test that a non-positive interval is rejected."""
    workspace = SyncedWorkspace()

    with pytest.raises(ValueError):
        WorkspaceReconciler(workspace, 0)


@pytest.mark.asyncio
async def test_reconciler_repairs_external_changes(tmp_path: Path) -> None:
    """Test that background passes write newer memory content back to disk."""
    workspace = SyncedWorkspace()
    workspace.configure(tmp_path)
    workspace.write_file("/plan.md", "memory plan")

    target = tmp_path / "plan.md"
    target.write_text("stale edit")
    stale = time.time_ns() - 60 * 10**9
    os.utime(target, ns=(stale, stale))

    reconciler = WorkspaceReconciler(workspace, interval=0.01)
    reconciler.start()
    assert reconciler.running

    await wait_for_passes(reconciler, 1)
    await reconciler.stop()

    assert not reconciler.running
    assert target.read_text() == "memory plan"
    workspace.close()


@pytest.mark.asyncio
async def test_reconciler_stops_when_workspace_closes(tmp_path: Path) -> None:
    """Test that the loop exits on its own once the workspace is closed."""
    workspace = SyncedWorkspace()
    workspace.configure(tmp_path)
    reconciler = WorkspaceReconciler(workspace, interval=0.01)
    reconciler.start()

    workspace.close()
    for _ in range(100):
        if not reconciler.running:
            break
        await asyncio.sleep(0.01)

    assert not reconciler.running
    await reconciler.stop()
    await reconciler.stop()
