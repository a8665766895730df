"""Tests for the command-line interface."""

import asyncio
from pathlib import Path

import pytest
from langgraph.checkpoint.serde.jsonplus import JsonPlusSerializer
from typer.testing import CliRunner

from agent_runtime.cli import app
from agent_runtime.config import reset_settings
from agent_runtime.persistence import Checkpoint, SQLiteCheckpointStore, new_checkpoint_id

runner = CliRunner()


@pytest.fixture
def db_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the CLI at a temporary database."""
    path = tmp_path / "cli.sqlite"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("STORAGE_SQLITE_PATH", str(path))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    reset_settings()
    yield path
    reset_settings()


def seed(db_path: Path, thread_id: str, count: int) -> list[str]:
    """Store ``count`` checkpoints for a thread and return their ids."""

    async def run() -> list[str]:
        store = SQLiteCheckpointStore(db_path, JsonPlusSerializer())
        ids = []
        parent = None
        for step in range(count):
            checkpoint = await store.put(
                Checkpoint(
                    thread_id=thread_id,
                    checkpoint_id=new_checkpoint_id(),
                    parent_checkpoint_id=parent,
                    state={"messages": ["hi"] * step},
                    metadata={"step": step},
                )
            )
            parent = checkpoint.checkpoint_id
            ids.append(parent)
        await store.close()
        return ids

    return asyncio.run(run())


def remaining(db_path: Path, thread_id: str) -> int:
    async def run() -> int:
        store = SQLiteCheckpointStore(db_path, JsonPlusSerializer())
        count = len([c async for c in store.list(thread_id)])
        await store.close()
        return count

    return asyncio.run(run())


def test_threads_empty(db_path: Path) -> None:
    """Test listing threads on an empty database."""
    result = runner.invoke(app, ["threads"])

    assert result.exit_code == 0
    assert "No checkpoints stored" in result.output


def test_threads_and_history(db_path: Path) -> None:
    """Test listing threads and a thread's history."""
    seed(db_path, "thread-1", 3)

    threads = runner.invoke(app, ["threads"])
    history = runner.invoke(app, ["history", "thread-1"])

    assert threads.exit_code == 0
    assert "thread-1" in threads.output
    assert history.exit_code == 0
    assert "History of thread-1" in history.output


def test_latest(db_path: Path) -> None:
    """Test showing the latest checkpoint and a missing thread."""
    seed(db_path, "thread-1", 2)

    found = runner.invoke(app, ["latest", "thread-1"])
    missing = runner.invoke(app, ["latest", "nobody"])

    assert found.exit_code == 0
    assert "messages" in found.output
    assert missing.exit_code == 1
    assert "No checkpoints for thread nobody" in missing.output


def test_delete_requires_confirmation(db_path: Path) -> None:
    """Test that delete asks first and honors --yes."""
    seed(db_path, "thread-1", 2)

    declined = runner.invoke(app, ["delete", "thread-1"], input="n\n")
    assert declined.exit_code == 1
    assert remaining(db_path, "thread-1") == 2

    confirmed = runner.invoke(app, ["delete", "thread-1", "--yes"])
    assert confirmed.exit_code == 0
    assert "Deleted 2 checkpoints" in confirmed.output
    assert remaining(db_path, "thread-1") == 0


def test_prune(db_path: Path) -> None:
    """Test pruning a thread down to its newest checkpoint."""
    seed(db_path, "thread-1", 4)

    result = runner.invoke(app, ["prune", "thread-1", "--keep", "1"])

    assert result.exit_code == 0
    assert "Removed 3 checkpoints" in result.output
    assert remaining(db_path, "thread-1") == 1


def test_storage_error_exits(db_path: Path) -> None:
    """Test that an unreadable database is reported, not raised."""
    db_path.write_bytes(b"definitely not sqlite " * 100)

    result = runner.invoke(app, ["threads"])

    assert result.exit_code == 1
    assert "Storage Error" in result.output


def test_files(tmp_path: Path) -> None:
    """Test listing the files of a workspace directory."""
    workspace = tmp_path / "ws"
    (workspace / "sub").mkdir(parents=True)
    (workspace / "a.txt").write_text("abc")
    (workspace / "sub" / "b.txt").write_text("b")

    result = runner.invoke(app, ["files", str(workspace)])

    assert result.exit_code == 0
    assert "/a.txt" in result.output
    assert "/sub/b.txt" in result.output


def test_config_command(db_path: Path) -> None:
    """Test displaying configuration."""
    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0
    assert "Agent Runtime Configuration" in result.output
    assert "API Keys" in result.output


def test_version_command() -> None:
    """Test displaying version information."""
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "Agent Runtime" in result.output
