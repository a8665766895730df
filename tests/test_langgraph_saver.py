"""Tests for the LangGraph checkpointer adapter."""

import asyncio
from pathlib import Path
from typing import TypedDict

import pytest

pytest.importorskip("langgraph")

from langgraph.checkpoint.serde.jsonplus import JsonPlusSerializer  # noqa: E402
from langgraph.graph import END, START, StateGraph  # noqa: E402

from agent_runtime.persistence.langgraph_saver import LangGraphCheckpointSaver  # noqa: E402
from agent_runtime.persistence.sqlite import SQLiteCheckpointStore  # noqa: E402


class CounterState(TypedDict):
    count: int


def increment(state: CounterState) -> dict:
    return {"count": state["count"] + 1}


def build_graph(saver: LangGraphCheckpointSaver):
    builder = StateGraph(CounterState)
    builder.add_node("increment", increment)
    builder.add_edge(START, "increment")
    builder.add_edge("increment", END)
    return builder.compile(checkpointer=saver)


@pytest.fixture
async def store(tmp_path: Path) -> SQLiteCheckpointStore:
    """Create a store using the LangGraph serializer."""
    store = SQLiteCheckpointStore(tmp_path / "graph.sqlite", JsonPlusSerializer())
    await store.initialize()
    yield store
    await store.close()


@pytest.mark.asyncio
async def test_graph_state_is_checkpointed(store: SQLiteCheckpointStore) -> None:
    """Test that a compiled graph saves and reloads its state."""
    graph = build_graph(LangGraphCheckpointSaver(store))
    config = {"configurable": {"thread_id": "graph-thread"}}

    result = await graph.ainvoke({"count": 0}, config)
    snapshot = await graph.aget_state(config)

    assert result["count"] == 1
    assert snapshot.values["count"] == 1
    assert await store.get_latest("graph-thread") is not None


@pytest.mark.asyncio
async def test_resume_from_fresh_store(tmp_path: Path) -> None:
    """Test that a new process sees the state written by a previous one."""
    db_path = tmp_path / "resume.sqlite"

    first = SQLiteCheckpointStore(db_path, JsonPlusSerializer())
    graph = build_graph(LangGraphCheckpointSaver(first))
    config = {"configurable": {"thread_id": "resume-thread"}}
    await graph.ainvoke({"count": 41}, config)
    await first.close()

    second = SQLiteCheckpointStore(db_path, JsonPlusSerializer())
    graph = build_graph(LangGraphCheckpointSaver(second))
    snapshot = await graph.aget_state(config)
    history = [item async for item in graph.aget_state_history(config)]
    await second.close()

    assert snapshot.values["count"] == 42
    assert len(history) >= 2
    assert history[0].config["configurable"]["checkpoint_id"] == (
        snapshot.config["configurable"]["checkpoint_id"]
    )


@pytest.mark.asyncio
async def test_get_tuple_and_list(store: SQLiteCheckpointStore) -> None:
    """Test tuple lookup, listing with limit and thread deletion."""
    saver = LangGraphCheckpointSaver(store)
    graph = build_graph(saver)
    config = {"configurable": {"thread_id": "tuple-thread"}}
    await graph.ainvoke({"count": 0}, config)

    latest = await saver.aget_tuple(config)
    assert latest is not None
    assert latest.config["configurable"]["thread_id"] == "tuple-thread"
    assert latest.checkpoint["id"] == latest.config["configurable"]["checkpoint_id"]

    listed = [item async for item in saver.alist(config, limit=1)]
    assert len(listed) == 1
    assert listed[0].config == latest.config

    assert await saver.aget_tuple({"configurable": {"thread_id": "unknown"}}) is None

    await saver.adelete_thread("tuple-thread")
    assert await saver.aget_tuple(config) is None


@pytest.mark.asyncio
async def test_sync_methods_require_another_thread(store: SQLiteCheckpointStore) -> None:
    """Test the sync interface from a worker thread and from the loop."""
    saver = LangGraphCheckpointSaver(store)
    graph = build_graph(saver)
    config = {"configurable": {"thread_id": "sync-thread"}}
    await graph.ainvoke({"count": 0}, config)

    from_thread = await asyncio.to_thread(saver.get_tuple, config)
    assert from_thread is not None
    assert from_thread.checkpoint["channel_values"]["count"] == 1

    with pytest.raises(asyncio.InvalidStateError):
        saver.get_tuple(config)
