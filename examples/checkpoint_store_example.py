"""Example demonstrating the checkpoint store and a synced workspace."""

import asyncio
import tempfile
from pathlib import Path

from agent_runtime.persistence import Checkpoint, SQLiteCheckpointStore, new_checkpoint_id
from agent_runtime.workspace import SyncedWorkspace


async def main() -> None:
    """Save a short conversation, resume it and mirror files to disk."""
    db_path = Path("./data/example_checkpoints.sqlite")
    store = SQLiteCheckpointStore(db_path)
    await store.initialize()

    thread_id = "example_thread_001"

    print("=== Checkpoint Store Example ===\n")

    # 1. Save one checkpoint per turn
    print("1. Saving conversation turns...")
    messages: list[str] = []
    parent = None
    for turn, text in enumerate(["Hello!", "Summarize the plan", "Thanks"]):
        messages.append(text)
        checkpoint = await store.put(
            Checkpoint(
                thread_id=thread_id,
                checkpoint_id=new_checkpoint_id(),
                parent_checkpoint_id=parent,
                state={"messages": list(messages)},
                metadata={"step": turn, "source": "input"},
            )
        )
        parent = checkpoint.checkpoint_id
        print(f"   Saved checkpoint: {checkpoint.checkpoint_id}")

    await store.close()

    # 2. Resume from a fresh store, as a restarted process would
    print("\n2. Resuming from disk...")
    store = SQLiteCheckpointStore(db_path)
    latest = await store.get_latest(thread_id)
    assert latest is not None
    print(f"   Latest checkpoint: {latest.checkpoint_id}")
    print(f"   Messages: {latest.state['messages']}")

    # 3. Walk the history newest first
    print("\n3. History:")
    async for checkpoint in store.list(thread_id, descending=True):
        print(f"   step {checkpoint.metadata['step']}: {checkpoint.checkpoint_id}")

    # 4. Keep only the newest checkpoint
    removed = await store.prune(thread_id, keep=1)
    print(f"\n4. Pruned {removed} old checkpoints")
    await store.close()

    # 5. Files written by an agent land in the workspace directory
    print("\n5. Synced workspace...")
    with tempfile.TemporaryDirectory() as tmpdir:
        workspace = SyncedWorkspace()
        workspace.configure(tmpdir)
        result = workspace.write_file("/notes/summary.md", "# Summary\n\nAll done.\n")
        print(f"   Wrote {result.path} (synced={result.synced})")
        print(f"   On disk: {(Path(tmpdir) / 'notes' / 'summary.md').read_text()!r}")
        workspace.close()

    print("\n=== Example Complete ===")


if __name__ == "__main__":
    asyncio.run(main())
