"""SQLite-based checkpoint persistence."""

import asyncio
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional, Sequence, TypeVar

import aiosqlite
import structlog

from agent_runtime.exceptions import (
    SerializationError,
    StorageInitError,
    StorageIOError,
    StoreClosedError,
)
from agent_runtime.persistence.base import (
    Checkpoint,
    CheckpointStore,
    PendingWrite,
    ThreadSummary,
)
from agent_runtime.persistence.serde import JsonSerializer, Serializer

logger = structlog.get_logger()

T = TypeVar("T")

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS checkpoints (
    thread_id TEXT NOT NULL,
    checkpoint_ns TEXT NOT NULL DEFAULT '',
    checkpoint_id TEXT NOT NULL,
    parent_checkpoint_id TEXT,
    state_type TEXT NOT NULL,
    state BLOB NOT NULL,
    metadata_type TEXT NOT NULL,
    metadata BLOB NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id)
);
CREATE TABLE IF NOT EXISTS writes (
    thread_id TEXT NOT NULL,
    checkpoint_ns TEXT NOT NULL DEFAULT '',
    checkpoint_id TEXT NOT NULL,
    task_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    channel TEXT NOT NULL,
    value_type TEXT NOT NULL,
    value BLOB NOT NULL,
    task_path TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (thread_id, checkpoint_ns, checkpoint_id, task_id, idx)
);
CREATE INDEX IF NOT EXISTS idx_checkpoints_id ON checkpoints(checkpoint_id);
"""

_TABLE_COLUMNS = {
    "checkpoints": {
        "thread_id", "checkpoint_ns", "checkpoint_id", "parent_checkpoint_id",
        "state_type", "state", "metadata_type", "metadata", "created_at",
    },
    "writes": {
        "thread_id", "checkpoint_ns", "checkpoint_id", "task_id", "idx",
        "channel", "value_type", "value", "task_path",
    },
}

_COLUMNS = (
    "thread_id, checkpoint_ns, checkpoint_id, parent_checkpoint_id, "
    "state_type, state, metadata_type, metadata, created_at"
)


def _is_busy(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class SQLiteCheckpointStore(CheckpointStore):
    """SQLite implementation of checkpoint storage.

    One connection is opened by ``initialize()`` and shared by every
    operation; an ``asyncio.Lock`` serializes access to it, which also keeps
    writes in submission order. The database runs in WAL mode with
    ``synchronous=FULL`` so a committed checkpoint survives a crash and readers
    never see a half-written row.
    """

    def __init__(
        self,
        db_path: Path,
        serde: Optional[Serializer] = None,
        *,
        busy_timeout: float = 5.0,
        page_size: int = 100,
    ) -> None:
        """Initialize SQLite checkpoint store.

        Args:
            db_path: Path to SQLite database file
            serde: Serializer for state, metadata and pending writes
            busy_timeout: Seconds to wait on a locked database
            page_size: Rows fetched per round trip when listing
        """
        self.db_path = Path(db_path)
        self.serde: Serializer = serde or JsonSerializer()
        self.busy_timeout = busy_timeout
        self.page_size = page_size
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def initialize(self) -> None:
        """Open the database, creating the schema if absent."""
        if self._closed:
            raise StoreClosedError("Checkpoint store is closed")

        async with self._lock:
            if self._conn is not None:
                return

            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(self.db_path, timeout=self.busy_timeout)
            except (OSError, sqlite3.Error) as e:
                raise StorageInitError(
                    f"Cannot open checkpoint database at {self.db_path}: {e}"
                ) from e

            try:
                await self._prepare(conn)
            except BaseException:
                await conn.close()
                raise

            self._conn = conn

        logger.info("checkpoint_store_initialized", path=str(self.db_path))

    async def _prepare(self, conn: aiosqlite.Connection) -> None:
        try:
            cursor = await conn.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            version = row[0] if row else 0
            if version > SCHEMA_VERSION:
                raise StorageInitError(
                    f"Checkpoint database {self.db_path} has schema version {version}, "
                    f"this build supports up to {SCHEMA_VERSION}"
                )
            await self._check_tables(conn)

            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=FULL")
            await conn.executescript(_SCHEMA)
            await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await conn.commit()
        except sqlite3.Error as e:
            raise StorageInitError(
                f"Cannot prepare checkpoint database at {self.db_path}: {e}"
            ) from e

        conn.row_factory = aiosqlite.Row

    async def _check_tables(self, conn: aiosqlite.Connection) -> None:
        """Reject existing tables whose columns differ from this schema."""
        for table, expected in _TABLE_COLUMNS.items():
            cursor = await conn.execute(f"PRAGMA table_info({table})")
            columns = {row[1] for row in await cursor.fetchall()}
            await cursor.close()
            if columns and columns != expected:
                raise StorageInitError(
                    f"Checkpoint database {self.db_path} has an incompatible "
                    f"'{table}' table (columns: {', '.join(sorted(columns))})"
                )

    async def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("Checkpoint store is closed")
        if self._conn is None:
            await self.initialize()

    async def _run(
        self,
        operation: str,
        fn: Callable[[aiosqlite.Connection], Awaitable[T]],
    ) -> T:
        """Run ``fn`` on the shared connection, retrying once if the database is busy."""
        await self._ensure_open()

        async with self._lock:
            conn = self._conn
            if self._closed or conn is None:
                raise StoreClosedError("Checkpoint store is closed")

            try:
                return await fn(conn)
            except sqlite3.Error as e:
                if not (isinstance(e, sqlite3.OperationalError) and _is_busy(e)):
                    raise StorageIOError(f"{operation} failed: {e}") from e
                logger.warning("checkpoint_store_busy_retry", operation=operation)

            try:
                return await fn(conn)
            except sqlite3.Error as e:
                raise StorageIOError(f"{operation} failed: {e}") from e

    async def _fetchall(
        self, operation: str, sql: str, params: Sequence[Any]
    ) -> list[aiosqlite.Row]:
        async def query(conn: aiosqlite.Connection) -> list[aiosqlite.Row]:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
            await cursor.close()
            return list(rows)

        return await self._run(operation, query)

    def _encode(self, value: Any) -> tuple[str, bytes]:
        try:
            return self.serde.dumps_typed(value)
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(f"Cannot encode {type(value).__name__}: {e}") from e

    def _decode(self, type_tag: str, blob: bytes) -> Any:
        try:
            return self.serde.loads_typed((type_tag, blob))
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(f"Cannot decode '{type_tag}' blob: {e}") from e

    def _row_to_checkpoint(self, row: aiosqlite.Row) -> Checkpoint:
        return Checkpoint(
            thread_id=row["thread_id"],
            checkpoint_ns=row["checkpoint_ns"],
            checkpoint_id=row["checkpoint_id"],
            parent_checkpoint_id=row["parent_checkpoint_id"],
            state=self._decode(row["state_type"], row["state"]),
            metadata=self._decode(row["metadata_type"], row["metadata"]) or {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    async def put(self, checkpoint: Checkpoint) -> Checkpoint:
        """Durably store a checkpoint.

        The transaction runs shielded from cancellation of the caller: once
        ``put`` has started, the checkpoint is committed in full even if the
        awaiting task is cancelled, and nothing partial is ever visible.
        """
        state_type, state_blob = self._encode(checkpoint.state)
        metadata_type, metadata_blob = self._encode(checkpoint.metadata)

        async def write(conn: aiosqlite.Connection) -> None:
            try:
                if checkpoint.parent_checkpoint_id:
                    cursor = await conn.execute(
                        """
                        SELECT 1 FROM checkpoints
                        WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
                        """,
                        (
                            checkpoint.thread_id,
                            checkpoint.checkpoint_ns,
                            checkpoint.parent_checkpoint_id,
                        ),
                    )
                    if await cursor.fetchone() is None:
                        # History may have been pruned; keep the dangling reference.
                        logger.debug(
                            "checkpoint_parent_missing",
                            thread_id=checkpoint.thread_id,
                            parent_checkpoint_id=checkpoint.parent_checkpoint_id,
                        )
                    await cursor.close()

                await conn.execute(
                    f"""
                    INSERT OR REPLACE INTO checkpoints ({_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        checkpoint.thread_id,
                        checkpoint.checkpoint_ns,
                        checkpoint.checkpoint_id,
                        checkpoint.parent_checkpoint_id,
                        state_type,
                        state_blob,
                        metadata_type,
                        metadata_blob,
                        checkpoint.created_at.isoformat(),
                    ),
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

        await asyncio.shield(self._run("put", write))

        logger.debug(
            "checkpoint_saved",
            thread_id=checkpoint.thread_id,
            checkpoint_id=checkpoint.checkpoint_id,
        )
        return checkpoint

    async def get_latest(
        self, thread_id: str, checkpoint_ns: str = ""
    ) -> Optional[Checkpoint]:
        """Get the checkpoint with the greatest id for a thread."""
        rows = await self._fetchall(
            "get_latest",
            f"""
            SELECT {_COLUMNS} FROM checkpoints
            WHERE thread_id = ? AND checkpoint_ns = ?
            ORDER BY checkpoint_id DESC
            LIMIT 1
            """,
            (thread_id, checkpoint_ns),
        )
        return self._row_to_checkpoint(rows[0]) if rows else None

    async def get(
        self, thread_id: str, checkpoint_id: str, checkpoint_ns: str = ""
    ) -> Optional[Checkpoint]:
        """Get a specific checkpoint."""
        rows = await self._fetchall(
            "get",
            f"""
            SELECT {_COLUMNS} FROM checkpoints
            WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
            """,
            (thread_id, checkpoint_ns, checkpoint_id),
        )
        return self._row_to_checkpoint(rows[0]) if rows else None

    async def list(
        self,
        thread_id: Optional[str],
        *,
        checkpoint_ns: Optional[str] = None,
        before: Optional[str] = None,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> AsyncIterator[Checkpoint]:
        """Iterate over checkpoints page by page.

        The lock is only held while a page is fetched, so puts may interleave
        with a slow consumer; each page continues after the last row yielded.
        """
        order = "DESC" if descending else "ASC"
        comparison = "<" if descending else ">"
        last_key: Optional[tuple[str, str, str]] = None
        yielded = 0

        while True:
            page_size = self.page_size if limit is None else min(self.page_size, limit - yielded)
            if page_size <= 0:
                return

            clauses: list[str] = []
            params: list[Any] = []
            if thread_id is not None:
                clauses.append("thread_id = ?")
                params.append(thread_id)
            if checkpoint_ns is not None:
                clauses.append("checkpoint_ns = ?")
                params.append(checkpoint_ns)
            if before is not None:
                clauses.append("checkpoint_id < ?")
                params.append(before)
            if last_key is not None:
                clauses.append(
                    f"(checkpoint_id, thread_id, checkpoint_ns) {comparison} (?, ?, ?)"
                )
                params.extend(last_key)
            where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

            rows = await self._fetchall(
                "list",
                f"""
                SELECT {_COLUMNS} FROM checkpoints
                {where}
                ORDER BY checkpoint_id {order}, thread_id {order}, checkpoint_ns {order}
                LIMIT ?
                """,
                (*params, page_size),
            )

            for row in rows:
                yield self._row_to_checkpoint(row)

            yielded += len(rows)
            if len(rows) < page_size:
                return
            last = rows[-1]
            last_key = (last["checkpoint_id"], last["thread_id"], last["checkpoint_ns"])

    async def delete(self, thread_id: str) -> int:
        """Delete all checkpoints and pending writes for a thread."""

        async def remove(conn: aiosqlite.Connection) -> int:
            try:
                await conn.execute("DELETE FROM writes WHERE thread_id = ?", (thread_id,))
                cursor = await conn.execute(
                    "DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,)
                )
                await conn.commit()
                return cursor.rowcount
            except BaseException:
                await conn.rollback()
                raise

        count = await asyncio.shield(self._run("delete", remove))
        logger.info("thread_deleted", thread_id=thread_id, checkpoints=count)
        return count

    async def prune(self, thread_id: str, keep: int) -> int:
        """Delete all but the newest ``keep`` checkpoints in each namespace.

        Args:
            thread_id: Thread identifier
            keep: Checkpoints to retain per namespace, at least 1

        Returns:
            Number of checkpoints deleted
        """
        if keep < 1:
            raise ValueError("keep must be at least 1 so the latest checkpoint survives")

        async def remove(conn: aiosqlite.Connection) -> int:
            try:
                cursor = await conn.execute(
                    "SELECT DISTINCT checkpoint_ns FROM checkpoints WHERE thread_id = ?",
                    (thread_id,),
                )
                namespaces = [row[0] for row in await cursor.fetchall()]
                removed = 0
                for namespace in namespaces:
                    cursor = await conn.execute(
                        """
                        DELETE FROM checkpoints
                        WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id NOT IN (
                            SELECT checkpoint_id FROM checkpoints
                            WHERE thread_id = ? AND checkpoint_ns = ?
                            ORDER BY checkpoint_id DESC
                            LIMIT ?
                        )
                        """,
                        (thread_id, namespace, thread_id, namespace, keep),
                    )
                    removed += cursor.rowcount
                await conn.execute(
                    """
                    DELETE FROM writes
                    WHERE thread_id = ? AND NOT EXISTS (
                        SELECT 1 FROM checkpoints c
                        WHERE c.thread_id = writes.thread_id
                          AND c.checkpoint_ns = writes.checkpoint_ns
                          AND c.checkpoint_id = writes.checkpoint_id
                    )
                    """,
                    (thread_id,),
                )
                await conn.commit()
                return removed
            except BaseException:
                await conn.rollback()
                raise

        removed = await asyncio.shield(self._run("prune", remove))
        logger.info("thread_pruned", thread_id=thread_id, keep=keep, removed=removed)
        return removed

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
        """Store intermediate writes linked to a checkpoint."""
        rows = []
        for idx, channel, value in writes:
            value_type, value_blob = self._encode(value)
            rows.append(
                (
                    thread_id,
                    checkpoint_ns,
                    checkpoint_id,
                    task_id,
                    idx,
                    channel,
                    value_type,
                    value_blob,
                    task_path,
                )
            )
        verb = "INSERT OR REPLACE" if replace else "INSERT OR IGNORE"

        async def write(conn: aiosqlite.Connection) -> None:
            try:
                await conn.executemany(
                    f"""
                    {verb} INTO writes
                    (thread_id, checkpoint_ns, checkpoint_id, task_id, idx,
                     channel, value_type, value, task_path)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

        await asyncio.shield(self._run("put_writes", write))

    async def get_writes(
        self, thread_id: str, checkpoint_ns: str, checkpoint_id: str
    ) -> List[PendingWrite]:
        """Load the intermediate writes linked to a checkpoint."""
        rows = await self._fetchall(
            "get_writes",
            """
            SELECT task_id, channel, value_type, value FROM writes
            WHERE thread_id = ? AND checkpoint_ns = ? AND checkpoint_id = ?
            ORDER BY task_id, idx
            """,
            (thread_id, checkpoint_ns, checkpoint_id),
        )
        return [
            PendingWrite(
                task_id=row["task_id"],
                channel=row["channel"],
                value=self._decode(row["value_type"], row["value"]),
            )
            for row in rows
        ]

    async def list_threads(self) -> List[ThreadSummary]:
        """Summarize every thread that has checkpoints."""
        rows = await self._fetchall(
            "list_threads",
            """
            SELECT thread_id, COUNT(*) AS checkpoint_count,
                   MAX(checkpoint_id) AS latest_checkpoint_id
            FROM checkpoints
            GROUP BY thread_id
            ORDER BY thread_id
            """,
            (),
        )
        return [
            ThreadSummary(
                thread_id=row["thread_id"],
                checkpoint_count=row["checkpoint_count"],
                latest_checkpoint_id=row["latest_checkpoint_id"],
            )
            for row in rows
        ]

    async def close(self) -> None:
        """Close the connection; later operations raise StoreClosedError."""
        if self._closed:
            return
        self._closed = True

        async with self._lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                await conn.close()

        logger.info("checkpoint_store_closed", path=str(self.db_path))
