"""In-memory virtual file namespace mirrored to an optional directory.

Conflict policy: last writer wins by wall-clock modification time. An
in-memory write is stamped with ``max(now, mtime of the file it produced)``,
so it is always newer than any disk state seen before the write returned.
A disk mtime that differs from the one the workspace last produced or
observed marks an external change; the disk copy wins only if its mtime is
strictly newer than the in-memory stamp, otherwise the in-memory content is
written back. Both outcomes are logged as ``sync_conflict_resolved`` when the
in-memory side had unflushed changes or lost, and so is a write that
overwrites an external change not yet reconciled.

A delete whose disk removal fails leaves a pending deletion: the path stays
gone from the namespace and the removal is retried on access, reconcile and
flush.

Two workspaces must not be configured with the same root at the same time.
"""

import time
import warnings
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Union

import structlog
from pydantic import BaseModel, Field

from agent_runtime.exceptions import (
    BackendClosedError,
    BackendNotConfiguredError,
    BackendStateError,
    SyncWarning,
    WorkspacePathError,
)
from agent_runtime.workspace.disk import LocalDisk

logger = structlog.get_logger()


class WorkspaceMode(str, Enum):
    """Lifecycle states of a synced workspace."""

    UNCONFIGURED = "unconfigured"
    MEMORY = "memory"
    DISK = "disk"
    CLOSED = "closed"


class VirtualFile(BaseModel):
    """A file in the virtual namespace with its sync bookkeeping."""

    path: str = Field(..., description="Canonical namespace path")
    content: bytes = Field(..., description="File content")
    modified_ns: int = Field(..., description="Wall-clock time of the last accepted write")
    disk_mtime_ns: Optional[int] = Field(
        None, description="Disk mtime last produced or observed"
    )
    dirty: bool = Field(False, description="In-memory write not yet on disk")


class WriteResult(BaseModel):
    """Outcome of a workspace write."""

    path: str
    synced: bool = Field(False, description="Content reached the disk")
    warning: Optional[str] = Field(None, description="Why write-through failed")


def _split(path: str) -> list[str]:
    parts: list[str] = []
    for part in path.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise WorkspacePathError(f"Path escapes the workspace: {path!r}")
            parts.pop()
        else:
            parts.append(part)
    return parts


def normalize_path(path: str) -> str:
    """Canonicalize a namespace path to ``/a/b`` form.

    Raises:
        WorkspacePathError: If the path is empty or climbs above the root.
    """
    parts = _split(path)
    if not parts:
        raise WorkspacePathError(f"Not a file path: {path!r}")
    return "/" + "/".join(parts)


class SyncedWorkspace:
    """Virtual file namespace with optional write-through to a directory."""

    def __init__(self, disk: Optional[LocalDisk] = None) -> None:
        self.disk = disk or LocalDisk()
        self._files: dict[str, VirtualFile] = {}
        self._deleted: set[str] = set()
        self._mode = WorkspaceMode.UNCONFIGURED
        self._root: Optional[Path] = None

    @property
    def mode(self) -> WorkspaceMode:
        return self._mode

    @property
    def root(self) -> Optional[Path]:
        return self._root

    def configure(self, root: Union[str, Path, None]) -> None:
        """Select memory-only mode (``None``) or disk-synced mode."""
        if self._mode is WorkspaceMode.CLOSED:
            raise BackendClosedError("Workspace is closed")
        if self._mode is not WorkspaceMode.UNCONFIGURED:
            raise BackendStateError(f"Workspace is already configured ({self._mode.value})")

        if root is None:
            self._mode = WorkspaceMode.MEMORY
        else:
            self._root = Path(root).expanduser()
            self._mode = WorkspaceMode.DISK

        logger.info(
            "workspace_configured",
            mode=self._mode.value,
            root=str(self._root) if self._root else None,
        )

    def _require_open(self) -> None:
        if self._mode is WorkspaceMode.CLOSED:
            raise BackendClosedError("Workspace is closed")
        if self._mode is WorkspaceMode.UNCONFIGURED:
            raise BackendNotConfiguredError("Workspace has not been configured")

    def _disk_root(self) -> Path:
        if self._root is None:
            raise BackendStateError("Workspace is not synced to a directory")
        return self._root

    def _disk_path(self, key: str) -> Path:
        return self._disk_root().joinpath(*key.lstrip("/").split("/"))

    def read_file(self, path: str) -> Optional[bytes]:
        """Return file content, loading it from disk on first access."""
        self._require_open()
        key = normalize_path(path)
        if self._mode is WorkspaceMode.DISK:
            self._sync_path(key)
        entry = self._files.get(key)
        return entry.content if entry is not None else None

    def stat(self, path: str) -> Optional[VirtualFile]:
        """Return a copy of the file's bookkeeping, or None if it does not exist."""
        self._require_open()
        key = normalize_path(path)
        if self._mode is WorkspaceMode.DISK:
            self._sync_path(key)
        entry = self._files.get(key)
        return entry.model_copy() if entry is not None else None

    def write_file(self, path: str, content: Union[bytes, str]) -> WriteResult:
        """Store content in memory and write it through to disk when synced.

        A disk failure never undoes the in-memory write: it emits a
        ``SyncWarning``, leaves the entry dirty for the next flush, and reports
        ``synced=False``.
        """
        self._require_open()
        key = normalize_path(path)
        if isinstance(content, str):
            content = content.encode("utf-8")

        now = time.time_ns()
        entry = self._files.get(key)
        seen_mtime = entry.disk_mtime_ns if entry is not None else None
        if entry is None:
            entry = VirtualFile(path=key, content=content, modified_ns=now)
            self._files[key] = entry
        else:
            entry.content = content
            entry.modified_ns = max(now, entry.modified_ns)

        if self._mode is WorkspaceMode.MEMORY:
            return WriteResult(path=key)

        if key in self._deleted:
            self._deleted.discard(key)
        else:
            self._log_overwrite(key, seen_mtime)
        entry.dirty = True
        warning = self._flush_entry(entry)
        return WriteResult(path=key, synced=warning is None, warning=warning)

    def delete_file(self, path: str) -> bool:
        """Remove a file from memory and disk.

        If the disk removal fails the file still disappears from the
        namespace; the removal stays pending and is retried later.

        Returns:
            True if the file existed on either side; deleting a missing file
            is a no-op.
        """
        self._require_open()
        key = normalize_path(path)
        existed = self._files.pop(key, None) is not None

        if self._mode is WorkspaceMode.DISK:
            existed = existed or key in self._deleted
            existed = bool(self._remove(key)) or existed

        if existed:
            logger.debug("workspace_file_deleted", path=key)
        return existed

    def _remove(self, key: str) -> Optional[bool]:
        """Remove a file from disk. Returns None and keeps it pending on failure."""
        try:
            removed = self.disk.remove(self._disk_path(key))
        except OSError as e:
            self._deleted.add(key)
            self._warn(f"Could not delete {key} from disk: {e}", key, e)
            return None
        self._deleted.discard(key)
        return removed

    def _log_overwrite(self, key: str, seen_mtime: Optional[int]) -> None:
        try:
            disk_mtime = self.disk.mtime_ns(self._disk_path(key))
        except OSError:
            # the write-through that follows reports the disk error
            return
        if disk_mtime is not None and disk_mtime != seen_mtime:
            logger.warning("sync_conflict_resolved", path=key, winner="memory")

    def list_files(self, prefix: str = "/") -> Iterator[str]:
        """Lazily yield every known path under ``prefix``, without duplicates.

        In-memory paths come first in sorted order, then paths found only on
        disk in walk order.
        """
        self._require_open()
        return self._iter_files(_split(prefix))

    def _iter_files(self, prefix_parts: list[str]) -> Iterator[str]:
        prefix = "/" + "/".join(prefix_parts)

        def under(key: str) -> bool:
            return not prefix_parts or key == prefix or key.startswith(prefix + "/")

        seen: set[str] = set()
        for key in sorted(self._files):
            if under(key):
                seen.add(key)
                yield key

        if self._mode is WorkspaceMode.DISK:
            root = self._disk_root()
            for relative in self.disk.walk(root, root.joinpath(*prefix_parts)):
                key = "/" + relative
                if key not in seen and key not in self._deleted:
                    seen.add(key)
                    yield key

    def reconcile(self) -> int:
        """Pull external disk changes into memory and retry pending disk work.

        Returns:
            Number of entries that changed.
        """
        self._require_open()
        if self._mode is WorkspaceMode.MEMORY:
            return 0

        changed = sum(1 for key in list(self._files) if self._sync_path(key))
        changed += sum(1 for key in list(self._deleted) if self._remove(key) is not None)
        if changed:
            logger.info("workspace_reconciled", changed=changed)
        return changed

    def flush(self) -> int:
        """Write every dirty entry to disk and retry pending deletions.

        Returns:
            Number of writes and deletions still pending afterwards.
        """
        self._require_open()
        return self._flush_dirty()

    def _flush_dirty(self) -> int:
        if self._mode is not WorkspaceMode.DISK:
            return 0
        pending = sum(
            1
            for entry in list(self._files.values())
            if entry.dirty and self._flush_entry(entry) is not None
        )
        return pending + sum(1 for key in list(self._deleted) if self._remove(key) is None)

    def close(self) -> None:
        """Flush pending writes and release the namespace. Safe to call twice."""
        if self._mode is WorkspaceMode.CLOSED:
            return
        if self._mode is WorkspaceMode.DISK:
            self._flush_dirty()
        self._files.clear()
        self._deleted.clear()
        self._mode = WorkspaceMode.CLOSED
        logger.info("workspace_closed", root=str(self._root) if self._root else None)

    def _warn(self, message: str, key: str, error: Exception) -> None:
        logger.warning("workspace_sync_failed", path=key, error=str(error))
        warnings.warn(message, SyncWarning, stacklevel=3)

    def _flush_entry(self, entry: VirtualFile) -> Optional[str]:
        """Write one entry through, retrying once. Returns a warning on failure."""
        try:
            mtime = self._write_through(self._disk_path(entry.path), entry.content)
        except OSError as e:
            message = f"Could not write {entry.path} to disk: {e}"
            self._warn(message, entry.path, e)
            return message

        entry.disk_mtime_ns = mtime
        entry.modified_ns = max(entry.modified_ns, mtime)
        entry.dirty = False
        return None

    def _write_through(self, target: Path, content: bytes) -> int:
        try:
            return self.disk.write_bytes(target, content)
        except OSError:
            return self.disk.write_bytes(target, content)

    def _load(self, key: str, target: Path) -> Optional[bytes]:
        try:
            return self.disk.read_bytes(target)
        except FileNotFoundError:
            return None
        except OSError as e:
            self._warn(f"Could not read {key} from disk: {e}", key, e)
            return None

    def _sync_path(self, key: str) -> bool:
        """Reconcile one path between memory and disk. Returns True on change."""
        if key in self._deleted:
            self._remove(key)
            return False

        target = self._disk_path(key)
        try:
            disk_mtime = self.disk.mtime_ns(target)
        except OSError as e:
            self._warn(f"Could not stat {key}: {e}", key, e)
            return False

        entry = self._files.get(key)

        if entry is None:
            if disk_mtime is None:
                return False
            content = self._load(key, target)
            if content is None:
                return False
            self._files[key] = VirtualFile(
                path=key, content=content, modified_ns=disk_mtime, disk_mtime_ns=disk_mtime
            )
            logger.debug("workspace_file_loaded", path=key)
            return True

        if disk_mtime is None:
            if entry.dirty:
                return self._flush_entry(entry) is None
            del self._files[key]
            logger.info("workspace_external_delete", path=key)
            return True

        if disk_mtime == entry.disk_mtime_ns:
            if entry.dirty:
                return self._flush_entry(entry) is None
            return False

        if disk_mtime > entry.modified_ns:
            content = self._load(key, target)
            if content is None:
                return False
            if entry.dirty:
                logger.warning("sync_conflict_resolved", path=key, winner="disk")
            else:
                logger.debug("workspace_external_change", path=key)
            entry.content = content
            entry.modified_ns = disk_mtime
            entry.disk_mtime_ns = disk_mtime
            entry.dirty = False
            return True

        logger.warning("sync_conflict_resolved", path=key, winner="memory")
        entry.dirty = True
        self._flush_entry(entry)
        return True
