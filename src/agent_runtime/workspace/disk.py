"""Filesystem access used by the synced workspace.

Every disk touch the workspace makes goes through ``LocalDisk`` so that it can
be swapped for a spy or a failing double in tests.
"""

import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional


class LocalDisk:
    """Thin wrapper over ``os``/``pathlib`` for one workspace root."""

    def mtime_ns(self, path: Path) -> Optional[int]:
        """Modification time of a regular file, or None when it does not exist."""
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        if not path.is_file():
            return None
        return stat.st_mtime_ns

    def read_bytes(self, path: Path) -> bytes:
        return path.read_bytes()

    def write_bytes(self, path: Path, content: bytes) -> int:
        """Atomically replace ``path`` with ``content``.

        Writes to a temp file in the same directory and renames it over the
        target, so readers see either the old or the new content.

        Returns:
            The modification time of the written file in nanoseconds.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return path.stat().st_mtime_ns

    def remove(self, path: Path) -> bool:
        """Delete a file; returns False when it was already gone."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def walk(self, root: Path, start: Path) -> Iterator[str]:
        """Yield POSIX paths relative to ``root`` of files at or below ``start``."""
        if start.is_file():
            yield start.relative_to(root).as_posix()
            return
        if not start.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(start):
            dirnames.sort()
            for name in sorted(filenames):
                if name.startswith(".") and name.endswith(".tmp"):
                    continue
                yield (Path(dirpath) / name).relative_to(root).as_posix()
