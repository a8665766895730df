"""Deep agent filesystem backend backed by a ``SyncedWorkspace``.

Implements the file tool surface deep agents call (``ls``, ``read``,
``write``, ``edit``, ``delete``, ``glob``, ``grep``, the batch upload and
download calls, and their async twins) and returns deepagents result types,
so the agent's file tools read and write the synced namespace instead of
graph state. Tool calls never raise: bad paths and missing files come back
as ``error`` fields.
"""

import base64
from datetime import datetime, timezone
from typing import Iterator, Optional

from deepagents.backends.protocol import (
    BackendProtocol,
    DeleteResult,
    EditResult,
    FileData,
    FileDownloadResponse,
    FileInfo,
    FileUploadResponse,
    GlobResult,
    GrepMatch,
    GrepResult,
    LsResult,
    ReadResult,
    WriteResult,
)
from deepagents.backends.utils import (
    InvalidGlobPatternError,
    compile_grep_include_glob,
    perform_string_replacement,
    slice_read_response,
)

from agent_runtime.exceptions import WorkspacePathError
from agent_runtime.workspace.synced import SyncedWorkspace, VirtualFile, normalize_path


def _decode(content: bytes) -> Optional[str]:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _modified_at(entry: VirtualFile) -> str:
    return datetime.fromtimestamp(entry.modified_ns / 1e9, tz=timezone.utc).isoformat()


def _file_info(entry: VirtualFile) -> FileInfo:
    return {
        "path": entry.path,
        "is_dir": False,
        "size": len(entry.content),
        "modified_at": _modified_at(entry),
    }


def _file_data(entry: VirtualFile) -> FileData:
    text = _decode(entry.content)
    if text is None:
        return {
            "content": base64.b64encode(entry.content).decode("ascii"),
            "encoding": "base64",
            "modified_at": _modified_at(entry),
        }
    return {"content": text, "encoding": "utf-8", "modified_at": _modified_at(entry)}


def _prefix(path: Optional[str]) -> str:
    if not path or path.strip("/") == "":
        return "/"
    return normalize_path(path)


class SyncedWorkspaceBackend(BackendProtocol):
    """Adapts a ``SyncedWorkspace`` to the deep agent backend interface."""

    def __init__(self, workspace: SyncedWorkspace) -> None:
        self.workspace = workspace

    def _under(self, prefix: str) -> Iterator[tuple[str, str]]:
        """Yield ``(path, path relative to prefix)`` for every file under ``prefix``."""
        base = "" if prefix == "/" else prefix
        for key in self.workspace.list_files(prefix):
            if key != prefix:
                yield key, key[len(base) + 1:]

    def ls(self, path: str) -> LsResult:
        """List the direct children of a directory."""
        try:
            prefix = _prefix(path)
        except WorkspacePathError as e:
            return LsResult(error=f"Error: {e}")

        base = "" if prefix == "/" else prefix
        files: list[FileInfo] = []
        dirs: dict[str, FileInfo] = {}

        for key, relative in self._under(prefix):
            head, _, rest = relative.partition("/")
            if rest:
                dir_path = f"{base}/{head}/"
                dirs.setdefault(dir_path, {"path": dir_path, "is_dir": True})
                continue
            entry = self.workspace.stat(key)
            if entry is not None:
                files.append(_file_info(entry))

        return LsResult(entries=sorted([*files, *dirs.values()], key=lambda info: info["path"]))

    def read(self, file_path: str, offset: int = 0, limit: int = 2000) -> ReadResult:
        """Read a window of lines; binary files come back whole as base64."""
        try:
            entry = self.workspace.stat(file_path)
        except WorkspacePathError as e:
            return ReadResult(error=f"Error: {e}")
        if entry is None:
            return ReadResult(error=f"File '{file_path}' not found")

        file_data = _file_data(entry)
        if file_data["encoding"] != "utf-8":
            return ReadResult(file_data=file_data)
        return slice_read_response(file_data, offset, limit)

    def write(self, file_path: str, content: str) -> WriteResult:
        """Create or overwrite a file."""
        try:
            result = self.workspace.write_file(file_path, content)
        except WorkspacePathError as e:
            return WriteResult(error=f"Error: {e}")
        return WriteResult(path=result.path)

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        """Replace ``old_string`` in a text file."""
        try:
            content = self.workspace.read_file(file_path)
        except WorkspacePathError as e:
            return EditResult(error=f"Error: {e}")
        if content is None:
            return EditResult(error=f"Error: File '{file_path}' not found")

        text = _decode(content)
        if text is None:
            return EditResult(error=f"Error: File '{file_path}' is not a text file")

        replaced = perform_string_replacement(text, old_string, new_string, replace_all)
        if isinstance(replaced, str):
            return EditResult(error=replaced)

        updated, occurrences = replaced
        result = self.workspace.write_file(file_path, updated)
        return EditResult(path=result.path, occurrences=int(occurrences))

    def delete(self, file_path: str) -> DeleteResult:
        """Delete a file, or every file under a directory path."""
        try:
            prefix = normalize_path(file_path)
            targets = [prefix] if self.workspace.stat(prefix) is not None else []
            targets += [key for key, _ in self._under(prefix)]
        except WorkspacePathError as e:
            return DeleteResult(error=f"Error: {e}")
        if not targets:
            return DeleteResult(error=f"Error: File '{file_path}' not found")

        for key in targets:
            self.workspace.delete_file(key)
        return DeleteResult(path=prefix)

    def glob(self, pattern: str, path: Optional[str] = None) -> GlobResult:
        """Find files under ``path`` matching ``pattern``.

        A pattern without ``/`` matches the file name at any depth; one with
        ``/`` matches the path relative to ``path``.
        """
        try:
            prefix = _prefix(path)
            matches = compile_grep_include_glob(pattern)
        except (WorkspacePathError, InvalidGlobPatternError) as e:
            return GlobResult(error=f"Error: {e}")

        found: list[FileInfo] = []
        for key, relative in self._under(prefix):
            if not matches(relative):
                continue
            entry = self.workspace.stat(key)
            if entry is not None:
                found.append(_file_info(entry))
        return GlobResult(matches=sorted(found, key=lambda info: info["path"]))

    def grep(
        self,
        pattern: str,
        path: Optional[str] = None,
        glob: Optional[str] = None,
        *,
        max_count: Optional[int] = None,
    ) -> GrepResult:
        """Literal substring search over text files."""
        try:
            prefix = _prefix(path)
            include = compile_grep_include_glob(glob) if glob else None
        except (WorkspacePathError, InvalidGlobPatternError) as e:
            return GrepResult(error=f"Error: {e}")

        found: list[GrepMatch] = []
        for key, relative in sorted(self._under(prefix)):
            if include is not None and not include(relative):
                continue
            content = self.workspace.read_file(key)
            text = _decode(content) if content is not None else None
            if text is None:
                continue
            for number, line in enumerate(text.split("\n"), start=1):
                if pattern not in line:
                    continue
                if max_count is not None and len(found) >= max_count:
                    return GrepResult(matches=found, truncated=True)
                found.append({"path": key, "line": number, "text": line})
        return GrepResult(matches=found)

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        responses = []
        for path, content in files:
            try:
                self.workspace.write_file(path, content)
            except WorkspacePathError:
                responses.append(FileUploadResponse(path=path, error="invalid_path"))
            else:
                responses.append(FileUploadResponse(path=path))
        return responses

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        responses = []
        for path in paths:
            try:
                content = self.workspace.read_file(path)
            except WorkspacePathError:
                responses.append(FileDownloadResponse(path=path, error="invalid_path"))
                continue
            if content is None:
                responses.append(FileDownloadResponse(path=path, error="file_not_found"))
            else:
                responses.append(FileDownloadResponse(path=path, content=content))
        return responses

    async def als(self, path: str) -> LsResult:
        return self.ls(path)

    async def aread(self, file_path: str, offset: int = 0, limit: int = 2000) -> ReadResult:
        return self.read(file_path, offset, limit)

    async def awrite(self, file_path: str, content: str) -> WriteResult:
        return self.write(file_path, content)

    async def aedit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        return self.edit(file_path, old_string, new_string, replace_all)

    async def adelete(self, file_path: str) -> DeleteResult:
        return self.delete(file_path)

    async def aglob(self, pattern: str, path: Optional[str] = None) -> GlobResult:
        return self.glob(pattern, path)

    async def agrep(
        self,
        pattern: str,
        path: Optional[str] = None,
        glob: Optional[str] = None,
        *,
        max_count: Optional[int] = None,
    ) -> GrepResult:
        return self.grep(pattern, path, glob, max_count=max_count)
