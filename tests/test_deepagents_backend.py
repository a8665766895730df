"""Tests for the deep agent filesystem backend."""

import base64
from pathlib import Path

import pytest

pytest.importorskip("deepagents")

from agent_runtime.workspace import SyncedWorkspace  # noqa: E402
from agent_runtime.workspace.deepagents_backend import SyncedWorkspaceBackend  # noqa: E402


@pytest.fixture
def backend() -> SyncedWorkspaceBackend:
    """Backend over a memory-only workspace."""
    workspace = SyncedWorkspace()
    workspace.configure(None)
    yield SyncedWorkspaceBackend(workspace)
    workspace.close()


def test_write_then_read(backend: SyncedWorkspaceBackend) -> None:
    """Test creating a file and reading windows of it back."""
    result = backend.write("/notes.md", "first\nsecond\nthird")

    assert result.error is None
    assert result.path == "/notes.md"

    whole = backend.read("/notes.md")
    assert whole.error is None
    assert whole.file_data["content"] == "first\nsecond\nthird"
    assert whole.file_data["encoding"] == "utf-8"
    assert (whole.start_line, whole.end_line, whole.total_lines) == (1, 3, 3)
    assert whole.next_offset is None

    window = backend.read("/notes.md", offset=1, limit=1)
    assert window.file_data["content"] == "second\n"
    assert (window.start_line, window.end_line, window.next_offset) == (2, 2, 2)


def test_write_overwrites(backend: SyncedWorkspaceBackend) -> None:
    """Test that write replaces an existing file."""
    backend.write("/notes.md", "original")

    result = backend.write("/notes.md", "replacement")

    assert result.error is None
    assert backend.workspace.read_file("/notes.md") == b"replacement"


def test_read_errors(backend: SyncedWorkspaceBackend) -> None:
    """Test reads of missing, empty, out-of-range and escaping paths."""
    backend.write("/empty.txt", "")
    backend.write("/short.txt", "one line")

    assert backend.read("/missing.txt").error == "File '/missing.txt' not found"
    empty = backend.read("/empty.txt")
    assert empty.error is None
    assert empty.file_data["content"] == ""
    assert "exceeds file length" in backend.read("/short.txt", offset=5).error
    assert backend.read("/../escape.txt").error.startswith("Error:")


def test_read_binary_file(backend: SyncedWorkspaceBackend) -> None:
    """Test that undecodable content is returned whole as base64."""
    payload = b"\x89PNG\r\n\x1a\n\xff\xfe"
    backend.workspace.write_file("/image.png", payload)

    result = backend.read("/image.png")

    assert result.file_data["encoding"] == "base64"
    assert base64.b64decode(result.file_data["content"]) == payload


def test_edit(backend: SyncedWorkspaceBackend) -> None:
    """Test single and replace-all edits."""
    backend.write("/code.py", "x = 1\ny = 1\n")

    ambiguous = backend.edit("/code.py", "= 1", "= 2")
    assert ambiguous.error is not None
    assert "appears 2 times" in ambiguous.error

    result = backend.edit("/code.py", "= 1", "= 2", replace_all=True)
    assert result.error is None
    assert result.occurrences == 2
    assert backend.workspace.read_file("/code.py") == b"x = 2\ny = 2\n"

    single = backend.edit("/code.py", "x = 2", "x = 3")
    assert single.occurrences == 1

    missing = backend.edit("/code.py", "z = 3", "z = 4")
    assert "String not found" in missing.error
    assert backend.edit("/nope.py", "a", "b").error == "Error: File '/nope.py' not found"


def test_ls(backend: SyncedWorkspaceBackend) -> None:
    """Test listing direct children with subdirectories collapsed."""
    backend.write("/readme.md", "hi")
    backend.write("/src/main.py", "print()")
    backend.write("/src/pkg/util.py", "pass")

    root = backend.ls("/").entries
    src = backend.ls("/src").entries

    assert [(item["path"], item["is_dir"]) for item in root] == [
        ("/readme.md", False),
        ("/src/", True),
    ]
    assert [item["path"] for item in src] == ["/src/main.py", "/src/pkg/"]
    assert root[0]["size"] == 2


def test_glob_and_grep(backend: SyncedWorkspaceBackend) -> None:
    """Test pattern matching and literal search."""
    backend.write("/a.py", "import os\nTODO: refactor\n")
    backend.write("/docs/b.md", "TODO: document\n")
    backend.write("/docs/c.py", "print('done')\n")

    python_files = [item["path"] for item in backend.glob("*.py").matches]
    markdown_in_docs = [item["path"] for item in backend.glob("*.md", "/docs").matches]
    matches = backend.grep("TODO").matches
    markdown_only = backend.grep("TODO", glob="*.md").matches
    capped = backend.grep("TODO", max_count=1)

    assert python_files == ["/a.py", "/docs/c.py"]
    assert markdown_in_docs == ["/docs/b.md"]
    assert matches == [
        {"path": "/a.py", "line": 2, "text": "TODO: refactor"},
        {"path": "/docs/b.md", "line": 1, "text": "TODO: document"},
    ]
    assert [m["path"] for m in markdown_only] == ["/docs/b.md"]
    assert len(capped.matches) == 1
    assert capped.truncated is True


def test_bad_paths_become_errors(backend: SyncedWorkspaceBackend) -> None:
    """Test that every file tool reports escaping paths instead of raising."""
    assert backend.ls("..").error.startswith("Error:")
    assert backend.glob("*.py", "../outside").error.startswith("Error:")
    assert backend.grep("x", "../outside").error.startswith("Error:")
    assert backend.write("/../x.txt", "x").error.startswith("Error:")
    assert backend.edit("/../x.txt", "a", "b").error.startswith("Error:")
    assert backend.delete("/../x.txt").error.startswith("Error:")


def test_delete(backend: SyncedWorkspaceBackend) -> None:
    """Test deleting a file and a directory."""
    backend.write("/keep.txt", "keep")
    backend.write("/tmp/a.txt", "a")
    backend.write("/tmp/nested/b.txt", "b")

    assert backend.delete("/tmp").path == "/tmp"
    assert backend.delete("/keep.txt").error is None
    assert backend.delete("/keep.txt").error == "Error: File '/keep.txt' not found"
    assert list(backend.workspace.list_files()) == []


def test_upload_and_download(backend: SyncedWorkspaceBackend) -> None:
    """Test batch transfers and their per-file errors."""
    uploads = backend.upload_files([("/data.bin", b"\x00\x01"), ("/../bad", b"x")])
    downloads = backend.download_files(["/data.bin", "/missing.bin", "/../bad"])

    assert [(r.path, r.error) for r in uploads] == [("/data.bin", None), ("/../bad", "invalid_path")]
    assert downloads[0].content == b"\x00\x01"
    assert downloads[1].error == "file_not_found"
    assert downloads[2].error == "invalid_path"


@pytest.mark.asyncio
async def test_async_variants(tmp_path: Path) -> None:
    """Test that async methods reach the synced directory."""
    workspace = SyncedWorkspace()
    workspace.configure(tmp_path)
    backend = SyncedWorkspaceBackend(workspace)

    await backend.awrite("/out/result.txt", "42")
    assert (tmp_path / "out" / "result.txt").read_text() == "42"

    edited = await backend.aedit("/out/result.txt", "42", "43")
    assert edited.error is None
    assert (await backend.aread("/out/result.txt")).file_data["content"] == "43"
    assert [item["path"] for item in (await backend.als("/out")).entries] == ["/out/result.txt"]
    assert [m["path"] for m in (await backend.agrep("43")).matches] == ["/out/result.txt"]
    assert [m["path"] for m in (await backend.aglob("*.txt")).matches] == ["/out/result.txt"]

    assert (await backend.adelete("/out/result.txt")).error is None
    assert not (tmp_path / "out" / "result.txt").exists()

    workspace.close()
