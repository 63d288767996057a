import pytest

from vibe_devops.tools import build_default_registry
from vibe_devops.tools.grep import GrepTool
from vibe_devops.tools.list_dir import ListDirTool
from vibe_devops.tools.read_file import ReadFileTool
from vibe_devops.tools.registry import ToolExtras, resolve_workspace_path


@pytest.mark.asyncio
async def test_read_file_numbers_lines(tmp_path):
    (tmp_path / "notes.txt").write_text("alpha\nbeta\ngamma\n", encoding="utf-8")
    result = await ReadFileTool(tmp_path).run({"path": "notes.txt", "startLine": 2}, ToolExtras())

    assert not result.is_error
    lines = result.content.splitlines()
    assert lines[0].endswith("notes.txt (lines 2-201)")
    assert lines[1] == "     2: beta"
    assert lines[2] == "     3: gamma"
    assert len(lines) == 3


@pytest.mark.asyncio
async def test_read_file_truncates_by_bytes(tmp_path):
    (tmp_path / "big.txt").write_text("x" * 50 + "\n" + "y" * 50 + "\n", encoding="utf-8")
    result = await ReadFileTool(tmp_path).run({"path": "big.txt", "maxBytes": 60}, ToolExtras())

    assert result.content.endswith("... (truncated)")
    assert "yyyy" not in result.content


@pytest.mark.asyncio
async def test_read_file_rejects_escape_and_missing(tmp_path):
    tool = ReadFileTool(tmp_path)
    escaped = await tool.run({"path": "../outside.txt"}, ToolExtras())
    assert escaped.is_error
    assert "escapes workspace root" in escaped.content

    missing = await tool.run({"path": "nope.txt"}, ToolExtras())
    assert missing.is_error
    assert missing.content == "Not a file: nope.txt"


@pytest.mark.asyncio
async def test_list_dir_format(tmp_path):
    (tmp_path / "b.txt").write_text("", encoding="utf-8")
    (tmp_path / "a_dir").mkdir()
    result = await ListDirTool(tmp_path).run({"path": "."}, ToolExtras())

    lines = result.content.splitlines()
    assert lines[0] == str(tmp_path.resolve())
    assert lines[1:] == ["- [dir] a_dir", "- [file] b.txt"]


@pytest.mark.asyncio
async def test_list_dir_limits_entries(tmp_path):
    for index in range(5):
        (tmp_path / f"f{index}.txt").write_text("", encoding="utf-8")
    result = await ListDirTool(tmp_path).run({"path": ".", "maxEntries": 2}, ToolExtras())
    assert len(result.content.splitlines()) == 3


@pytest.mark.asyncio
async def test_grep_matches_and_skips(tmp_path):
    (tmp_path / "app.log").write_text("ok\nERROR failed to bind\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.js").write_text("ERROR in dep\n", encoding="utf-8")
    (tmp_path / "blob.bin").write_bytes(b"ERROR\x00\x01")

    result = await GrepTool(tmp_path).run({"pattern": "ERROR", "path": "."}, ToolExtras())

    lines = result.content.splitlines()
    assert lines[0].startswith("grep 'ERROR' under ")
    assert lines[1:] == ["app.log:2: ERROR failed to bind"]
    assert result.status == "found 1 matches"


@pytest.mark.asyncio
async def test_grep_no_matches_and_bad_regex(tmp_path):
    (tmp_path / "a.txt").write_text("hello\n", encoding="utf-8")
    tool = GrepTool(tmp_path)

    empty = await tool.run({"pattern": "absent", "path": "."}, ToolExtras())
    assert empty.content.endswith("(no matches)")

    bad = await tool.run({"pattern": "(", "path": "."}, ToolExtras())
    assert bad.is_error
    assert bad.content.startswith("invalid regex:")


def test_resolve_workspace_path_allows_root_and_children(tmp_path):
    assert resolve_workspace_path(tmp_path, "") == tmp_path.resolve()
    assert resolve_workspace_path(tmp_path, "sub/file") == (tmp_path / "sub" / "file").resolve()
    with pytest.raises(ValueError):
        resolve_workspace_path(tmp_path, "/etc/passwd")


def test_default_registry_order():
    names = [tool.name for tool in build_default_registry(".").list()]
    assert names == ["read_file", "list_dir", "grep", "run_shell"]
    assert "run_shell" not in [t.name for t in build_default_registry(".", include_shell=False).list()]
