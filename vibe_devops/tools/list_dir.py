"""Directory listing tool."""

from pathlib import Path
from typing import Any

from vibe_devops.tools.registry import (
    Tool,
    ToolDefinition,
    ToolExtras,
    ToolPolicy,
    ToolResult,
    coerce_int,
    resolve_workspace_path,
)

DEFAULT_MAX_ENTRIES = 200
HARD_MAX_ENTRIES = 500

LIST_DIR = ToolDefinition(
    name="list_dir",
    display_title="List Directory",
    description="List entries in a directory. Returns file and folder names.",
    would_like_to="list the contents of directory",
    is_currently="listing directory",
    has_already="listed the directory",
    read_only=True,
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the directory to list"},
            "maxEntries": {"type": "integer", "description": "Maximum entries to return (default: 200)"},
        },
        "required": ["path"],
    },
    default_policy=ToolPolicy.ALLOWED,
    group="filesystem",
)


class ListDirTool(Tool):
    """List a directory under the workspace root."""

    def __init__(self, base_dir: Path | str = "."):
        self.base_dir = Path(base_dir)

    def definition(self) -> ToolDefinition:
        return LIST_DIR

    async def run(self, arguments: dict[str, Any], extras: ToolExtras) -> ToolResult:
        max_entries = coerce_int(arguments.get("maxEntries"))
        if max_entries <= 0:
            max_entries = DEFAULT_MAX_ENTRIES
        max_entries = min(max_entries, HARD_MAX_ENTRIES)

        try:
            dir_path = resolve_workspace_path(self.base_dir, arguments.get("path"))
        except ValueError as e:
            return ToolResult(content=str(e), status="failed", is_error=True)

        extras.report(f"Listing {dir_path}...", "reading")
        try:
            entries = sorted(dir_path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            return ToolResult(content=str(e), status="failed", is_error=True)

        lines = [str(dir_path)]
        for entry in entries[:max_entries]:
            kind = "dir" if entry.is_dir() else "file"
            lines.append(f"- [{kind}] {entry.name}")
        return ToolResult(content="\n".join(lines).strip(), status="completed")
