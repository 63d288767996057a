"""Regex search across workspace files."""

import asyncio
import os
import re
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

DEFAULT_MAX_MATCHES = 50
HARD_MAX_MATCHES = 200
MAX_FILE_SIZE = 1_000_000
SKIP_DIRS = {".git", "node_modules", "vendor"}

GREP = ToolDefinition(
    name="grep",
    display_title="Grep Search",
    description="Search for a pattern in files. Returns matching lines with context.",
    would_like_to="search for pattern in files",
    is_currently="searching files",
    has_already="searched the files",
    read_only=True,
    input_schema={
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Pattern to search for"},
            "path": {"type": "string", "description": "File or directory to search in"},
            "maxMatches": {"type": "integer", "description": "Maximum results to return (default: 50)"},
        },
        "required": ["pattern", "path"],
    },
    default_policy=ToolPolicy.ALLOWED,
    group="filesystem",
)


def _iter_files(root: Path):
    if root.is_file():
        yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


def _is_binary(path: Path) -> bool:
    with open(path, "rb") as f:
        return b"\x00" in f.read(4096)


def _search(pattern: re.Pattern[str], root: Path, base: Path, max_matches: int) -> tuple[list[str], int]:
    found: list[str] = []
    for path in _iter_files(root):
        try:
            if path.stat().st_size > MAX_FILE_SIZE or _is_binary(path):
                continue
            rel = path.relative_to(base).as_posix() if base in path.parents else path.name
            with open(path, encoding="utf-8", errors="replace") as f:
                for line_no, line in enumerate(f, start=1):
                    if pattern.search(line):
                        found.append(f"{rel}:{line_no}: {line.strip()}")
                        if len(found) >= max_matches:
                            return found, len(found)
        except OSError:
            continue
    return found, len(found)


class GrepTool(Tool):
    """Search file contents under the workspace root."""

    def __init__(self, base_dir: Path | str = "."):
        self.base_dir = Path(base_dir)

    def definition(self) -> ToolDefinition:
        return GREP

    async def run(self, arguments: dict[str, Any], extras: ToolExtras) -> ToolResult:
        raw_pattern = str(arguments.get("pattern") or "")
        if not raw_pattern.strip():
            return ToolResult(content="pattern is required", status="failed", is_error=True)

        max_matches = coerce_int(arguments.get("maxMatches", arguments.get("maxResults")))
        if max_matches <= 0:
            max_matches = DEFAULT_MAX_MATCHES
        max_matches = min(max_matches, HARD_MAX_MATCHES)

        try:
            pattern = re.compile(raw_pattern)
        except re.error as e:
            return ToolResult(content=f"invalid regex: {e}", status="failed", is_error=True)

        try:
            root = resolve_workspace_path(self.base_dir, arguments.get("path"))
        except ValueError as e:
            return ToolResult(content=str(e), status="failed", is_error=True)
        base = self.base_dir.expanduser().resolve()

        extras.report(f"Searching for {raw_pattern!r} in {root}...", "searching")
        loop = asyncio.get_running_loop()
        found, count = await loop.run_in_executor(None, _search, pattern, root, base, max_matches)

        lines = [f"grep {raw_pattern!r} under {root}", *found]
        if count == 0:
            lines.append("(no matches)")
        return ToolResult(content="\n".join(lines).strip(), status=f"found {count} matches")
