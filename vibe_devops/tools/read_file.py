"""Read tool for file contents with line numbers."""

import asyncio
from pathlib import Path
from typing import Any

from vibe_devops.logging import get_logger
from vibe_devops.tools.registry import (
    Tool,
    ToolDefinition,
    ToolExtras,
    ToolPolicy,
    ToolResult,
    coerce_int,
    resolve_workspace_path,
)

log = get_logger(__name__)

DEFAULT_MAX_BYTES = 64 * 1024
HARD_MAX_BYTES = 256 * 1024
DEFAULT_WINDOW = 200
MAX_SPAN = 400

READ_FILE = ToolDefinition(
    name="read_file",
    display_title="Read File",
    description="Read a text file, optionally by line range. Returns file content with line numbers.",
    would_like_to="read the following file",
    is_currently="reading file",
    has_already="read the file",
    read_only=True,
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the file to read"},
            "startLine": {"type": "integer", "description": "Starting line number (1-based, optional)"},
            "endLine": {"type": "integer", "description": "Ending line number (inclusive, optional)"},
            "maxBytes": {"type": "integer", "description": "Maximum bytes to read (default: 65536)"},
        },
        "required": ["path"],
    },
    default_policy=ToolPolicy.ALLOWED,
    group="filesystem",
)


def _line_window(start: int, end: int) -> tuple[int, int]:
    start = max(0, start) or 1
    end = max(0, end)
    if end == 0:
        end = start + DEFAULT_WINDOW - 1
    if end < start:
        end = start
    if end - start > MAX_SPAN:
        end = start + MAX_SPAN
    return start, end


def _read_window(path: Path, start: int, end: int, max_bytes: int) -> str:
    parts = [f"{path} (lines {start}-{end})"]
    bytes_out = 0
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_no, line in enumerate(f, start=1):
            if line_no < start:
                continue
            if line_no > end:
                break
            text = line.rstrip("\r\n")
            chunk = f"{line_no:6d}: {text}"
            bytes_out += len(chunk) + 1
            if bytes_out > max_bytes:
                parts.append("... (truncated)")
                break
            parts.append(chunk)
    return "\n".join(parts).strip()


class ReadFileTool(Tool):
    """Read file contents under the workspace root."""

    def __init__(self, base_dir: Path | str = "."):
        self.base_dir = Path(base_dir)

    def definition(self) -> ToolDefinition:
        return READ_FILE

    async def run(self, arguments: dict[str, Any], extras: ToolExtras) -> ToolResult:
        max_bytes = coerce_int(arguments.get("maxBytes"))
        if max_bytes <= 0:
            max_bytes = DEFAULT_MAX_BYTES
        max_bytes = min(max_bytes, HARD_MAX_BYTES)
        start, end = _line_window(
            coerce_int(arguments.get("startLine")),
            coerce_int(arguments.get("endLine")),
        )

        try:
            file_path = resolve_workspace_path(self.base_dir, arguments.get("path"))
        except ValueError as e:
            return ToolResult(content=str(e), status="failed", is_error=True)

        if not file_path.is_file():
            return ToolResult(content=f"Not a file: {arguments.get('path')}", status="failed", is_error=True)

        extras.report(f"Reading {file_path}...", "reading")
        try:
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(None, _read_window, file_path, start, end, max_bytes)
        except OSError as e:
            log.error("Read failed", path=str(file_path), error=str(e))
            return ToolResult(content=str(e), status="failed", is_error=True)

        return ToolResult(content=content, status="completed")
