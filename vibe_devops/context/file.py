"""@file provider: file contents or a directory listing."""

import asyncio
from pathlib import Path

from vibe_devops.context import (
    ContextExtras,
    ContextItem,
    ContextProvider,
    ContextProviderDescription,
    ContextProviderType,
    resolve_path,
)
from vibe_devops.exceptions import ContextProviderError

MAX_FILE_SIZE = 256 * 1024


class FileContextProvider(ContextProvider):
    def __init__(self, base_dir: str | Path = "."):
        self.base_dir = Path(base_dir)

    def description(self) -> ContextProviderDescription:
        return ContextProviderDescription(
            name="file",
            display_title="File Content",
            description="Read file content to provide as context. Use @file path/to/file",
            type=ContextProviderType.FILE,
        )

    async def get_context_items(self, query: str, extras: ContextExtras) -> list[ContextItem]:
        display = query.strip()
        if not display:
            raise ContextProviderError("file", "file path is required")
        path = resolve_path(self.base_dir, display, extras.work_dir)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read, path, display)

    def _read(self, path: Path, display: str) -> list[ContextItem]:
        if not path.exists():
            raise ContextProviderError("file", f"file not found: {display}")
        if path.is_dir():
            return [self._directory_item(path, display)]

        size = path.stat().st_size
        if size > MAX_FILE_SIZE:
            raise ContextProviderError(
                "file", f"file too large ({size} bytes), max is {MAX_FILE_SIZE} bytes"
            )
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ContextProviderError("file", str(e)) from e

        lines = text.splitlines()
        content = "".join(f"{number:4d}: {line}\n" for number, line in enumerate(lines, start=1))
        return [
            ContextItem(
                name=Path(display).name,
                description=f"Contents of {display} ({len(lines)} lines)",
                content=content,
                uri=f"file://{path.resolve()}",
            )
        ]

    @staticmethod
    def _directory_item(path: Path, display: str) -> ContextItem:
        try:
            entries = sorted(path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise ContextProviderError("file", str(e)) from e

        rows = [f"Directory: {display}\n"]
        for entry in entries:
            kind = "dir " if entry.is_dir() else "file"
            try:
                size = entry.stat().st_size
            except OSError:
                size = 0
            rows.append(f"[{kind}] {entry.name:<40} {size:>10} bytes")
        return ContextItem(
            name=Path(display).name or display,
            description=f"Directory listing of {display} ({len(entries)} entries)",
            content="\n".join(rows) + "\n",
            uri=f"file://{path.resolve()}",
        )
