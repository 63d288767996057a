"""@logs provider: tail a log file and flag suspicious lines."""

import asyncio
import re
from collections import Counter, deque
from dataclasses import dataclass
from enum import IntEnum
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

DEFAULT_TAIL_LINES = 100
MAX_TAIL_LINES = 1000
MAX_ISSUE_CHARS = 200

ERROR_PATTERNS = (
    re.compile(r"(?i)\b(error|err|fatal|fail|failed|failure|exception|panic|critical)\b"),
    re.compile(r"(?i)\b(warning|warn)\b"),
    re.compile(r"(?i)\b(timeout|timed out|connection refused|connection reset)\b"),
    re.compile(r"(?i)(exit\s+code|exitcode|status)\s*[=:]?\s*[1-9]\d*"),
    re.compile(r"(?i)(oom|out of memory|memory exhausted)"),
    re.compile(r"(?i)(permission denied|access denied|forbidden)"),
    re.compile(r"(?i)(not found|404|no such file)"),
)


class LogLevel(IntEnum):
    UNKNOWN = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    FATAL = 5


_LEVEL_PATTERNS = (
    (LogLevel.FATAL, re.compile(r"(?i)\b(fatal|panic|critical|emerg)\b")),
    (LogLevel.ERROR, re.compile(r"(?i)\b(error|err|fail|failed|failure|exception)\b")),
    (LogLevel.WARN, re.compile(r"(?i)\b(warn|warning)\b")),
    (LogLevel.INFO, re.compile(r"(?i)\b(info|notice)\b")),
    (LogLevel.DEBUG, re.compile(r"(?i)\b(debug|trace|verbose)\b")),
)

_ISSUE_PATTERNS = (
    (re.compile(r"(?i)(timeout|timed out)"), "Timeout detected", "performance"),
    (re.compile(r"(?i)(connection refused|connection reset|ECONNREFUSED)"), "Connection issue", "network"),
    (re.compile(r"(?i)(oom|out of memory|memory exhausted|ENOMEM)"), "Memory issue", "resource"),
    (re.compile(r"(?i)(permission denied|access denied|forbidden|EACCES)"), "Permission issue", "security"),
    (re.compile(r"(?i)(not found|404|no such file|ENOENT)"), "Not found", "filesystem"),
    (re.compile(r"(?i)(disk full|no space left|ENOSPC)"), "Disk full", "resource"),
    (re.compile(r"(?i)(segmentation fault|segfault|SIGSEGV)"), "Crash detected", "crash"),
    (re.compile(r"(?i)(killed|OOMKilled|exit code [1-9])"), "Process killed", "crash"),
)


@dataclass
class DetectedIssue:
    line: int
    content: str
    level: LogLevel
    description: str
    category: str


def detect_level(line: str) -> LogLevel:
    """Most severe level keyword found in the line."""
    for level, pattern in _LEVEL_PATTERNS:
        if pattern.search(line):
            return level
    return LogLevel.UNKNOWN


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    return text[:limit] + "..." if len(text) > limit else text


def analyze_lines(lines: list[str]) -> list[DetectedIssue]:
    """Categorised issues, at most one per line."""
    issues: list[DetectedIssue] = []
    for number, line in enumerate(lines, start=1):
        level = detect_level(line)
        for pattern, description, category in _ISSUE_PATTERNS:
            if pattern.search(line):
                issues.append(DetectedIssue(number, _truncate(line, 150), level, description, category))
                break
        else:
            if level >= LogLevel.ERROR:
                issues.append(
                    DetectedIssue(number, _truncate(line, 150), level, f"{level.name} log entry", "error")
                )
    return issues


def summarize_issues(issues: list[DetectedIssue]) -> dict[str, int]:
    return dict(Counter(issue.category for issue in issues))


def count_by_level(lines: list[str]) -> dict[LogLevel, int]:
    return dict(Counter(detect_level(line) for line in lines))


def parse_log_query(query: str) -> tuple[str, int]:
    """Split ``path[:N]`` into the path and a line count capped at 1000."""
    path, sep, suffix = query.rpartition(":")
    if sep and path:
        match = re.match(r"\d+", suffix)
        count = int(match.group(0)) if match else 0
        if count > 0:
            return path, min(count, MAX_TAIL_LINES)
    return query, DEFAULT_TAIL_LINES


def read_last_lines(path: Path, count: int) -> list[str]:
    """Last ``count`` lines of a text file.

    Raises:
        ContextProviderError: the file cannot be opened.
    """
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            return [line.rstrip("\r\n") for line in deque(handle, maxlen=count)]
    except OSError as e:
        raise ContextProviderError("logs", f"cannot open log file: {e}") from e


def find_error_lines(lines: list[str]) -> list[str]:
    issues = []
    for number, line in enumerate(lines, start=1):
        if any(pattern.search(line) for pattern in ERROR_PATTERNS):
            issues.append(_truncate(f"Line {number}: {line.strip()}", MAX_ISSUE_CHARS))
    return issues


def render_log_report(display_path: str, lines: list[str]) -> tuple[str, int]:
    """Report text and the number of detected issues."""
    issues = find_error_lines(lines)
    parts = [f"=== Log File: {display_path} (last {len(lines)} lines) ===\n\n"]
    if issues:
        parts.append("DETECTED ISSUES:\n")
        parts.extend(f"  • {issue}\n" for issue in issues)
        parts.append("\n")
    else:
        parts.append("No obvious errors detected in log snippet.\n\n")
    parts.append("=== Log Content ===\n")
    parts.extend(f"{number:4d}: {line}\n" for number, line in enumerate(lines, start=1))
    return "".join(parts), len(issues)


class LogsContextProvider(ContextProvider):
    def __init__(self, base_dir: str | Path = "."):
        self.base_dir = Path(base_dir)

    def description(self) -> ContextProviderDescription:
        return ContextProviderDescription(
            name="logs",
            display_title="Log Analysis",
            description=(
                "Read and analyze log files. Use @logs path/to/file.log "
                "or @logs path/to/file.log:100 (last N lines)"
            ),
            type=ContextProviderType.LOGS,
        )

    async def get_context_items(self, query: str, extras: ContextExtras) -> list[ContextItem]:
        query = query.strip()
        if not query:
            raise ContextProviderError(
                "logs",
                "log file path is required. Usage: @logs path/to/file.log or @logs path/to/file.log:100",
            )
        display_path, count = parse_log_query(query)
        path = resolve_path(self.base_dir, display_path, extras.work_dir)

        loop = asyncio.get_running_loop()
        lines = await loop.run_in_executor(None, read_last_lines, path, count)
        content, issue_count = render_log_report(display_path, lines)
        return [
            ContextItem(
                name=Path(display_path).name,
                description=f"Log analysis: {len(lines)} lines, {issue_count} issues detected",
                content=content,
                uri=f"file://{path}",
            )
        ]
