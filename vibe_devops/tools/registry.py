"""Tool registry and base tool class."""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel

from vibe_devops.exceptions import (
    ToolBlockedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from vibe_devops.locks import ReadWriteLock
from vibe_devops.logging import get_logger

log = get_logger(__name__)


class ToolPolicy(str, Enum):
    """Permission tier for a tool invocation."""

    ALLOWED = "allowed"
    WITH_PERMISSION = "with_permission"
    DENIED = "denied"


@dataclass(frozen=True)
class ToolDefinition:
    """Static description of a tool, used for prompting and policy."""

    name: str
    description: str
    input_schema: dict[str, Any]
    display_title: str = ""
    would_like_to: str = ""
    is_currently: str = ""
    has_already: str = ""
    read_only: bool = True
    default_policy: ToolPolicy = ToolPolicy.ALLOWED
    group: str = ""

    def schema_json(self) -> str:
        return json.dumps(self.input_schema, separators=(",", ":"))


class ToolResult(BaseModel):
    """Result from tool execution."""

    content: str = ""
    status: str = "completed"
    is_error: bool = False


@dataclass
class PartialOutput:
    """Progress update emitted while a tool runs."""

    content: str
    status: str = ""


@dataclass
class ToolExtras:
    """Per-invocation callbacks handed to a tool."""

    on_confirm: Callable[[str], bool] | None = None
    on_partial_output: Callable[[PartialOutput], None] | None = None
    work_dir: str = ""

    def report(self, content: str, status: str) -> None:
        if self.on_partial_output is not None:
            self.on_partial_output(PartialOutput(content=content, status=status))


class Tool(ABC):
    """Base class for all tools."""

    timeout_seconds: float = 30.0

    @abstractmethod
    def definition(self) -> ToolDefinition:
        pass

    def evaluate_policy(self, arguments: dict[str, Any]) -> ToolPolicy:
        """Read-only tools are always allowed; others use their default."""
        definition = self.definition()
        if definition.read_only:
            return ToolPolicy.ALLOWED
        return definition.default_policy

    @abstractmethod
    async def run(self, arguments: dict[str, Any], extras: ToolExtras) -> ToolResult:
        """Execute the tool.

        Args:
            arguments: Decoded JSON input from the model
            extras: Confirmation / progress callbacks

        Returns:
            ToolResult with content and error flag
        """
        pass

    @property
    def name(self) -> str:
        return self.definition().name


def resolve_workspace_path(base_dir: Path | str, user_path: str | None) -> Path:
    """Resolve a user path under base_dir, rejecting escapes."""
    raw = str(user_path or "").strip() or "."
    base = Path(base_dir).expanduser().resolve()
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    resolved = candidate.resolve()
    if resolved != base and base not in resolved.parents:
        raise ValueError("path escapes workspace root")
    return resolved


def coerce_int(value: Any, default: int = 0) -> int:
    """Best-effort int conversion for model-supplied numbers."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._lock = ReadWriteLock()

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register

        Raises:
            ValueError if the name is empty or already registered
        """
        name = tool.definition().name
        if not name:
            raise ValueError("Tool must have a name")

        with self._lock.write():
            if name in self._tools:
                raise ValueError(f"tool already registered: {name}")
            self._tools[name] = tool
        log.debug("Registering tool", tool=name)

    def unregister(self, name: str) -> None:
        with self._lock.write():
            self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        with self._lock.read():
            return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        with self._lock.read():
            tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def list(self) -> list[Tool]:
        """All tools, in registration order."""
        with self._lock.read():
            return list(self._tools.values())

    def list_by_group(self, group: str) -> list[Tool]:
        with self._lock.read():
            return [t for t in self._tools.values() if t.definition().group == group]

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self.list()]

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._tools)

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any] | None,
        extras: ToolExtras | None = None,
    ) -> ToolResult:
        """Execute a tool by name after applying its policy.

        Raises:
            ToolNotFoundError if tool not found
            ToolBlockedError if the policy denies the input
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        arguments = dict(arguments or {})
        extras = extras or ToolExtras()

        policy = tool.evaluate_policy(arguments)
        if policy == ToolPolicy.DENIED:
            raise ToolBlockedError(name, "denied by tool policy")
        if policy == ToolPolicy.WITH_PERMISSION:
            summary = str(arguments.get("command") or json.dumps(arguments, ensure_ascii=False))
            question = f"Execute command: {summary} ?"
            if extras.on_confirm is None:
                log.warning("Tool requires approval but no callback is configured", tool=name)
                return ToolResult(
                    content=f"'{summary}' requires user approval, which is not available here",
                    status="rejected",
                    is_error=True,
                )
            if not extras.on_confirm(question):
                return ToolResult(
                    content=f"Command '{summary}' was rejected by user",
                    status="rejected",
                    is_error=True,
                )

        timeout_seconds = max(1.0, float(tool.timeout_seconds or 30.0))
        try:
            log.info("Executing tool", tool=name, args=arguments)
            result = await asyncio.wait_for(tool.run(arguments, extras), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {label}s")
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

        if not isinstance(result, ToolResult):
            raise ToolExecutionError(name, "Tool returned invalid result payload")
        log.info("Tool executed", tool=name, is_error=result.is_error)
        return result
