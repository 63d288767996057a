"""Tools package for Vibe DevOps."""

from pathlib import Path

from vibe_devops.executor import LocalExecutor
from vibe_devops.tools.grep import GrepTool
from vibe_devops.tools.list_dir import ListDirTool
from vibe_devops.tools.read_file import ReadFileTool
from vibe_devops.tools.registry import (
    PartialOutput,
    Tool,
    ToolDefinition,
    ToolExtras,
    ToolPolicy,
    ToolRegistry,
    ToolResult,
)
from vibe_devops.tools.shell import RunShellTool


def build_default_registry(
    base_dir: Path | str = ".",
    include_shell: bool = True,
    executor: LocalExecutor | None = None,
) -> ToolRegistry:
    """Registry with the workspace tools and, optionally, run_shell."""
    registry = ToolRegistry()
    registry.register(ReadFileTool(base_dir))
    registry.register(ListDirTool(base_dir))
    registry.register(GrepTool(base_dir))
    if include_shell:
        registry.register(RunShellTool(executor=executor, work_dir=str(base_dir)))
    return registry


__all__ = [
    "PartialOutput",
    "Tool",
    "ToolDefinition",
    "ToolExtras",
    "ToolPolicy",
    "ToolRegistry",
    "ToolResult",
    "ReadFileTool",
    "ListDirTool",
    "GrepTool",
    "RunShellTool",
    "build_default_registry",
]
