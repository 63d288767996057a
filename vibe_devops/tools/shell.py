"""Shell tool for executing commands."""

from typing import Any

from vibe_devops.exceptions import ExecError
from vibe_devops.executor import ExecSpec, LocalExecutor
from vibe_devops.logging import get_logger
from vibe_devops.safety import DangerLevel, check_command, has_chain_markers
from vibe_devops.tools.registry import (
    Tool,
    ToolDefinition,
    ToolExtras,
    ToolPolicy,
    ToolResult,
)

log = get_logger(__name__)

MAX_OUTPUT_CHARS = 4000
TRUNCATED_SUFFIX = "\n...(truncated)"

# Inspection commands the model may run without asking.
ALLOWED_PREFIXES = (
    "ps",
    "netstat",
    "ss",
    "curl",
    "df",
    "free",
    "uptime",
    "id",
    "whoami",
    "date",
    "tasklist",
    "get-process",
    "get-service",
)

RUN_SHELL = ToolDefinition(
    name="run_shell",
    display_title="Run Shell Command",
    description=(
        "Execute a shell command to inspect system state (e.g. check processes, ports, "
        "services). Use this only for inspection, never to modify the system."
    ),
    would_like_to="run shell command",
    is_currently="running shell command",
    has_already="ran shell command",
    read_only=False,
    input_schema={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
        },
        "required": ["command"],
    },
    default_policy=ToolPolicy.WITH_PERMISSION,
    group="system",
)


def is_allowed_inspection(command: str) -> bool:
    """True for a single allow-listed inspection command the classifier rates safe."""
    lowered = command.strip().lower()
    if not lowered or has_chain_markers(lowered):
        return False
    if check_command(command).level != DangerLevel.SAFE:
        return False
    return any(lowered == prefix or lowered.startswith(prefix + " ") for prefix in ALLOWED_PREFIXES)


def truncate_output(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATED_SUFFIX


class RunShellTool(Tool):
    """Execute shell commands through the local executor."""

    timeout_seconds = 60.0

    def __init__(self, executor: LocalExecutor | None = None, command_timeout: float = 30.0, work_dir: str | None = None):
        self.executor = executor or LocalExecutor()
        self.command_timeout = command_timeout
        self.work_dir = work_dir

    def definition(self) -> ToolDefinition:
        return RUN_SHELL

    def evaluate_policy(self, arguments: dict[str, Any]) -> ToolPolicy:
        command = str(arguments.get("command") or "")
        if check_command(command).level == DangerLevel.BLOCKED:
            return ToolPolicy.DENIED
        if is_allowed_inspection(command):
            return ToolPolicy.ALLOWED
        return ToolPolicy.WITH_PERMISSION

    async def run(self, arguments: dict[str, Any], extras: ToolExtras) -> ToolResult:
        command = str(arguments.get("command") or "").strip()
        if not command:
            return ToolResult(content="command is required", status="failed", is_error=True)

        extras.report(f"Running: {command}", "running")
        spec = ExecSpec(
            command=command,
            timeout=self.command_timeout,
            cwd=extras.work_dir or self.work_dir,
        )
        try:
            result = await self.executor.run(spec)
        except ExecError as e:
            return ToolResult(content=f"Error: {e}", status="failed", is_error=True)

        output = truncate_output(result.stdout + result.stderr)
        if result.exit_code != 0:
            log.debug("Shell tool command failed", command=command, exit_code=result.exit_code)
            return ToolResult(
                content=f"Exit Code: {result.exit_code}\nOutput:\n{output}",
                status="failed",
                is_error=True,
            )
        return ToolResult(content=output, status="completed")
