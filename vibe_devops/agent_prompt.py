"""Prompt builders for the agent loop and the single-shot mode."""

from vibe_devops.context import ContextItem
from vibe_devops.exceptions import ProtocolError
from vibe_devops.tools.registry import ToolDefinition

AGENT_HEADER = """You are Vibe, a CLI assistant that proposes ONE shell command for the user to run.
You MAY request safe read-only tools to inspect the workspace before proposing a command.

CRITICAL OUTPUT RULES:
- Output EXACTLY ONE JSON object. No markdown, no code fences, no extra text.
- Use {"type":"tool","thought":"user-friendly status","tool":...,"input":{...}} to call a tool.
- Use {"type":"done","command":...,"explanation":...} when you want to propose a command to run.
- Use {"type":"answer","explanation":...} when you can answer WITHOUT a command OR need to clarify user intent (e.g. 'What is be?').
- 'thought' is REQUIRED for tools. It must be a short, friendly status message for the user (e.g., 'Checking backend folder...').
- command MUST be a single-line command string (no surrounding backticks).
"""

AGENT_FOOTER = """Reminder: If the task can be solved without tools, return type=done immediately.
If you use tools, keep tool calls minimal and stop once you have enough info.
EFFICIENCY TIP: You can run complex shell commands! Instead of 3 separate calls (e.g. check dir, then ps, then netstat), use ONE run_shell call with joined commands (e.g. 'ls -F && ps aux | grep app && netstat -tulpn'). Save your steps.
"""

SINGLE_SHOT_TEMPLATE = """You are an expert AI assistant specializing in shell commands. Your task is to convert a user's request into a single, executable shell command for a {goos} environment.
- Only output the raw command.
- Do not include any explanation, markdown, backticks, or any text other than the command itself.
- If the request is ambiguous or unsafe, reply with "Error: Ambiguous or unsafe request."

User's request: "{request}"
Shell command:"""


def build_agent_prompt(
    goos: str,
    user_request: str,
    transcript: list[str],
    tools: list[ToolDefinition],
    context_items: list[ContextItem] | None = None,
) -> str:
    parts = [AGENT_HEADER, "\n", "Environment:\n", f"- GOOS: {goos.strip()}\n\n"]

    parts.append("Available tools:\n")
    for tool in tools:
        parts.append(f"- {tool.name}: {tool.description} Input schema: {tool.schema_json()}\n")
    if not tools:
        parts.append("(none)\n")
    parts.append("\n")

    if context_items:
        parts.append("Context (from @mentions):\n")
        for item in context_items:
            header = f"### {item.name}"
            if item.description:
                header += f" ({item.description})"
            parts.append(f"{header}\n{item.content.rstrip()}\n\n")

    parts.append(f"Task:\n{user_request}\n\n")

    parts.append("Transcript (most recent last):\n")
    parts.extend(f"{line}\n" for line in transcript)
    parts.append("\n")

    parts.append(AGENT_FOOTER)
    return "".join(parts)


def build_single_shot_prompt(goos: str, user_request: str) -> str:
    return SINGLE_SHOT_TEMPLATE.format(goos=goos, request=user_request)


def sanitize_ai_response(response: str) -> str:
    """Strip one pair of backticks and a leading ``shell`` tag."""
    response = response.strip()
    response = response.removeprefix("`")
    response = response.removesuffix("`")
    response = response.removeprefix("shell")
    return response.strip()


def parse_single_shot_reply(response: str) -> str:
    """Sanitized command from a single-shot reply.

    Raises:
        ProtocolError: the model refused with an ``Error:`` reply.
    """
    command = sanitize_ai_response(response)
    if command.startswith("Error:"):
        raise ProtocolError(f"AI returned an error: {command}")
    return command
