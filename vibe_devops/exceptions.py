"""Custom exceptions for Vibe DevOps."""


class VibeError(Exception):
    """Base exception for Vibe DevOps."""

    pass


class ConfigurationError(VibeError):
    """Missing or invalid on-disk configuration."""

    pass


class ProviderError(VibeError):
    """AI provider errors."""

    pass


class ProviderAPIError(ProviderError):
    """Provider API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_invalid_key(self) -> bool:
        text = str(self)
        return "API key not valid" in text or "API_KEY_INVALID" in text


class ProviderNotConfiguredError(ProviderError):
    """Provider credentials are empty or still the placeholder."""

    def __init__(self, provider: str, message: str = ""):
        super().__init__(message or f"{provider} API key is not configured")
        self.provider = provider


class ProtocolError(VibeError):
    """Model output did not follow the action protocol."""

    pass


class ToolError(VibeError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"agent requested unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolBlockedError(ToolError):
    """Tool execution blocked by policy."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(f"Tool '{tool_name}' blocked: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class ExecError(VibeError):
    """A proposed command could not be executed."""

    def __init__(self, command: str, message: str, exit_code: int = -1):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class SafetyBlockedError(VibeError):
    """Command classified as blocked; it is never executed."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Command blocked: {reason}")
        self.command = command
        self.reason = reason


class SessionIOError(VibeError):
    """Session persistence failure."""

    pass


class StepLimitExceededError(VibeError):
    """Agent used all of its steps without a terminal action."""

    def __init__(self, max_steps: int, transcript: list[str]):
        super().__init__(
            f"agent exceeded max steps ({max_steps}) without returning a command"
        )
        self.max_steps = max_steps
        self.steps_used = max_steps
        self.transcript = transcript


class CheckpointError(VibeError):
    """A git checkpoint could not be created, listed or restored."""

    pass


class DiagnoseError(VibeError):
    """A health collector could not gather its data."""

    def __init__(self, collector: str, message: str):
        super().__init__(f"{collector}: {message}")
        self.collector = collector


class ContextProviderError(VibeError):
    """An @mention context provider could not resolve its query."""

    def __init__(self, provider: str, message: str):
        super().__init__(message)
        self.provider = provider
