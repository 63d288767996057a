"""Agent orchestration for Vibe DevOps."""

import asyncio
from dataclasses import dataclass, field
from typing import Callable

from vibe_devops.agent_prompt import (
    build_agent_prompt,
    build_single_shot_prompt,
    parse_single_shot_reply,
)
from vibe_devops.agent_protocol import (
    ACTION_ANSWER,
    ACTION_DONE,
    ACTION_TOOL,
    Action,
    ExplanationStreamExtractor,
    parse_action,
)
from vibe_devops.context import (
    ContextExtras,
    ContextItem,
    ContextProviderRegistry,
    parse_context_mentions,
)
from vibe_devops.exceptions import (
    ContextProviderError,
    ProtocolError,
    ProviderError,
    StepLimitExceededError,
    ToolError,
)
from vibe_devops.llm import GenerateRequest, Provider, StreamChunk
from vibe_devops.logging import get_logger
from vibe_devops.tools.registry import ToolExtras, ToolRegistry

log = get_logger(__name__)

DEFAULT_MAX_STEPS = 10
STREAM_QUEUE_SIZE = 64
PROGRESS_PREVIEW_CHARS = 100


@dataclass
class StepInfo:
    """Progress event emitted by the agent loop."""

    step: int
    type: str  # "thinking", "tool_call", "tool_done"
    message: str


@dataclass
class SuggestRequest:
    user_request: str
    goos: str
    # Continue an earlier run (after executing a proposed command, or after a step extension)
    transcript: list[str] = field(default_factory=list)
    on_progress: Callable[[StepInfo], None] | None = None
    on_token: Callable[[str], None] | None = None
    on_confirm: Callable[[str], bool] | None = None


@dataclass
class SuggestResponse:
    command: str
    explanation: str
    steps_used: int
    transcript: list[str]


class AgentService:
    """Tool-calling loop that ends with one proposed command or an answer."""

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        max_steps: int = DEFAULT_MAX_STEPS,
        context_registry: ContextProviderRegistry | None = None,
        work_dir: str = ".",
    ):
        self.provider = provider
        self.registry = registry
        self.max_steps = max_steps if max_steps > 0 else DEFAULT_MAX_STEPS
        self.context_registry = context_registry
        self.work_dir = work_dir

    async def suggest_command(self, request: SuggestRequest) -> SuggestResponse:
        """Run the loop until the model proposes a command or answers.

        Raises:
            ValueError: empty request.
            ProviderError: generation failed.
            ProtocolError: the model broke the action protocol.
            StepLimitExceededError: max steps reached; carries the transcript.
        """
        if not request.user_request.strip():
            raise ValueError("empty request")

        if request.transcript:
            transcript = list(request.transcript)
        else:
            transcript = [
                f"USER_REQUEST: {request.user_request}",
                f"GOOS: {request.goos.strip()}",
            ]
        context_items = await self._resolve_context_mentions(request.user_request)

        log.info(
            "Agent start",
            request=request.user_request,
            max_steps=self.max_steps,
            context_items=len(context_items),
        )

        for step in range(1, self.max_steps + 1):
            self._progress(request, StepInfo(step, "thinking", "Analyzing request..."))

            prompt = build_agent_prompt(
                request.goos,
                request.user_request,
                transcript,
                self.registry.definitions(),
                context_items,
            )
            log.debug("Agent generate", provider=self.provider.name, step=step)
            response_text = await self._generate(prompt, request.on_token, step)

            try:
                action = parse_action(response_text)
            except ProtocolError as e:
                log.warning("Agent parse error", error=str(e), response=response_text)
                raise ProtocolError(f"agent protocol parse error: {e}") from e

            log.info("Agent action", type=action.type, step=step)

            if action.type == ACTION_DONE:
                command = action.command.strip()
                if not command:
                    raise ProtocolError("agent returned empty command")
                log.info("Agent done", command=command)
                return SuggestResponse(
                    command=command,
                    explanation=action.explanation.strip(),
                    steps_used=step,
                    transcript=transcript,
                )

            if action.type == ACTION_ANSWER:
                log.info("Agent answer", explanation=action.explanation)
                return SuggestResponse(
                    command="",
                    explanation=action.explanation.strip(),
                    steps_used=step,
                    transcript=transcript,
                )

            if action.type == ACTION_TOOL:
                message = f"[{action.tool}] {action.thought}" if action.thought else f"Using tool: {action.tool}"
                self._progress(request, StepInfo(step, "tool_call", message))

                output = await self._execute_tool(action, request.on_confirm)

                preview = output
                if len(preview) > PROGRESS_PREVIEW_CHARS:
                    preview = preview[:PROGRESS_PREVIEW_CHARS] + "..."
                self._progress(request, StepInfo(step, "tool_done", f"Result: {preview}"))

                transcript.append(f"TOOL_CALL: {action.tool} {action.input_json()}")
                transcript.append(f"TOOL_OUTPUT: {output.strip()}")
                continue

            raise ProtocolError(f"unsupported action type: {action.type}")

        log.warning("Agent max steps exceeded", max_steps=self.max_steps)
        raise StepLimitExceededError(self.max_steps, transcript)

    @staticmethod
    def _progress(request: SuggestRequest, info: StepInfo) -> None:
        if request.on_progress is not None:
            request.on_progress(info)

    async def _generate(self, prompt: str, on_token: Callable[[str], None] | None, step: int) -> str:
        if on_token is not None:
            text = await self._stream_generate(prompt, on_token, step)
            if text:
                return text
            log.debug("Streaming produced no text, falling back to generate", step=step)

        try:
            response = await self.provider.generate(GenerateRequest(prompt=prompt))
        except ProviderError as e:
            log.error("Agent generate failed", error=str(e), step=step)
            raise
        return response.text

    async def _stream_generate(self, prompt: str, on_token: Callable[[str], None], step: int) -> str:
        """Stream a reply, forwarding only the explanation text.

        Returns the full raw reply, or "" when the stream failed.
        """
        queue: asyncio.Queue[StreamChunk | None] = asyncio.Queue(maxsize=STREAM_QUEUE_SIZE)

        async def produce() -> None:
            try:
                async for text in self.provider.stream_generate(GenerateRequest(prompt=prompt)):
                    await queue.put(StreamChunk(content=text))
            except Exception as e:
                await queue.put(StreamChunk(error=e))
            await queue.put(None)

        producer = asyncio.create_task(produce())
        extractor = ExplanationStreamExtractor()
        buffer: list[str] = []
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                if chunk.error is not None:
                    log.error("Stream chunk error", error=str(chunk.error), step=step)
                    return ""
                buffer.append(chunk.content)
                token = extractor.feed(chunk.content)
                if token:
                    on_token(token)
        finally:
            if not producer.done():
                producer.cancel()
                try:
                    await producer
                except asyncio.CancelledError:
                    pass
        return "".join(buffer)

    async def _execute_tool(self, action: Action, on_confirm: Callable[[str], bool] | None) -> str:
        extras = ToolExtras(on_confirm=on_confirm, work_dir=self.work_dir)
        try:
            result = await self.registry.execute(action.tool, action.input, extras)
        except ToolError as e:
            log.warning("Tool execution failed", tool=action.tool, error=str(e))
            return f"ERROR: {e}"
        if result.is_error:
            log.warning("Tool returned error result", tool=action.tool)
            return f"ERROR: {result.content}"
        log.debug("Tool execution success", tool=action.tool)
        return result.content

    async def _resolve_context_mentions(self, text: str) -> list[ContextItem]:
        if self.context_registry is None:
            return []
        items: list[ContextItem] = []
        for mention in parse_context_mentions(text):
            provider = self.context_registry.get(mention.provider)
            if provider is None:
                log.warning("Unknown context provider", provider=mention.provider)
                continue
            extras = ContextExtras(work_dir=self.work_dir, full_input=text)
            try:
                items.extend(await provider.get_context_items(mention.query, extras))
            except ContextProviderError as e:
                log.warning(
                    "Context provider error",
                    provider=mention.provider,
                    query=mention.query,
                    error=str(e),
                )
        return items


async def suggest_single_command(provider: Provider, user_request: str, goos: str) -> str:
    """One prompt, one command, no tools.

    Raises:
        ValueError: empty request.
        ProtocolError: the model replied with ``Error: ...``.
    """
    if not user_request.strip():
        raise ValueError("empty request")
    log.debug("Generating single command", provider=provider.name)
    response = await provider.generate(GenerateRequest(prompt=build_single_shot_prompt(goos, user_request)))
    return parse_single_shot_reply(response.text)
