"""The ``run`` command: suggest, gate, execute and self-heal."""

import sys
from dataclasses import dataclass
from typing import Callable, TextIO

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt

from vibe_devops.agent import AgentService, StepInfo, SuggestRequest, suggest_single_command
from vibe_devops.checkpoint import GitCheckpoints
from vibe_devops.context import build_default_context_registry
from vibe_devops.exceptions import (
    CheckpointError,
    ExecError,
    ProviderError,
    SafetyBlockedError,
    SessionIOError,
    StepLimitExceededError,
)
from vibe_devops.executor import ExecResult, ExecSpec, LocalExecutor, current_goos
from vibe_devops.llm import Provider
from vibe_devops.logging import get_logger
from vibe_devops.safety import (
    BackupManager,
    DangerLevel,
    check_command,
    extract_paths,
    has_chain_markers,
    prompt_backup_choice,
)
from vibe_devops.session import Scope, SessionService
from vibe_devops.tools import build_default_registry

log = get_logger(__name__)

TAIL_CHARS = 4000
DEFAULT_SELF_HEAL_ATTEMPTS = 3

DIAGNOSTIC_KEYWORDS = (
    "giải thích",
    "giai thich",
    "tại sao",
    "tai sao",
    "why",
    "debug",
    "not run",
    "không chạy",
    "khong chay",
)

SAFE_COMMANDS = ("ls", "find", "grep", "cat", "pwd", "echo", "stat", "whoami", "date")

HEAL_INSTRUCTION = (
    "INSTRUCTION: Based on the execution result above, either answer the user's question "
    "(type=answer) or propose the next best command (type=done)."
)
CONTINUE_INSTRUCTION = "INSTRUCTION: Continue until you can answer (type=answer) or stop if no more steps."


def looks_like_diagnostic_question(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in DIAGNOSTIC_KEYWORDS)


def tail_string(text: str, limit: int = TAIL_CHARS) -> str:
    """Last ``limit`` characters of the stripped text."""
    text = text.strip()
    if limit <= 0:
        limit = TAIL_CHARS
    return text if len(text) <= limit else text[-limit:]


def is_safe_command(command: str) -> bool:
    """Read-only inspection commands that run without asking."""
    command = command.strip().lower()
    if has_chain_markers(command):
        return False
    return any(command == name or command.startswith(name + " ") for name in SAFE_COMMANDS)


def exec_transcript_lines(command: str, result: ExecResult) -> list[str]:
    return [
        f"EXEC_COMMAND: {command}",
        f"EXEC_RESULT: exit_code={result.exit_code}",
        f"EXEC_STDOUT_TAIL: {tail_string(result.stdout)}",
        f"EXEC_STDERR_TAIL: {tail_string(result.stderr)}",
    ]


@dataclass
class RunFlags:
    """Options of one ``vibe run`` invocation."""

    agent_mode: bool = True
    agent_max_steps: int = 5
    extend_steps: int = 10
    self_heal: bool = True
    self_heal_max_attempts: int = DEFAULT_SELF_HEAL_ATTEMPTS
    session_name: str = "default"
    session_scope: Scope = Scope.BOTH
    use_session: bool = True
    stream: bool = False
    work_dir: str = "."
    command_timeout: float | None = None
    checkpoint: bool = False


class RunHandler:
    """Drives one request from suggestion to execution."""

    def __init__(
        self,
        provider: Provider,
        session_service: SessionService | None,
        flags: RunFlags,
        executor: LocalExecutor | None = None,
        console: Console | None = None,
        confirm: Callable[[str], bool] | None = None,
        ask: Callable[[str], str] | None = None,
        backup_manager: BackupManager | None = None,
        output: TextIO | None = None,
        goos: str | None = None,
        checkpoints: GitCheckpoints | None = None,
    ):
        self.provider = provider
        self.session_service = session_service
        self.flags = flags
        self.goos = goos or current_goos()
        self.executor = executor or LocalExecutor(self.goos)
        self.console = console or Console()
        self.confirm = confirm or (lambda prompt: Confirm.ask(prompt, default=False, console=self.console))
        self.ask = ask or (lambda prompt: Prompt.ask(prompt, default="c", console=self.console))
        self.backup_manager = backup_manager or BackupManager()
        self.output = output or sys.stdout
        self.checkpoints = checkpoints or GitCheckpoints(flags.work_dir)
        self._checkpoint_taken = False

    async def handle(self, request: str) -> None:
        """Run the request in agent or single-shot mode.

        Raises:
            ProviderError, ProtocolError: the model could not produce a command.
            SafetyBlockedError: the proposed command is blocked.
            ExecError: the command failed and self-heal did not run.
        """
        if self.flags.agent_mode:
            await self.run_agent_mode(request)
        else:
            await self.run_single_shot_mode(request)

    # Agent mode

    def _on_progress(self, info: StepInfo) -> None:
        if info.type == "thinking":
            self.console.print("[dim][VIBE] Thinking...[/dim]")
        elif info.type == "tool_call":
            self.console.print(f"[cyan][VIBE][/cyan] {info.message}", markup=True, highlight=False)
        else:
            log.debug("Tool step finished", step=info.step, message=info.message)

    def _on_token(self, token: str) -> None:
        self.console.print(token, end="", markup=False, highlight=False)

    def _confirm_tool(self, question: str) -> bool:
        self.console.print("\n[bold][VIBE][/bold] Agent wants to run command:")
        self.console.print(f"   {question}", style="bold yellow", markup=False)
        return self.confirm("   Allow this one-time execution?")

    def _seed_transcript(self, request: str) -> list[str]:
        if self.session_service is None or not self.flags.use_session:
            return []
        try:
            combined = self.session_service.load_combined(self.flags.session_scope, self.flags.session_name)
        except SessionIOError as e:
            log.warning("Session load failed", error=str(e))
            return []
        return self.session_service.build_seed_transcript(combined, request, self.goos)

    async def run_agent_mode(self, request: str) -> None:
        transcript = self._seed_transcript(request)
        registry = build_default_registry(self.flags.work_dir, include_shell=True, executor=self.executor)
        context_registry = build_default_context_registry(self.flags.work_dir)
        max_steps = self.flags.agent_max_steps

        while True:
            agent = AgentService(
                self.provider,
                registry,
                max_steps=max_steps,
                context_registry=context_registry,
                work_dir=self.flags.work_dir,
            )
            try:
                response = await agent.suggest_command(
                    SuggestRequest(
                        user_request=request,
                        goos=self.goos,
                        transcript=transcript,
                        on_progress=self._on_progress,
                        on_token=self._on_token if self.flags.stream else None,
                        on_confirm=self._confirm_tool,
                    )
                )
            except StepLimitExceededError as e:
                self.console.print(
                    f"\n[yellow][VIBE] Agent stopped after {e.steps_used} steps to avoid infinite loops.[/yellow]"
                )
                self.console.print("   Latest thought: It likely needs more time or is stuck.")
                if not self.confirm(f"   Do you want to give it {self.flags.extend_steps} more steps?"):
                    raise
                self.console.print("Extending session...")
                transcript = e.transcript
                max_steps = self.flags.extend_steps
                continue
            except ProviderError as e:
                self._report_provider_error(e)
                raise
            break

        if response.explanation:
            if self.flags.stream:
                self.console.print()
            else:
                self.console.print(f"\n[bold][VIBE][/bold] {response.explanation}", highlight=False)

        if not response.command:
            await self._persist(response.transcript)
            return
        await self.execute_and_heal(response.command, response.transcript, request)

    def _report_provider_error(self, error: ProviderError) -> None:
        text = str(error)
        if "API key not valid" in text or "API_KEY_INVALID" in text:
            self.console.print("\n[bold red]Error: Invalid AI Provider API Key.[/bold red]")
            self.console.print("To fix this, run:")
            self.console.print('   vibe config api-key "YOUR_API_KEY"', markup=False)

    # Single-shot mode

    async def run_single_shot_mode(self, request: str) -> None:
        self.console.print("Calling AI to generate command...")
        self.console.print("[dim]Note: Vibe single-shot mode.[/dim]")
        try:
            command = await suggest_single_command(self.provider, request, self.goos)
        except ProviderError as e:
            self._report_provider_error(e)
            raise
        await self.execute_and_heal(command, [], request)

    # Execution

    def _checkpoint(self) -> None:
        """Commit the workspace once before the first command of this run."""
        if not self.flags.checkpoint or self._checkpoint_taken:
            return
        self._checkpoint_taken = True
        if not self.checkpoints.is_git_repo():
            log.debug("Workspace is not a git repository, skipping checkpoint", work_dir=self.flags.work_dir)
            return
        try:
            short_hash = self.checkpoints.create()
        except CheckpointError as e:
            log.warning("Checkpoint failed", error=str(e))
            self.console.print(f"[yellow]Could not create a checkpoint:[/yellow] {escape(str(e))}", highlight=False)
            return
        self.console.print(
            f"[dim]Checkpoint {short_hash} created. Run 'vibe undo --last' to go back.[/dim]", highlight=False
        )

    async def _execute(self, command: str) -> tuple[ExecResult, ExecError | None]:
        self._checkpoint()
        self.console.print("Executing command...")
        spec = ExecSpec(
            command=command,
            stdout=self.output,
            stderr=self.output,
            timeout=self.flags.command_timeout,
            cwd=self.flags.work_dir,
        )
        try:
            result = await self.executor.run(spec)
        except ExecError as e:
            return ExecResult(exit_code=e.exit_code, duration=0.0, stderr=str(e)), e

        if result.ok:
            self.console.print("\n[green]Command executed successfully.[/green]")
        else:
            self.console.print(f"\n[red]Command failed (exit code {result.exit_code}).[/red]")
        return result, None

    def _backup(self, command: str) -> bool:
        """Back up the concrete paths the command targets.

        Returns False when the backup failed and the user chose not to continue.
        """
        location = self.backup_manager.create_backup(command, extract_paths(command))
        if location is not None:
            self.console.print(f"Backup created: {location}", markup=False)
            return True
        self.console.print("[yellow]No backup was created.[/yellow]")
        return self.confirm("Continue without a backup?")

    def _gate(self, command: str, auto_run: bool = True) -> bool:
        """Safety classification and confirmation.

        With ``auto_run`` safe read-only commands skip the prompt, as do
        risky commands once the user picked run or backup. Without it every
        command ends in an explicit yes/no.

        Returns False when the user declined.

        Raises:
            SafetyBlockedError: the command is blocked.
        """
        classification = check_command(command)
        if classification.level == DangerLevel.BLOCKED:
            prompt_backup_choice(self.console, command, classification, self.ask)
            raise SafetyBlockedError(command, classification.description)

        if classification.level >= DangerLevel.WARNING:
            choice = prompt_backup_choice(self.console, command, classification, self.ask)
            if choice == "cancel":
                self.console.print("Execution cancelled.")
                return False
            if choice == "backup" and not self._backup(command):
                self.console.print("Execution cancelled.")
                return False
            if auto_run:
                return True
        elif auto_run and is_safe_command(command):
            self.console.print("\nVibe auto-executing safe command:")
            self.console.print(f"  {command}", style="bold cyan", markup=False)
            return True

        self.console.print("\nVibe suggests the following command:\n")
        self.console.print(f"  {command}\n", style="bold cyan", markup=False)
        if not self.confirm("Do you want to execute it?"):
            self.console.print("Execution cancelled.")
            return False
        return True

    async def execute_and_heal(self, command: str, transcript: list[str], original_request: str) -> None:
        if not self._gate(command):
            await self._persist(transcript)
            return
        result, error = await self._execute(command)

        should_heal = (
            self.flags.agent_mode
            and self.flags.self_heal
            and (looks_like_diagnostic_question(original_request) or error is not None or not result.ok)
        )
        if not should_heal:
            await self._persist(transcript)
            if error is not None:
                raise error
            if not result.ok:
                raise ExecError(command, f"command failed with exit code {result.exit_code}", result.exit_code)
            return

        await self.self_heal(command, result, transcript, original_request)

    async def self_heal(
        self,
        command: str,
        result: ExecResult,
        transcript: list[str],
        original_request: str,
    ) -> int:
        """Feed execution results back to the agent, at most ``self_heal_max_attempts`` times.

        Returns the number of agent re-invocations.
        """
        attempts = self.flags.self_heal_max_attempts
        if attempts <= 0:
            attempts = DEFAULT_SELF_HEAL_ATTEMPTS

        transcript = list(transcript) or [
            f"USER_REQUEST: {original_request}",
            f"GOOS: {self.goos.strip()}",
        ]
        transcript.extend(exec_transcript_lines(command, result))
        transcript.append(HEAL_INSTRUCTION)

        registry = build_default_registry(self.flags.work_dir, include_shell=False)
        agent = AgentService(self.provider, registry, max_steps=self.flags.agent_max_steps, work_dir=self.flags.work_dir)

        used = 0
        for attempt in range(1, attempts + 1):
            used = attempt
            log.info("Self-heal attempt", attempt=attempt, max_attempts=attempts)
            response = await agent.suggest_command(
                SuggestRequest(
                    user_request=original_request,
                    goos=self.goos,
                    transcript=transcript,
                    on_progress=self._on_progress,
                )
            )
            transcript = response.transcript

            if response.explanation:
                self.console.print("\n[bold]Agent analysis:[/bold]")
                self.console.print(response.explanation, highlight=False)

            next_command = response.command.strip()
            if not next_command:
                break
            try:
                if not self._gate(next_command, auto_run=False):
                    break
            except SafetyBlockedError as e:
                log.warning("Self-heal command blocked", command=next_command, reason=e.reason)
                break

            result, _ = await self._execute(next_command)
            transcript.extend(exec_transcript_lines(next_command, result))
            if result.ok:
                transcript.append(CONTINUE_INSTRUCTION)

        await self._persist(transcript)
        return used

    async def _persist(self, transcript: list[str]) -> None:
        """Best-effort write of the run transcript to session memory."""
        if self.session_service is None or not self.flags.use_session or not transcript:
            return
        try:
            await self.session_service.update_both(self.flags.session_name, transcript)
        except SessionIOError as e:
            log.warning("Session persist failed", error=str(e))
