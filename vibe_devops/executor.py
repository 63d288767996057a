"""Local command executor."""

import asyncio
import platform
import time
from dataclasses import dataclass, field
from typing import TextIO

from vibe_devops.exceptions import ExecError
from vibe_devops.logging import get_logger

log = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124


def current_goos() -> str:
    """Operating system name as shown to the model (linux, darwin, windows)."""
    return platform.system().lower() or "linux"


@dataclass
class ExecSpec:
    """What to run and where its output goes."""

    command: str
    shell: list[str] = field(default_factory=list)
    stdin: str | None = None
    stdout: TextIO | None = None
    stderr: TextIO | None = None
    timeout: float | None = None
    dry_run: bool = False
    cwd: str | None = None


@dataclass
class ExecResult:
    exit_code: int
    duration: float
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


async def _pump(stream: asyncio.StreamReader | None, sink: TextIO | None, chunks: list[str]) -> None:
    if stream is None:
        return
    while True:
        data = await stream.read(4096)
        if not data:
            break
        text = data.decode("utf-8", errors="replace")
        chunks.append(text)
        if sink is not None:
            sink.write(text)
            sink.flush()


class LocalExecutor:
    """Runs commands through the platform shell."""

    def __init__(self, goos: str | None = None):
        self.goos = (goos or current_goos()).lower()

    def default_shell(self) -> list[str]:
        if self.goos == "windows":
            return ["powershell", "-Command"]
        return ["sh", "-c"]

    async def run(self, spec: ExecSpec) -> ExecResult:
        """Run a command and wait for it.

        Non-zero exits are returned, not raised.

        Raises:
            ExecError: the process could not be started.
        """
        started = time.monotonic()
        if spec.dry_run:
            log.info("Dry run, command not executed", command=spec.command)
            return ExecResult(exit_code=0, duration=0.0)

        argv = [*(spec.shell or self.default_shell()), spec.command]
        try:
            log.debug("Executing command", command=spec.command, shell=argv[:-1], timeout=spec.timeout)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if spec.stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
            )
        except OSError as e:
            log.error("Command failed to start", command=spec.command, error=str(e))
            raise ExecError(spec.command, f"failed to start command: {e}", exit_code=-1) from e

        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []

        async def _communicate() -> int:
            if spec.stdin is not None and process.stdin is not None:
                process.stdin.write(spec.stdin.encode("utf-8"))
                await process.stdin.drain()
                process.stdin.close()
            await asyncio.gather(
                _pump(process.stdout, spec.stdout, stdout_chunks),
                _pump(process.stderr, spec.stderr, stderr_chunks),
            )
            return await process.wait()

        timed_out = False
        try:
            if spec.timeout and spec.timeout > 0:
                exit_code = await asyncio.wait_for(_communicate(), timeout=spec.timeout)
            else:
                exit_code = await _communicate()
        except asyncio.TimeoutError:
            timed_out = True
            if process.returncode is None:
                process.kill()
            await process.wait()
            exit_code = TIMEOUT_EXIT_CODE
            log.warning("Command timed out", command=spec.command, timeout=spec.timeout)
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise

        result = ExecResult(
            exit_code=exit_code,
            duration=time.monotonic() - started,
            stdout="".join(stdout_chunks),
            stderr="".join(stderr_chunks),
            timed_out=timed_out,
        )
        log.debug("Command finished", command=spec.command, exit_code=result.exit_code)
        return result
