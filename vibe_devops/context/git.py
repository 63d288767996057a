"""@git provider: status, diff, log and branch summaries."""

import asyncio
from pathlib import Path

from vibe_devops.context import (
    ContextExtras,
    ContextItem,
    ContextProvider,
    ContextProviderDescription,
    ContextProviderType,
)
from vibe_devops.exceptions import ContextProviderError
from vibe_devops.logging import get_logger

log = get_logger(__name__)

_QUERIES: dict[str, tuple[str, list[str]]] = {
    "status": ("Current git status", ["status", "--porcelain", "-b"]),
    "diff": ("Git diff summary", ["diff", "--stat", "HEAD"]),
    "log": ("Recent git commits (last 10)", ["log", "--oneline", "-n", "10"]),
    "branch": ("Git branches", ["branch", "-a"]),
}


class GitContextProvider(ContextProvider):
    def __init__(self, base_dir: str | Path = ".", git_binary: str = "git"):
        self.base_dir = Path(base_dir)
        self.git_binary = git_binary

    def description(self) -> ContextProviderDescription:
        return ContextProviderDescription(
            name="git",
            display_title="Git Context",
            description="Git information like status, diff, log. Use @git status|diff|log|branch",
            type=ContextProviderType.GIT,
        )

    async def run_git(self, work_dir: str, *args: str) -> str:
        """Run git and return combined output.

        Raises:
            ContextProviderError: git is missing or exits non-zero.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_binary,
                *args,
                cwd=work_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ContextProviderError("git", f"git {args[0]} failed: {e}") from e
        output, _ = await process.communicate()
        text = output.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise ContextProviderError(
                "git", f"git {args[0]} failed: exit status {process.returncode}\n{text}"
            )
        return text

    async def get_context_items(self, query: str, extras: ContextExtras) -> list[ContextItem]:
        query = query.strip().lower() or "status"
        if query not in _QUERIES:
            raise ContextProviderError(
                "git", f"unknown git query: {query}. Use: status, diff, log, branch"
            )
        work_dir = extras.work_dir or str(self.base_dir)
        description, args = _QUERIES[query]

        try:
            output = await self.run_git(work_dir, *args)
        except ContextProviderError:
            if query != "diff":
                raise
            # Repositories without commits have no HEAD
            log.debug("git diff HEAD failed, retrying without HEAD", work_dir=work_dir)
            output = await self.run_git(work_dir, "diff", "--stat")

        return [ContextItem(name=f"git-{query}", description=description, content=output)]
