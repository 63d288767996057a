"""Git checkpoints taken before an agent run, and restoring them."""

import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from vibe_devops.exceptions import CheckpointError
from vibe_devops.logging import get_logger

log = get_logger(__name__)

CHECKPOINT_PREFIX = "[vibe-checkpoint]"
MAX_CHECKPOINTS = 10
STASH_MESSAGE = "[vibe] Stashed before undo"


@dataclass(frozen=True)
class CheckpointInfo:
    hash: str
    message: str
    relative: str


class GitCheckpoints:
    """Checkpoint commits in the repository that contains ``work_dir``."""

    def __init__(self, work_dir: Path | str = ".", git_binary: str = "git"):
        self.work_dir = Path(work_dir)
        self.git_binary = git_binary

    def _git(self, *args: str) -> str:
        """Run git and return stdout.

        Raises:
            CheckpointError: git is missing or exits non-zero.
        """
        try:
            completed = subprocess.run(
                [self.git_binary, *args],
                cwd=self.work_dir,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise CheckpointError(f"git is not installed: {e}") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            raise CheckpointError(f"git {args[0]} failed: {detail or f'exit status {e.returncode}'}") from e
        return completed.stdout

    def is_git_repo(self) -> bool:
        try:
            return self._git("rev-parse", "--is-inside-work-tree").strip() == "true"
        except CheckpointError:
            return False

    def uncommitted_files(self) -> list[str]:
        try:
            output = self._git("status", "--porcelain")
        except CheckpointError:
            return []
        return [line for line in output.splitlines() if line.strip()]

    def has_uncommitted_changes(self) -> bool:
        return bool(self.uncommitted_files())

    def create(self, now: datetime | None = None) -> str:
        """Commit the current working tree as a checkpoint.

        An empty commit is made when nothing changed, so the newest
        checkpoint always marks the state right before the latest run.

        Returns:
            Short hash of the checkpoint commit.
        """
        stamp = (now or datetime.now()).strftime("%H:%M:%S")
        message = f"{CHECKPOINT_PREFIX} Before AI session at {stamp}"
        self._git("add", "-A")
        self._git("commit", "--allow-empty", "--no-verify", "-m", message)
        short_hash = self._git("rev-parse", "--short", "HEAD").strip()
        log.info("Checkpoint created", hash=short_hash, work_dir=str(self.work_dir))
        return short_hash

    def recent(self, limit: int = MAX_CHECKPOINTS) -> list[CheckpointInfo]:
        """Checkpoints among the last ``limit * 2`` commits, newest first."""
        try:
            output = self._git("log", "--format=%h|%s|%ar", f"-n{limit * 2}")
        except CheckpointError as e:
            # A repository without commits has no log
            if "does not have any commits" in str(e):
                return []
            raise
        checkpoints: list[CheckpointInfo] = []
        for line in output.splitlines():
            parts = line.split("|", 2)
            if len(parts) != 3:
                continue
            short_hash, message, relative = parts
            if CHECKPOINT_PREFIX in message:
                checkpoints.append(CheckpointInfo(hash=short_hash, message=message, relative=relative))
            if len(checkpoints) >= limit:
                break
        return checkpoints

    def restore(self, commit_hash: str) -> None:
        """Hard-reset the working tree to a checkpoint.

        Uncommitted changes are stashed first so they can be recovered with
        ``git stash pop``.
        """
        if self.has_uncommitted_changes():
            try:
                self._git("stash", "push", "--include-untracked", "-m", STASH_MESSAGE)
            except CheckpointError as e:
                log.warning("Could not stash changes before restore", error=str(e))
        self._git("reset", "--hard", commit_hash)
        log.info("Checkpoint restored", hash=commit_hash)

    def undo_last(self) -> CheckpointInfo:
        """Restore the newest checkpoint.

        Raises:
            CheckpointError: there are no checkpoints.
        """
        checkpoints = self.recent(1)
        if not checkpoints:
            raise CheckpointError("no vibe checkpoints found")
        self.restore(checkpoints[0].hash)
        return checkpoints[0]
