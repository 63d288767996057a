"""Session memory with JSON file storage.

Each session keeps a rolling summary plus a short tail of recent transcript
lines. Two stores are kept: one per project (``./.vibe``) and one per user
(``~/.vibe``). The global store holds fewer lines and is summarized harder.
"""

import json
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from vibe_devops.exceptions import ProviderError, SessionIOError
from vibe_devops.llm import GenerateRequest, Provider
from vibe_devops.logging import get_logger

log = get_logger(__name__)

DEFAULT_MAX_RECENT_LINES = 40
DEFAULT_MAX_RECENT_CHARS = 8000
GLOBAL_MAX_RECENT_LINES = 12
GLOBAL_MAX_RECENT_CHARS = 2000
MERGE_MAX_LINES = 200
MERGE_MAX_CHARS = 20000
MAX_SESSION_NAME = 80
REDACTED_LINE = "[REDACTED_LINE]"

_SAFE_NAME = re.compile(r"[^a-zA-Z0-9._-]+")
_SECRET_MARKERS = ("apikey", "api-key", "token")

SUMMARIZER_PROMPT = """You are a summarizer for a CLI agent session. Update the rolling summary with the new evidence.
Keep it compact and actionable (max ~12 lines). Prefer stable facts, errors, decisions, and next steps.
Do NOT include secrets. If something looks like a key/token, replace with [REDACTED].
Output plain text only.

"""


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


class Scope(StrEnum):
    NONE = "none"
    PROJECT = "project"
    GLOBAL = "global"
    BOTH = "both"


@dataclass
class Budget:
    max_recent_lines: int = DEFAULT_MAX_RECENT_LINES
    max_recent_chars: int = DEFAULT_MAX_RECENT_CHARS

    def normalized(self) -> "Budget":
        return Budget(
            self.max_recent_lines if self.max_recent_lines > 0 else DEFAULT_MAX_RECENT_LINES,
            self.max_recent_chars if self.max_recent_chars > 0 else DEFAULT_MAX_RECENT_CHARS,
        )


class SessionState(BaseModel):
    """Persisted memory for one named session."""

    version: int = 1
    summary: str = ""
    recent: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class CombinedContext:
    global_summary: str = ""
    project_summary: str = ""
    recent: list[str] = field(default_factory=list)


def trim_recent(lines: list[str], max_lines: int, max_chars: int) -> list[str]:
    """Longest suffix within both the line and the character budget.

    Each line costs ``len(line) + 1``. Non-positive limits fall back to the
    defaults.
    """
    if max_lines <= 0:
        max_lines = DEFAULT_MAX_RECENT_LINES
    if max_chars <= 0:
        max_chars = DEFAULT_MAX_RECENT_CHARS

    lines = lines[-max_lines:] if len(lines) > max_lines else list(lines)

    chars = 0
    start = 0
    for index in range(len(lines) - 1, -1, -1):
        chars += len(lines[index]) + 1
        if chars > max_chars:
            start = index + 1
            break
    return lines[start:]


def redact_lines(lines: list[str]) -> list[str]:
    """Replace any line that mentions a key or token."""
    redacted = []
    for line in lines:
        lower = line.lower()
        if any(marker in lower for marker in _SECRET_MARKERS):
            redacted.append(REDACTED_LINE)
        else:
            redacted.append(line)
    return redacted


def sanitize_session_name(name: str) -> str:
    name = (name or "").strip() or "default"
    name = _SAFE_NAME.sub("_", name)
    return name[:MAX_SESSION_NAME]


class SessionStore(ABC):
    """Persistence for session state."""

    @abstractmethod
    def load(self, name: str) -> SessionState:
        """Load a session, or a fresh state when none exists.

        Raises:
            SessionIOError: the stored file cannot be read or decoded.
        """
        pass

    @abstractmethod
    def save(self, name: str, state: SessionState) -> None:
        pass


class JsonFileSessionStore(SessionStore):
    """One pretty-printed JSON file per session under ``<base>/sessions``."""

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir or ".").expanduser()

    def session_path(self, name: str) -> Path:
        return self.base_dir / "sessions" / f"{sanitize_session_name(name)}.json"

    def load(self, name: str) -> SessionState:
        path = self.session_path(name)
        if not path.exists():
            return SessionState()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            state = SessionState.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            raise SessionIOError(f"failed to load session {path}: {e}") from e
        if state.version == 0:
            state.version = 1
        return state

    def save(self, name: str, state: SessionState) -> None:
        path = self.session_path(name)
        if state.version == 0:
            state.version = 1
        now = _utcnow_iso()
        if not state.created_at:
            state.created_at = now
        state.updated_at = now

        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise SessionIOError(f"failed to save session {path}: {e}") from e
        log.debug("Session saved", path=str(path), recent=len(state.recent))


class SessionService:
    """Loads session memory into a transcript seed and folds new lines back in."""

    def __init__(
        self,
        provider: Provider | None,
        project_store: SessionStore | None,
        global_store: SessionStore | None,
        budget: Budget | None = None,
    ):
        self.provider = provider
        self.project_store = project_store
        self.global_store = global_store
        self.budget = (budget or Budget()).normalized()

    def load_combined(self, scope: Scope | str, name: str) -> CombinedContext:
        """Global memory first, then project memory, trimmed to the budget.

        Raises:
            SessionIOError: a store could not be read.
        """
        scope = Scope(scope)
        combined = CombinedContext()
        if scope == Scope.NONE:
            return combined

        if scope in (Scope.GLOBAL, Scope.BOTH) and self.global_store is not None:
            state = self.global_store.load(name)
            combined.global_summary = state.summary.strip()
            combined.recent.extend(state.recent)

        if scope in (Scope.PROJECT, Scope.BOTH) and self.project_store is not None:
            state = self.project_store.load(name)
            combined.project_summary = state.summary.strip()
            combined.recent.extend(state.recent)

        combined.recent = trim_recent(
            combined.recent, self.budget.max_recent_lines, self.budget.max_recent_chars
        )
        return combined

    @staticmethod
    def build_seed_transcript(combined: CombinedContext, user_request: str, goos: str) -> list[str]:
        transcript: list[str] = []
        if combined.global_summary:
            transcript.append(f"GLOBAL_SESSION_SUMMARY: {combined.global_summary}")
        if combined.project_summary:
            transcript.append(f"PROJECT_SESSION_SUMMARY: {combined.project_summary}")
        if combined.recent:
            transcript.append("SESSION_RECENT:")
            transcript.extend(combined.recent)
        transcript.append(f"USER_REQUEST: {user_request.strip()}")
        transcript.append(f"GOOS: {goos.strip()}")
        return transcript

    async def update_both(self, name: str, new_lines: list[str]) -> None:
        """Persist new lines to the project and global stores.

        Raises:
            SessionIOError: a store could not be read or written.
        """
        new_lines = redact_lines(new_lines)

        if self.project_store is not None:
            state = self.project_store.load(name)
            state = await self._merge_and_summarize(state, new_lines, "project", self.budget)
            self.project_store.save(name, state)

        if self.global_store is not None:
            budget = Budget(
                min(self.budget.max_recent_lines, GLOBAL_MAX_RECENT_LINES),
                min(self.budget.max_recent_chars, GLOBAL_MAX_RECENT_CHARS),
            )
            state = self.global_store.load(name)
            state = await self._merge_and_summarize(state, new_lines, "global", budget)
            self.global_store.save(name, state)

    async def _merge_and_summarize(
        self,
        state: SessionState,
        new_lines: list[str],
        label: str,
        budget: Budget,
    ) -> SessionState:
        combined = trim_recent([*state.recent, *new_lines], MERGE_MAX_LINES, MERGE_MAX_CHARS)
        state.recent = trim_recent(combined, budget.max_recent_lines, budget.max_recent_chars)

        if len(combined) > len(state.recent) and self.provider is not None:
            evicted = combined[: len(combined) - len(state.recent)] if state.recent else combined
            try:
                state.summary = (await self.summarize(state.summary, evicted, label)).strip()
            except ProviderError as e:
                log.warning("Session summarize failed, keeping previous summary", scope=label, error=str(e))
        return state

    async def summarize(self, existing: str, lines: list[str], label: str) -> str:
        if not lines or self.provider is None:
            return existing

        events = "".join(f"- {line.strip()}\n" for line in lines if line.strip())
        prompt = (
            f"{SUMMARIZER_PROMPT}"
            f"SESSION_SCOPE: {label}\n\n"
            f"EXISTING_SUMMARY:\n{existing.strip()}\n\n"
            f"NEW_EVENTS:\n{events}"
        )
        response = await self.provider.generate(GenerateRequest(prompt=prompt))
        return response.text.strip()


def create_session_service(
    provider: Provider | None,
    project_dir: Path | str = ".vibe",
    global_dir: Path | str = "~/.vibe",
    budget: Budget | None = None,
    enabled: bool = True,
) -> SessionService:
    """Service backed by JSON stores; a disabled service has no stores."""
    if not enabled:
        return SessionService(provider, None, None, budget)
    return SessionService(
        provider,
        JsonFileSessionStore(project_dir),
        JsonFileSessionStore(global_dir),
        budget,
    )


__all__ = [
    "Budget",
    "CombinedContext",
    "JsonFileSessionStore",
    "Scope",
    "SessionService",
    "SessionState",
    "SessionStore",
    "create_session_service",
    "redact_lines",
    "trim_recent",
]
