"""@mention context providers.

A request such as ``why is @logs app.log:50 failing`` names a provider
(``logs``) and a query (``app.log:50``). Providers turn the query into
context items that are added to the agent prompt.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from vibe_devops.locks import ReadWriteLock
from vibe_devops.logging import get_logger

log = get_logger(__name__)

MENTION_PATTERN = re.compile(r"@(\w+)\s+(\S+)")


class ContextProviderType(str, Enum):
    FILE = "file"
    GIT = "git"
    SYSTEM = "system"
    LOGS = "logs"
    CUSTOM = "custom"


@dataclass
class ContextItem:
    """A piece of context sent to the model."""

    name: str
    content: str
    description: str = ""
    uri: str = ""
    hidden: bool = False
    icon: str = ""


@dataclass(frozen=True)
class ContextMention:
    provider: str
    query: str
    raw: str


@dataclass(frozen=True)
class ContextProviderDescription:
    name: str
    display_title: str
    description: str
    type: ContextProviderType


@dataclass
class ContextExtras:
    work_dir: str = ""
    full_input: str = ""


class ContextProvider(ABC):
    """Base class for @mention providers."""

    @abstractmethod
    def description(self) -> ContextProviderDescription:
        pass

    @abstractmethod
    async def get_context_items(self, query: str, extras: ContextExtras) -> list[ContextItem]:
        """Resolve a query to context items.

        Raises:
            ContextProviderError: the query cannot be resolved.
        """
        pass

    @property
    def name(self) -> str:
        return self.description().name


def parse_context_mentions(text: str) -> list[ContextMention]:
    """All ``@provider query`` mentions in order of appearance."""
    return [
        ContextMention(provider=m.group(1).lower(), query=m.group(2).strip(), raw=m.group(0))
        for m in MENTION_PATTERN.finditer(text)
    ]


def strip_context_mentions(text: str) -> str:
    return MENTION_PATTERN.sub("", text).strip()


def resolve_path(base_dir: str | Path, query: str, work_dir: str = "") -> Path:
    path = Path(query).expanduser()
    if path.is_absolute():
        return path
    return Path(work_dir or base_dir) / path


class ContextProviderRegistry:
    """Registry of context providers keyed by mention name."""

    def __init__(self) -> None:
        self._providers: dict[str, ContextProvider] = {}
        self._lock = ReadWriteLock()

    def register(self, provider: ContextProvider) -> None:
        name = provider.description().name
        with self._lock.write():
            if name in self._providers:
                raise ValueError(f"context provider already registered: {name}")
            self._providers[name] = provider

    def get(self, name: str) -> ContextProvider | None:
        with self._lock.read():
            return self._providers.get(name)

    def list(self) -> list[ContextProvider]:
        with self._lock.read():
            return list(self._providers.values())

    def list_by_type(self, provider_type: ContextProviderType) -> list[ContextProvider]:
        return [p for p in self.list() if p.description().type == provider_type]

    def descriptions(self) -> list[ContextProviderDescription]:
        return [p.description() for p in self.list()]


def build_default_context_registry(base_dir: str | Path = ".") -> ContextProviderRegistry:
    """Registry with the file, git, system and logs providers."""
    from vibe_devops.context.file import FileContextProvider
    from vibe_devops.context.git import GitContextProvider
    from vibe_devops.context.logs import LogsContextProvider
    from vibe_devops.context.system import SystemContextProvider

    registry = ContextProviderRegistry()
    registry.register(FileContextProvider(base_dir))
    registry.register(GitContextProvider(base_dir))
    registry.register(SystemContextProvider())
    registry.register(LogsContextProvider(base_dir))
    return registry


__all__ = [
    "ContextExtras",
    "ContextItem",
    "ContextMention",
    "ContextProvider",
    "ContextProviderDescription",
    "ContextProviderRegistry",
    "ContextProviderType",
    "build_default_context_registry",
    "parse_context_mentions",
    "strip_context_mentions",
]
