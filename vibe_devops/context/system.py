"""@system provider: OS facts, safe environment variables, working directory."""

import os
import platform
import socket

from vibe_devops.context import (
    ContextExtras,
    ContextItem,
    ContextProvider,
    ContextProviderDescription,
    ContextProviderType,
)
from vibe_devops.exceptions import ContextProviderError

SAFE_ENV_VARS = (
    "PATH",
    "SHELL",
    "HOME",
    "USER",
    "LANG",
    "PWD",
    "OLDPWD",
    "TERM",
    "GOPATH",
    "GOROOT",
    "NODE_ENV",
    "PYTHON",
)
MAX_ENV_VALUE = 200


class SystemContextProvider(ContextProvider):
    def description(self) -> ContextProviderDescription:
        return ContextProviderDescription(
            name="system",
            display_title="System Info",
            description="System information like OS, env vars. Use @system os|env|cwd",
            type=ContextProviderType.SYSTEM,
        )

    async def get_context_items(self, query: str, extras: ContextExtras) -> list[ContextItem]:
        query = query.strip().lower() or "os"
        if query == "os":
            return [self.os_info()]
        if query == "env":
            return [self.env_vars()]
        if query == "cwd":
            return [self.cwd(extras)]
        if query == "all":
            return [self.os_info(), self.cwd(extras)]
        raise ContextProviderError(
            "system", f"unknown system query: {query}. Use: os, env, cwd, all"
        )

    @staticmethod
    def os_info() -> ContextItem:
        content = (
            f"OS: {platform.system().lower()}\n"
            f"Architecture: {platform.machine()}\n"
            f"Hostname: {socket.gethostname()}\n"
            f"Python Version: {platform.python_version()}\n"
            f"NumCPU: {os.cpu_count() or 1}\n"
        )
        return ContextItem(name="system-os", description="Operating system information", content=content)

    @staticmethod
    def env_vars() -> ContextItem:
        lines = []
        for key in SAFE_ENV_VARS:
            value = os.environ.get(key, "")
            if not value:
                continue
            if len(value) > MAX_ENV_VALUE:
                value = value[:MAX_ENV_VALUE] + "..."
            lines.append(f"{key}={value}\n")
        return ContextItem(
            name="system-env",
            description="Selected environment variables",
            content="".join(lines),
        )

    @staticmethod
    def cwd(extras: ContextExtras) -> ContextItem:
        return ContextItem(
            name="system-cwd",
            description="Current working directory",
            content=extras.work_dir or os.getcwd(),
        )
