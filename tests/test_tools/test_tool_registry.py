import asyncio
import threading

import pytest

from vibe_devops.exceptions import ToolExecutionError, ToolNotFoundError
from vibe_devops.locks import ReadWriteLock
from vibe_devops.tools import build_default_registry
from vibe_devops.tools.registry import (
    Tool,
    ToolDefinition,
    ToolExtras,
    ToolPolicy,
    ToolRegistry,
    ToolResult,
)


class EchoTool(Tool):
    def __init__(self, name: str, group: str = "test", read_only: bool = True, delay: float = 0.0):
        self._definition = ToolDefinition(
            name=name,
            description="Echo the input text",
            input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
            read_only=read_only,
            default_policy=ToolPolicy.ALLOWED if read_only else ToolPolicy.WITH_PERMISSION,
            group=group,
        )
        self.delay = delay

    def definition(self) -> ToolDefinition:
        return self._definition

    async def run(self, arguments, extras: ToolExtras) -> ToolResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        return ToolResult(content=str(arguments.get("text", "")))


class BrokenTool(EchoTool):
    async def run(self, arguments, extras: ToolExtras) -> ToolResult:
        raise RuntimeError("disk on fire")


def test_list_by_group():
    registry = build_default_registry(".", include_shell=True)

    assert [t.name for t in registry.list_by_group("filesystem")] == ["read_file", "list_dir", "grep"]
    assert [t.name for t in registry.list_by_group("system")] == ["run_shell"]
    assert registry.list_by_group("network") == []


def test_duplicate_and_unregister():
    registry = ToolRegistry()
    registry.register(EchoTool("echo"))

    with pytest.raises(ValueError, match="already registered"):
        registry.register(EchoTool("echo"))

    assert registry.has_tool("echo")
    registry.unregister("echo")
    assert not registry.has_tool("echo")
    assert len(registry) == 0
    with pytest.raises(ToolNotFoundError):
        registry.get("echo")

    registry.unregister("echo")
    registry.register(EchoTool("echo"))
    assert [d.name for d in registry.definitions()] == ["echo"]


def test_empty_name_rejected():
    with pytest.raises(ValueError):
        ToolRegistry().register(EchoTool(""))


def test_concurrent_register_and_get():
    registry = ToolRegistry()
    registry.register(EchoTool("base"))
    errors: list[BaseException] = []
    start = threading.Barrier(16)

    def writer(index: int) -> None:
        start.wait()
        try:
            for i in range(50):
                registry.register(EchoTool(f"w{index}-{i}"))
        except BaseException as e:
            errors.append(e)

    def reader() -> None:
        start.wait()
        try:
            for _ in range(200):
                assert registry.get("base").name == "base"
                registry.list()
        except BaseException as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    threads += [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert len(registry) == 1 + 8 * 50


def test_lock_excludes_readers_while_writing():
    lock = ReadWriteLock()
    events: list[str] = []
    writer_holding = threading.Event()
    release_writer = threading.Event()

    def writer() -> None:
        with lock.write():
            writer_holding.set()
            release_writer.wait(timeout=5)
            events.append("write-done")

    def reader() -> None:
        writer_holding.wait(timeout=5)
        with lock.read():
            events.append("read")

    w = threading.Thread(target=writer)
    r = threading.Thread(target=reader)
    w.start()
    r.start()
    writer_holding.wait(timeout=5)
    release_writer.set()
    w.join(timeout=5)
    r.join(timeout=5)

    assert events == ["write-done", "read"]


@pytest.mark.asyncio
async def test_execute_wraps_tool_failures():
    registry = ToolRegistry()
    registry.register(BrokenTool("broken"))

    with pytest.raises(ToolExecutionError, match="disk on fire"):
        await registry.execute("broken", {})


@pytest.mark.asyncio
async def test_execute_times_out():
    registry = ToolRegistry()
    slow = EchoTool("slow", delay=5.0)
    slow.timeout_seconds = 1.0
    registry.register(slow)

    with pytest.raises(ToolExecutionError, match="timed out after 1s"):
        await registry.execute("slow", {"text": "hi"})


@pytest.mark.asyncio
async def test_unknown_tool():
    with pytest.raises(ToolNotFoundError, match="unknown tool: nope"):
        await ToolRegistry().execute("nope", {})
