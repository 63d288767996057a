import io
import sys

import pytest

from vibe_devops.executor import TIMEOUT_EXIT_CODE, ExecSpec, LocalExecutor

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses sh")


@pytest.mark.asyncio
async def test_captures_and_mirrors_output():
    sink = io.StringIO()
    result = await LocalExecutor("linux").run(ExecSpec(command="echo out; echo err 1>&2", stdout=sink, stderr=sink))

    assert result.ok
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert "out\n" in sink.getvalue()


@pytest.mark.asyncio
async def test_non_zero_exit_is_returned():
    result = await LocalExecutor("linux").run(ExecSpec(command="exit 3"))
    assert result.exit_code == 3
    assert not result.ok


@pytest.mark.asyncio
async def test_timeout_reports_124():
    result = await LocalExecutor("linux").run(ExecSpec(command="exec sleep 5", timeout=0.2))
    assert result.timed_out
    assert result.exit_code == TIMEOUT_EXIT_CODE


@pytest.mark.asyncio
async def test_stdin_and_cwd(tmp_path):
    result = await LocalExecutor("linux").run(ExecSpec(command="cat; pwd", stdin="hello\n", cwd=str(tmp_path)))
    assert result.stdout.splitlines() == ["hello", str(tmp_path.resolve())]


@pytest.mark.asyncio
async def test_dry_run_does_nothing(tmp_path):
    marker = tmp_path / "marker"
    result = await LocalExecutor("linux").run(ExecSpec(command=f"touch {marker}", dry_run=True))
    assert result.ok
    assert not marker.exists()
