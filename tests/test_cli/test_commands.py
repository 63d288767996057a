import yaml
from typer.testing import CliRunner

from vibe_devops import main
from vibe_devops.checkpoint import CheckpointInfo
from vibe_devops.config import CONFIG_FILENAME, Config
from vibe_devops.diagnose import Check, DiagnoseResult, Issue
from vibe_devops.exceptions import ProviderNotConfiguredError
from vibe_devops.llm import GenerateResponse
from vibe_devops.main import app, rewrite_args
from vibe_devops.session import Scope

runner = CliRunner()


def _write_config(tmp_path, **sections) -> Config:
    cfg = Config.default()
    cfg.safety.backup_dir = str(tmp_path / "backups")
    for name, value in sections.items():
        setattr(cfg.ai, name, value)
    cfg.write(tmp_path)
    return cfg


def test_rewrite_args():
    assert rewrite_args(["list", "files"]) == ["run", "list", "files"]
    assert rewrite_args(["run", "list"]) == ["run", "list"]
    assert rewrite_args(["config", "provider", "ollama"]) == ["config", "provider", "ollama"]
    assert rewrite_args(["--help"]) == ["--help"]
    assert rewrite_args(["diagnose", "--ai"]) == ["diagnose", "--ai"]
    assert rewrite_args(["undo", "--last"]) == ["undo", "--last"]
    assert rewrite_args([]) == []


def test_init_creates_config_once(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path)])
    assert result.exit_code == 0
    assert (tmp_path / CONFIG_FILENAME).exists()
    assert "Next steps" in result.output

    again = runner.invoke(app, ["init", str(tmp_path)])
    assert again.exit_code == 0
    assert "already exists" in again.output


def test_init_missing_directory(tmp_path):
    result = runner.invoke(app, ["init", str(tmp_path / "nope")])
    assert result.exit_code == 1
    assert "directory does not exist" in result.output


def test_commands_require_init(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["run", "list", "files"])
    assert result.exit_code == 1
    assert "vibe init" in result.output


def test_config_provider(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)

    result = runner.invoke(app, ["config", "provider", "ollama"])

    assert result.exit_code == 0
    data = yaml.safe_load((tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8"))
    assert data["ai"]["provider"] == "ollama"

    bad = runner.invoke(app, ["config", "provider", "claude"])
    assert bad.exit_code == 1
    assert "unsupported provider" in bad.output


def test_config_api_key_for_gemini_selects_model(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)

    async def fake_models(api_key):
        assert api_key == "real-key"
        return ["models/gemini-1.5-flash", "models/gemini-1.5-pro"]

    monkeypatch.setattr(main, "list_gemini_models", fake_models)

    result = runner.invoke(app, ["config", "api-key", "real-key"], input="2\n")

    assert result.exit_code == 0, result.output
    cfg = Config.load(tmp_path)
    assert cfg.ai.gemini.api_key == "real-key"
    assert cfg.ai.gemini.model == "gemini-1.5-pro"


def test_config_api_key_rejected_for_ollama(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    runner.invoke(app, ["config", "provider", "ollama"])

    result = runner.invoke(app, ["config", "api-key", "x"])

    assert result.exit_code == 1
    assert "does not use an API key" in result.output


def test_model_set_directly(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)

    result = runner.invoke(app, ["model", "models/gemini-2.0-flash"])

    assert result.exit_code == 0
    assert Config.load(tmp_path).ai.gemini.model == "gemini-2.0-flash"


def test_model_listing_requires_key(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)

    result = runner.invoke(app, ["model", "--list"])

    assert result.exit_code == 1
    assert "API key is not configured" in result.output


def test_model_list(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = _write_config(tmp_path)
    cfg.ai.gemini.api_key = "real-key"
    cfg.write(tmp_path)

    async def fake_models(api_key):
        return ["models/gemini-1.5-flash"]

    monkeypatch.setattr(main, "list_gemini_models", fake_models)
    result = runner.invoke(app, ["model", "--list"])

    assert result.exit_code == 0
    assert "gemini-1.5-flash" in result.output
    assert Config.load(tmp_path).ai.gemini.model == "gemini-pro"


def test_restore_list_without_backups(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)

    result = runner.invoke(app, ["restore", "--list"])

    assert result.exit_code == 0
    assert "No safety backups found" in result.output


def test_restore_interactive(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    cfg = _write_config(tmp_path)
    target = tmp_path / "app.conf"
    target.write_text("v1", encoding="utf-8")
    main.BackupManager(cfg.safety.backup_dir).create_backup("rm app.conf", [str(target)])
    target.write_text("v2", encoding="utf-8")

    result = runner.invoke(app, ["restore"], input="1\ny\n")

    assert result.exit_code == 0, result.output
    assert "Restored 1 path(s)" in result.output
    assert target.read_text(encoding="utf-8") == "v1"


def test_run_maps_flags(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    captured = {}

    async def fake_run_request(cfg, request, flags):
        captured["request"] = request
        captured["flags"] = flags

    monkeypatch.setattr(main, "_run_request", fake_run_request)

    result = runner.invoke(
        app,
        ["run", "restart", "nginx", "--no-self-heal", "--session", "web", "--session-scope", "project", "--stream"],
    )

    assert result.exit_code == 0, result.output
    flags = captured["flags"]
    assert captured["request"] == "restart nginx"
    assert flags.agent_mode is True
    assert flags.agent_max_steps == 5
    assert flags.self_heal is False
    assert flags.self_heal_max_attempts == 3
    assert flags.session_name == "web"
    assert flags.session_scope == Scope.PROJECT
    assert flags.use_session is True
    assert flags.stream is True
    assert flags.checkpoint is False


def test_run_rejects_bad_scope(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    result = runner.invoke(app, ["run", "x", "--session-scope", "team"])
    assert result.exit_code == 1
    assert "invalid session scope" in result.output


def test_logs_command_summarizes_and_asks_agent(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    (tmp_path / "app.log").write_text("INFO up\nERROR connection refused\n", encoding="utf-8")
    captured = {}

    async def fake_run_request(cfg, request, flags):
        captured["request"] = request
        captured["flags"] = flags

    monkeypatch.setattr(main, "_run_request", fake_run_request)

    result = runner.invoke(app, ["logs", "app.log", "--lines", "50"])

    assert result.exit_code == 0, result.output
    assert "Issues detected: 1" in result.output
    assert captured["request"].endswith("@logs app.log:50")
    assert captured["flags"].self_heal is False


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "Vibe DevOps v" in result.output


def test_run_checkpoint_flag(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    captured = {}

    async def fake_run_request(cfg, request, flags):
        captured["flags"] = flags

    monkeypatch.setattr(main, "_run_request", fake_run_request)

    result = runner.invoke(app, ["run", "upgrade", "deps", "--checkpoint"])

    assert result.exit_code == 0, result.output
    assert captured["flags"].checkpoint is True


class FakeCheckpoints:
    def __init__(self, work_dir=".", repo=True, checkpoints=None, dirty=False):
        self.repo = repo
        self.checkpoints = checkpoints or []
        self.dirty = dirty
        self.restored: list[str] = []

    def is_git_repo(self):
        return self.repo

    def recent(self, limit=10):
        return self.checkpoints[:limit]

    def has_uncommitted_changes(self):
        return self.dirty

    def restore(self, commit_hash):
        self.restored.append(commit_hash)


def _checkpoints(monkeypatch, **kwargs) -> FakeCheckpoints:
    fake = FakeCheckpoints(**kwargs)
    monkeypatch.setattr(main, "GitCheckpoints", lambda work_dir=".": fake)
    return fake


SAVED = [
    CheckpointInfo("abc1234", "[vibe-checkpoint] Before AI session at 10:00:00", "2 minutes ago"),
    CheckpointInfo("def5678", "[vibe-checkpoint] Before AI session at 09:00:00", "1 hour ago"),
]


def test_undo_outside_git_repository(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _checkpoints(monkeypatch, repo=False)

    result = runner.invoke(app, ["undo", "--last"])

    assert result.exit_code == 1
    assert "not a git repository" in result.output


def test_undo_without_checkpoints(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _checkpoints(monkeypatch)

    result = runner.invoke(app, ["undo"])

    assert result.exit_code == 0
    assert "No vibe checkpoints found" in result.output
    assert "vibe run --checkpoint" in result.output


def test_undo_list_does_not_restore(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    fake = _checkpoints(monkeypatch, checkpoints=list(SAVED))

    result = runner.invoke(app, ["undo", "--list"])

    assert result.exit_code == 0, result.output
    assert "abc1234" in result.output
    assert "def5678" in result.output
    assert fake.restored == []


def test_undo_last(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    fake = _checkpoints(monkeypatch, checkpoints=list(SAVED))

    result = runner.invoke(app, ["undo", "--last"])

    assert result.exit_code == 0, result.output
    assert fake.restored == ["abc1234"]
    assert "Workspace restored" in result.output


def test_undo_interactive_selection(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    fake = _checkpoints(monkeypatch, checkpoints=list(SAVED), dirty=True)

    declined = runner.invoke(app, ["undo"], input="2\nn\n")
    assert declined.exit_code == 0, declined.output
    assert "uncommitted changes" in declined.output
    assert fake.restored == []

    result = runner.invoke(app, ["undo"], input="2\ny\n")
    assert result.exit_code == 0, result.output
    assert fake.restored == ["def5678"]

    bad = runner.invoke(app, ["undo"], input="7\n")
    assert bad.exit_code == 1
    assert "invalid selection" in bad.output


class FakeDiagnoseService:
    def __init__(self, result: DiagnoseResult):
        self.result = result

    async def run(self) -> DiagnoseResult:
        return self.result


PROBLEMS = DiagnoseResult(
    warnings=[Issue("docker", "Docker not running", fix_command="sudo systemctl start docker")],
    ok=[Check("network", "SSH", "port 22 open")],
)


def test_diagnose_works_without_init(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main, "_diagnose_service", lambda cfg: FakeDiagnoseService(PROBLEMS))

    result = runner.invoke(app, ["diagnose"])

    assert result.exit_code == 0, result.output
    assert "System Diagnostics Report" in result.output
    assert "Docker not running" in result.output
    assert "Found 1 warnings, 0 errors, 1 OK" in result.output
    assert "Analyzing with AI" not in result.output


def test_diagnose_ai_skips_healthy_system(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    healthy = DiagnoseResult(ok=[Check("disk", "Disk /", "12.0%")])
    monkeypatch.setattr(main, "_diagnose_service", lambda cfg: FakeDiagnoseService(healthy))

    result = runner.invoke(app, ["diagnose", "--ai"])

    assert result.exit_code == 0
    assert "Nothing to analyze." in result.output


def test_diagnose_ai_analysis(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main, "_diagnose_service", lambda cfg: FakeDiagnoseService(PROBLEMS))
    prompts = []

    class AnalystProvider:
        async def is_configured(self):
            return None

        async def generate(self, request):
            prompts.append(request.prompt)
            return GenerateResponse(text="Start the docker daemon [now].")

        async def close(self):
            return None

    monkeypatch.setattr(main, "create_provider_from_config", lambda cfg: AnalystProvider())

    result = runner.invoke(app, ["diagnose", "--ai"])

    assert result.exit_code == 0, result.output
    assert "AI Analysis" in result.output
    assert "Start the docker daemon [now]." in result.output
    assert "- docker: Docker not running" in prompts[0]


def test_diagnose_ai_unavailable(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main, "_diagnose_service", lambda cfg: FakeDiagnoseService(PROBLEMS))

    class UnconfiguredProvider:
        async def is_configured(self):
            raise ProviderNotConfiguredError("gemini")

        async def close(self):
            return None

    monkeypatch.setattr(main, "create_provider_from_config", lambda cfg: UnconfiguredProvider())

    result = runner.invoke(app, ["diagnose", "--ai"])

    assert result.exit_code == 0
    assert "AI analysis unavailable" in result.output
    assert "gemini API key is not configured" in result.output


def test_logging_outlives_cli_invocation(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VIBE_DEBUG", "1")
    monkeypatch.setattr(main, "_diagnose_service", lambda cfg: FakeDiagnoseService(PROBLEMS))

    assert runner.invoke(app, ["diagnose"]).exit_code == 0

    # The runner's stderr is gone by now; logging must still have somewhere to write.
    main.log.debug("after invoke", command="diagnose")
