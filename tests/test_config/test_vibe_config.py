import pytest
import yaml

from vibe_devops.config import (
    CONFIG_FILENAME,
    DEFAULT_API_KEY_PLACEHOLDER,
    Config,
    get_config,
    set_config,
)
from vibe_devops.exceptions import ConfigurationError


def test_default_config_round_trips_with_camel_case_keys(tmp_path):
    path = Config.default().write(tmp_path)

    assert path == tmp_path / CONFIG_FILENAME
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["ai"]["provider"] == "gemini"
    assert data["ai"]["gemini"]["apiKey"] == DEFAULT_API_KEY_PLACEHOLDER
    assert data["ai"]["openai"]["baseUrl"] == "https://api.openai.com/v1"
    assert "debug" not in data

    loaded = Config.load(tmp_path)
    assert loaded.ai.gemini.api_key == DEFAULT_API_KEY_PLACEHOLDER
    assert loaded.agent.max_steps == 10


def test_load_reads_camel_case_yaml(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text(
        "ai:\n  provider: ollama\n  gemini:\n    apiKey: real-key\n  ollama:\n    host: http://box:11434\n    model: qwen\n",
        encoding="utf-8",
    )
    cfg = Config.load(tmp_path)
    assert cfg.ai.provider == "ollama"
    assert cfg.ai.gemini.api_key == "real-key"
    assert cfg.ai.ollama.host == "http://box:11434"
    assert cfg.active_model == "qwen"


def test_load_missing_file_asks_for_init(tmp_path):
    with pytest.raises(ConfigurationError, match="vibe init"):
        Config.load(tmp_path)


def test_load_malformed_file(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="invalid configuration"):
        Config.load(tmp_path)


def test_set_provider_validates():
    cfg = Config()
    cfg.set_provider(" OpenAI ")
    assert cfg.ai.provider == "openai"
    with pytest.raises(ConfigurationError, match="unsupported provider"):
        cfg.set_provider("claude")


def test_set_api_key_targets_active_provider():
    cfg = Config()
    cfg.set_api_key("g-key")
    assert cfg.ai.gemini.api_key == "g-key"

    cfg.set_provider("openai")
    cfg.set_api_key("o-key")
    assert cfg.ai.openai.api_key == "o-key"

    cfg.set_provider("ollama")
    with pytest.raises(ConfigurationError):
        cfg.set_api_key("nope")


def test_set_model_strips_models_prefix():
    cfg = Config()
    cfg.set_model("models/gemini-1.5-flash")
    assert cfg.ai.gemini.model == "gemini-1.5-flash"
    assert cfg.active_model == "gemini-1.5-flash"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("VIBE_AGENT__MAX_STEPS", "7")
    monkeypatch.setenv("VIBE_DEBUG", "true")
    cfg = Config.from_yaml(tmp_path / "absent.yaml")
    assert cfg.agent.max_steps == 7
    assert cfg.debug is True


def test_global_config_accessors():
    cfg = Config()
    set_config(cfg)
    assert get_config() is cfg


def test_diagnose_and_checkpoint_settings(tmp_path):
    defaults = Config()
    assert defaults.agent.checkpoint is False
    assert defaults.diagnose.disk_warn_percent == 85.0
    assert defaults.diagnose.memory_warn_percent == 80.0

    (tmp_path / CONFIG_FILENAME).write_text(
        "agent:\n  checkpoint: true\ndiagnose:\n  disk_warn_percent: 70\n  command_timeout: 3\n",
        encoding="utf-8",
    )
    cfg = Config.load(tmp_path)
    assert cfg.agent.checkpoint is True
    assert cfg.diagnose.disk_warn_percent == 70.0
    assert cfg.diagnose.memory_warn_percent == 80.0
    assert cfg.diagnose.command_timeout == 3.0
