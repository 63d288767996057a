"""Configuration management for Vibe DevOps."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from vibe_devops.exceptions import ConfigurationError


# Paths
CONFIG_FILENAME = ".vibe.yaml"
DEFAULT_API_KEY_PLACEHOLDER = "YOUR_GEMINI_API_KEY_HERE"
DEFAULT_GLOBAL_DIR = Path("~/.vibe")
SUPPORTED_PROVIDERS = ("gemini", "ollama", "openai")


class _AliasedModel(BaseModel):
    """Base for sections whose YAML keys are camelCase."""

    model_config = ConfigDict(populate_by_name=True)


class GeminiConfig(_AliasedModel):
    """Gemini provider configuration."""

    api_key: str = Field(default=DEFAULT_API_KEY_PLACEHOLDER, alias="apiKey")
    model: str = "gemini-pro"


class OllamaConfig(_AliasedModel):
    """Ollama provider configuration."""

    host: str = "http://localhost:11434"
    model: str = "llama3"


class OpenAIConfig(_AliasedModel):
    """OpenAI-compatible provider configuration."""

    api_key: str = Field(default="", alias="apiKey")
    model: str = "gpt-4o-mini"
    base_url: str = Field(default="https://api.openai.com/v1", alias="baseUrl")


class AIConfig(_AliasedModel):
    """Active provider and per-provider settings."""

    provider: str = "gemini"
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)


class AgentConfig(BaseModel):
    """Agent loop configuration."""

    max_steps: int = 10
    extend_steps: int = 10
    self_heal: bool = True
    self_heal_max_attempts: int = 3
    checkpoint: bool = False


class SessionConfig(BaseModel):
    """Session memory configuration."""

    enabled: bool = True
    name: str = "default"
    scope: str = "both"
    max_recent_lines: int = 40
    max_recent_chars: int = 8000
    project_dir: str = ".vibe"
    global_dir: str = str(DEFAULT_GLOBAL_DIR)


class SafetyConfig(BaseModel):
    """Backup configuration for dangerous commands."""

    backup_dir: str = str(DEFAULT_GLOBAL_DIR / "backups")
    retention_days: int = 7


class DiagnoseConfig(BaseModel):
    """Health-check thresholds for `vibe diagnose`."""

    disk_warn_percent: float = 85.0
    memory_warn_percent: float = 80.0
    command_timeout: float = 10.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Vibe DevOps."""

    ai: AIConfig = Field(default_factory=AIConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    diagnose: DiagnoseConfig = Field(default_factory=DiagnoseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="VIBE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @staticmethod
    def config_path(directory: Path | str = ".") -> Path:
        return Path(directory).expanduser() / CONFIG_FILENAME

    @classmethod
    def default(cls) -> "Config":
        """Configuration written by `vibe init`."""
        return cls()

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file, defaults when absent."""
        config_path = Path(path).expanduser() if path else cls.config_path()

        if not config_path.exists():
            return cls()

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(f"invalid configuration in {config_path}")
        return cls(**data)

    @classmethod
    def load(cls, directory: Path | str = ".") -> "Config":
        """Load `.vibe.yaml` from a directory; the file must exist.

        Raises:
            ConfigurationError: when the file is missing or malformed.
        """
        config_path = cls.config_path(directory)
        if not config_path.exists():
            raise ConfigurationError(
                f"could not load configuration from {CONFIG_FILENAME}. "
                "Please run 'vibe init' first."
            )
        try:
            return cls.from_yaml(config_path)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationError(f"invalid configuration in {config_path}: {e}") from e

    def to_yaml_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"debug"})

    def save(self, path: Path | str | None = None) -> Path:
        """Save configuration to YAML file."""
        config_path = Path(path).expanduser() if path else self.config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_yaml_dict(), f, default_flow_style=False, sort_keys=False)
        return config_path

    def write(self, directory: Path | str = ".") -> Path:
        return self.save(self.config_path(directory))

    def set_provider(self, provider: str) -> None:
        name = (provider or "").strip().lower()
        if name not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"unsupported provider: '{provider}'. Use one of: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        self.ai.provider = name

    def set_api_key(self, api_key: str) -> None:
        """Set the API key of the active provider."""
        provider = self.ai.provider
        if provider == "gemini":
            self.ai.gemini.api_key = api_key
        elif provider == "openai":
            self.ai.openai.api_key = api_key
        else:
            raise ConfigurationError(f"provider '{provider}' does not use an API key")

    def set_model(self, model: str) -> None:
        """Set the model of the active provider."""
        model = (model or "").strip().removeprefix("models/")
        section = getattr(self.ai, self.ai.provider, None)
        if section is None:
            raise ConfigurationError(f"unsupported provider: '{self.ai.provider}'")
        section.model = model

    @property
    def active_model(self) -> str:
        section = getattr(self.ai, self.ai.provider, None)
        return section.model if section is not None else ""


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_yaml()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
