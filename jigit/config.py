"""Configuration loading from YAML and environment.

The config file lives at ~/.jigit.yaml (override with JIGIT_CONFIG). Settings
the file leaves unset are read from env (GITLAB_ADDRESS, JIRA_PROJECT,
STORAGE_PATH, LOGGING_LEVEL, ...). Credentials are never stored here; they
are prompted once and kept in the storage file.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path("~/.jigit.yaml")
DEFAULT_STORAGE_PATH = "~/.local/share/jigit/cache.db"


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be used."""

    pass


class UnknownConfigKey(ConfigError):
    """Raised by set_config_value for keys outside CONFIG_KEYS."""

    def __init__(self, key: str) -> None:
        super().__init__(f"unknown configuration key '{key}'")
        self.key = key


class GitLabConfig(BaseSettings):
    """GitLab (tracker A) settings."""

    model_config = SettingsConfigDict(env_prefix="GITLAB_", extra="ignore")

    address: str = Field(default="", description="Address of your GitLab installation")


class JiraConfig(BaseSettings):
    """Jira (tracker B) settings."""

    model_config = SettingsConfigDict(env_prefix="JIRA_", extra="ignore")

    address: str = Field(default="", description="Address of your Jira installation")
    project: str = Field(default="", description="Jira project key new tickets are created in")
    issue_type: str = Field(default="Task", description="Issue type name for new tickets")


class StorageConfig(BaseSettings):
    """Persistent storage and cache settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", extra="ignore")

    path: str = Field(default=DEFAULT_STORAGE_PATH, description="Path to storage file")
    disable_cache: bool = Field(default=False, description="Always fetch projects and issues from remote")
    encrypt: bool = Field(default=False, description="Encrypt credentials at rest (not supported)")

    @property
    def resolved_path(self) -> Path:
        """Storage path with ~ expanded."""
        return Path(self.path).expanduser()


class LoggingConfig(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="LOGGING_", extra="ignore")

    level: str = Field(default="WARNING", description="Log level")
    format: str = Field(
        default="%(levelname)s %(name)s: %(message)s",
        description="Log format",
    )


class AppConfig(BaseSettings):
    """Root application config from YAML + env."""

    model_config = SettingsConfigDict(extra="ignore")

    editor: str = Field(default="", description="Editor command, same as $EDITOR")
    gitlab: GitLabConfig = Field(default_factory=GitLabConfig)
    jira: JiraConfig = Field(default_factory=JiraConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def editor_resolved(self) -> str:
        """Configured editor, falling back to $EDITOR."""
        return self.editor or os.environ.get("EDITOR", "")


# key -> (section, field, type, usage)
CONFIG_KEYS: dict[str, tuple[str | None, str, type, str]] = {
    "gitlab.address": ("gitlab", "address", str, "address of your GitLab installation"),
    "jira.address": ("jira", "address", str, "address of your Jira installation"),
    "jira.project": ("jira", "project", str, "Jira project key new tickets are created in"),
    "jira.issue_type": ("jira", "issue_type", str, "issue type of new Jira tickets"),
    "storage.path": ("storage", "path", str, "full path to the storage file"),
    "storage.disable_cache": ("storage", "disable_cache", bool, "ignore cached projects and issues if true"),
    "storage.encrypt": ("storage", "encrypt", bool, "encrypt stored credentials (unsupported)"),
    "logging.level": ("logging", "level", str, "DEBUG, INFO, WARNING or ERROR"),
    "editor": (None, "editor", str, "same as $EDITOR environment variable"),
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(value: str) -> bool:
    v = value.strip().lower()
    if v in _TRUE:
        return True
    if v in _FALSE:
        return False
    raise ValueError(f"expected a boolean, got '{value}'")


def _substitute_env(value: Any) -> Any:
    """Replace ${VAR} and $VAR in strings with os.environ."""
    if isinstance(value, str):
        if value.startswith("${") and value.endswith("}"):
            return os.environ.get(value[2:-1].strip(), value)
        if value.startswith("$") and not value.startswith("${"):
            return os.environ.get(value[1:].strip(), value)
        return value
    if isinstance(value, dict):
        return {k: _substitute_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute_env(v) for v in value]
    return value


def config_path(path: Path | None = None) -> Path:
    """Resolve config file path: explicit, JIGIT_CONFIG, or ~/.jigit.yaml."""
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get("JIGIT_CONFIG")
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Path | None = None) -> AppConfig:
    """Load config from YAML file and environment.

    Missing file yields defaults (env overrides still apply).
    """
    path = config_path(path)
    if not path.is_file():
        return AppConfig()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    raw = _substitute_env(raw)

    try:
        return AppConfig(
            editor=raw.get("editor") or "",
            gitlab=GitLabConfig(**(raw.get("gitlab") or {})),
            jira=JiraConfig(**(raw.get("jira") or {})),
            storage=StorageConfig(**(raw.get("storage") or {})),
            logging=LoggingConfig(**(raw.get("logging") or {})),
        )
    except ValidationError as e:
        raise ConfigError(f"{path}: {e}") from e


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write config to YAML. Creates parent dir if needed."""
    path = config_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    raw = yaml.dump(
        config.model_dump(mode="json"),
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
    )
    path.write_text(raw, encoding="utf-8")
    return path


def set_config_value(config: AppConfig, key: str, value: str) -> None:
    """Set a dotted configuration key in place.

    Raises UnknownConfigKey for keys outside CONFIG_KEYS and ValueError for
    values of the wrong type.
    """
    if key not in CONFIG_KEYS:
        raise UnknownConfigKey(key)
    section, field, kind, _ = CONFIG_KEYS[key]
    parsed: Any = _parse_bool(value) if kind is bool else value
    target = config if section is None else getattr(config, section)
    setattr(target, field, parsed)


def get_config_value(config: AppConfig, key: str) -> Any:
    """Return the value of a dotted configuration key."""
    if key not in CONFIG_KEYS:
        raise UnknownConfigKey(key)
    section, field, _, _ = CONFIG_KEYS[key]
    target = config if section is None else getattr(config, section)
    return getattr(target, field)


def validate_storage(config: AppConfig) -> Path:
    """Check storage settings before the store is opened; return the path."""
    if config.storage.encrypt:
        raise ConfigError(
            "storage.encrypt is set but encryption of stored credentials is not supported; "
            "run 'jigit config --set storage.encrypt false'"
        )
    path = config.storage.resolved_path
    if not path.is_absolute():
        raise ConfigError(f"storage.path must be an absolute path, got '{config.storage.path}'")
    return path
