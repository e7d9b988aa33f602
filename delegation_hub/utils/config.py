"""Hub configuration.

Settings come from three layers, later layers winning: model defaults, an
optional YAML file (``configs/app.yaml``), then environment variables, which
may themselves be seeded from a ``.env`` file. ``ENV_OVERRIDES`` lists every
variable that is honoured.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogFormat(str, Enum):
    JSON = "json"
    CONSOLE = "console"


class StateStoreBackend(str, Enum):
    """Where agent records live between requests."""

    MEMORY = "memory"
    FILE = "file"


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AppSettings(BaseModel):
    env: Environment = Environment.DEVELOPMENT
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    name: str = "Delegation Hub"
    version: str = "1.0.0"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: LogFormat = LogFormat.JSON

    @field_validator("level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        return level


class SchedulerConfig(BaseModel):
    """Limits applied by ``HubScheduler``."""

    max_depth: int = Field(
        default=2, gt=0, description="Deepest allowed delegation; 1 is external only"
    )
    max_concurrency: int = Field(
        default=16, gt=0, description="Invocations allowed to run at once, hub-wide"
    )
    default_task_timeout: Annotated[float, Field(gt=0)] | None = Field(
        default=None, description="Seconds, for tasks that set no timeout"
    )
    max_retained_executions: int = Field(
        default=256, gt=0, description="Finished executions kept for lookups"
    )


class StateStoreConfig(BaseModel):
    backend: StateStoreBackend = StateStoreBackend.MEMORY
    path: str = Field(default=".agents", description="Record directory for 'file'")


# (section, field) -> environment variable
ENV_OVERRIDES: dict[tuple[str, str], str] = {
    ("app", "env"): "APP_ENV",
    ("app", "debug"): "APP_DEBUG",
    ("app", "host"): "APP_HOST",
    ("app", "port"): "APP_PORT",
    ("logging", "level"): "LOG_LEVEL",
    ("logging", "format"): "LOG_FORMAT",
    ("scheduler", "max_depth"): "HUB_MAX_DEPTH",
    ("scheduler", "max_concurrency"): "HUB_MAX_CONCURRENCY",
    ("scheduler", "default_task_timeout"): "HUB_TASK_TIMEOUT",
    ("scheduler", "max_retained_executions"): "HUB_MAX_RETAINED",
    ("state_store", "backend"): "STATE_STORE_BACKEND",
    ("state_store", "path"): "STATE_STORE_PATH",
}


class AppConfig(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    state_store: StateStoreConfig = Field(default_factory=StateStoreConfig)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "AppConfig":
        """Parse a YAML file whose top-level keys are the config sections.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the document is not a mapping
        """
        path = Path(yaml_path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping of config sections")
        return cls.model_validate(data)

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "AppConfig":
        """Defaults overridden by the environment only."""
        return cls.load(env_file=env_file)

    @classmethod
    def load(
        cls,
        yaml_path: str | Path | None = None,
        env_file: str | Path | None = None,
    ) -> "AppConfig":
        """Defaults, then ``yaml_path`` if given, then environment variables.

        ``env_file`` is loaded into the process environment first; variables
        that are already set are not replaced by it.
        """
        load_dotenv(env_file)
        base = cls.from_yaml(yaml_path) if yaml_path else cls()
        data = base.model_dump()
        for (section, field), variable in ENV_OVERRIDES.items():
            raw = os.getenv(variable)
            if raw:
                data[section][field] = raw
        return cls.model_validate(data)

    def describe(self) -> dict[str, Any]:
        """Flat view used by the startup banner and log line."""
        return {
            "env": self.app.env.value,
            "max_depth": self.scheduler.max_depth,
            "max_concurrency": self.scheduler.max_concurrency,
            "default_task_timeout": self.scheduler.default_task_timeout,
            "max_retained_executions": self.scheduler.max_retained_executions,
            "state_store": self.state_store.backend.value,
        }


_config: AppConfig | None = None


def get_config() -> AppConfig:
    if _config is None:
        raise RuntimeError("Configuration not initialized. Call init_config() first.")
    return _config


def init_config(
    yaml_path: str | Path | None = None,
    env_file: str | Path | None = None,
) -> AppConfig:
    """Load the configuration and make it the process-wide instance."""
    global _config
    _config = AppConfig.load(yaml_path=yaml_path, env_file=env_file)
    return _config


def reset_config() -> None:
    global _config
    _config = None
