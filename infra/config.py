"""
Configuration Manager
---------------------
Loads config.yaml, applies environment overrides and validates the result.

Rules:
- Secrets never in config files, only the name of the variable holding them
- Environment variables override file values: ECHO_<FIELD> for top-level
  fields, ECHO_<SECTION>__<KEY> for nested ones
- Missing file -> defaults (with a warning); invalid file -> ConfigError
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type
import logging
import os

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    SettingsError,
)

from core.errors import ConfigError, StartupError


class PlannerSettings(BaseModel):
    """Chat-completions backend used by the planner adapter."""
    model: str = "gpt-4-turbo-preview"
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"  # Environment variable name (NOT the key)
    timeout_seconds: float = Field(default=60.0, gt=0)
    temperature: Optional[float] = None


class SessionSettings(BaseModel):
    max_cycles: int = Field(default=6, ge=1)
    max_history_turns: int = Field(default=20, ge=1)


class ExecutorSettings(BaseModel):
    timeout_seconds: float = Field(default=30.0, gt=0)


class SupervisorSettings(BaseModel):
    startup_timeout_seconds: float = Field(default=20.0, gt=0)
    shutdown_timeout_seconds: float = Field(default=5.0, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    dir: str = "logs"
    file: bool = True


class ProviderSpec(BaseModel):
    """How to launch one provider process."""
    id: str
    command: str
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    cwd: Optional[str] = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("provider id must not be empty")
        return value

    def resolved_args(self, workspace: str) -> List[str]:
        """Expand the {workspace} placeholder in the argument list."""
        return [arg.replace("{workspace}", workspace) for arg in self.args]


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ECHO_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    workspace_dir: str = "./echo-workspace"
    policy_path: str = "config/policy.yaml"
    planner: PlannerSettings = Field(default_factory=PlannerSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    providers: List[ProviderSpec] = Field(default_factory=list)

    @field_validator("providers")
    @classmethod
    def _unique_provider_ids(cls, value: List[ProviderSpec]) -> List[ProviderSpec]:
        seen = set()
        for spec in value:
            if spec.id in seen:
                raise ValueError(f"duplicate provider id: {spec.id}")
            seen.add(spec.id)
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs; the environment outranks them
        return env_settings, init_settings


_logger = logging.getLogger("echo.infra.config")


def load_config(path: str = "config.yaml") -> AppConfig:
    """Load and validate configuration."""
    config_path = Path(path)
    data: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config root must be a mapping: {config_path}")
        _logger.info(f"Loaded config from {config_path}")
    else:
        _logger.warning(f"Config file not found: {config_path}, using defaults")

    try:
        return AppConfig(**{str(key): value for key, value in data.items()})
    except (ValidationError, SettingsError) as e:
        raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def require_credential(settings: PlannerSettings, environ: Optional[Dict[str, str]] = None) -> str:
    """
    Return the planner credential or fail startup.

    Called before any provider is spawned.
    """
    env = os.environ if environ is None else environ
    value = env.get(settings.api_key_env)
    if not value:
        raise StartupError(f"{settings.api_key_env} is not set in environment variables")
    return value
