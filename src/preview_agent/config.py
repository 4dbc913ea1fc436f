"""Agent configuration loaded from a TOML file.

Example usage:
    config = load_config(Path("/etc/preview-agent/config.toml"))
    config.idle_timeout_seconds  # 1800
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    Field,
    StringConstraints,
    ValidationError,
)

from preview_agent.errors import ConfigError
from preview_agent.models.policy import AuthPolicy

CONFIG_ENV_VAR = "PREVIEW_AGENT_CONFIG"

DEFAULT_CONFIG_PATHS = (
    Path("/etc/preview-agent/config.toml"),
    Path("config.toml"),
    Path("preview-agent.toml"),
)

_DURATION_PATTERN = re.compile(r"^(?:(?P<h>\d+)h)?(?:(?P<m>\d+)m)?(?:(?P<s>\d+)s)?$")


def parse_duration(value: str) -> int:
    """Parse ``"30m"``, ``"1h"``, ``"2h30m"`` or ``"45s"`` into seconds.

    Raises:
        ValueError: when the value is empty, malformed or zero.
    """
    text = value.strip().lower()
    match = _DURATION_PATTERN.match(text)
    if not text or match is None:
        msg = f"invalid duration: {value!r}"
        raise ValueError(msg)
    hours = int(match.group("h") or 0)
    minutes = int(match.group("m") or 0)
    seconds = int(match.group("s") or 0)
    total = hours * 3600 + minutes * 60 + seconds
    if total <= 0:
        msg = f"duration must be positive: {value!r}"
        raise ValueError(msg)
    return total


def _check_duration(value: str) -> str:
    parse_duration(value)
    return value


DurationStr = Annotated[str, AfterValidator(_check_duration)]


def _lowercase(value: object) -> object:
    return value.strip().lower() if isinstance(value, str) else value


LogLevel = Annotated[
    Literal["critical", "error", "warning", "info", "debug"], BeforeValidator(_lowercase)
]


class BackupConfig(BaseModel):
    """Daily database backup settings."""

    enabled: bool = False
    schedule_hour: int = Field(default=3, ge=0, le=23)
    retain_days: int = Field(default=7, ge=1)
    local_dir: Path = Path("/var/backups/preview-agent")


class AgentConfig(BaseModel):
    """Top-level agent settings."""

    tld: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    port: int = Field(default=9876, ge=1, le=65535)
    db_path: Path = Path("/var/lib/preview-agent/db.sqlite")
    project_list_path: Path = Path("/home/ddev/.ddev/project_list.yaml")
    projects_dir: Path = Path("/home/ddev/www")
    idle_timeout: DurationStr = "30m"
    idle_check_interval: DurationStr = "5m"
    reload_poll_interval: DurationStr = "1m"
    access_log_retain_days: int = Field(default=30, ge=1)
    log_level: LogLevel = "info"
    templates_dir: Path | None = None
    auth: AuthPolicy = Field(default_factory=AuthPolicy)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    config_path: Path | None = None

    @property
    def idle_timeout_seconds(self) -> int:
        return parse_duration(self.idle_timeout)

    @property
    def idle_check_interval_seconds(self) -> int:
        return parse_duration(self.idle_check_interval)

    @property
    def reload_poll_interval_seconds(self) -> int:
        return parse_duration(self.reload_poll_interval)


def find_config_path() -> Path | None:
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return next((path for path in DEFAULT_CONFIG_PATHS if path.exists()), None)


def _format_validation_error(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "config"
        messages.append(f"{location}: {error['msg']}")
    return messages


def parse_config(raw: dict[str, object], *, config_path: Path | None = None) -> AgentConfig:
    """Validate a parsed mapping, collecting every problem into one ConfigError."""
    payload = dict(raw)
    payload["config_path"] = config_path
    try:
        return AgentConfig.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc


def load_config(path: Path | None = None) -> AgentConfig:
    config_path = path if path is not None else find_config_path()
    if config_path is None:
        searched = ", ".join(str(candidate) for candidate in DEFAULT_CONFIG_PATHS)
        raise ConfigError(f"no config file found (searched {searched})")
    if not config_path.exists():
        raise ConfigError(f"config file not found: {config_path}")
    try:
        raw = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc
    return parse_config(raw, config_path=config_path.resolve())
