"""Project directory: names, working directories, hostnames and per-project overrides."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from preview_agent.config import parse_duration
from preview_agent.models.policy import PolicyKind

logger = logging.getLogger(__name__)

PROJECT_CONFIG_RELATIVE_PATH = Path(".ddev") / "config.preview.yaml"
NEVER = "never"


@dataclass(frozen=True, slots=True)
class PerProjectConfig:
    """Optional overrides read from a project's ``.ddev/config.preview.yaml``.

    ``idle_timeout`` is either a duration string or ``"never"``; ``None``
    means the global setting applies.
    """

    auth_policy: PolicyKind | None = None
    idle_timeout: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.auth_policy is None and self.idle_timeout is None

    @property
    def never_stop(self) -> bool:
        return self.idle_timeout is not None and self.idle_timeout.lower() == NEVER

    @property
    def idle_timeout_seconds(self) -> int | None:
        if self.idle_timeout is None or self.never_stop:
            return None
        return parse_duration(self.idle_timeout)


def _read_yaml_mapping(path: Path) -> dict[object, object]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


def load_project_list(path: Path) -> dict[str, Path]:
    """Read the external tool's ``name -> working directory`` registry.

    Accepts both ``name: /path`` and ``name: {approot: /path, ...}`` entries.
    """
    if not path.exists():
        return {}
    try:
        data = _read_yaml_mapping(path)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("cannot read project list %s: %s", path, exc)
        return {}

    projects: dict[str, Path] = {}
    for name, value in data.items():
        if isinstance(value, dict):
            value = value.get("approot")
        if not name or not value:
            continue
        projects[str(name)] = Path(str(value))
    return projects


def normalize_hostname(value: str) -> str:
    host = value.strip().lower().rstrip(".")
    if host.startswith("["):
        return host
    return host.split(":", 1)[0]


def build_hostname_index(projects: dict[str, Path], tld: str) -> dict[str, str]:
    suffix = tld.strip().lower().strip(".")
    return {f"{name.lower()}.{suffix}": name for name in projects}


def load_project_config(project_dir: Path) -> PerProjectConfig:
    config_path = project_dir / PROJECT_CONFIG_RELATIVE_PATH
    if not config_path.exists():
        return PerProjectConfig()
    try:
        data = _read_yaml_mapping(config_path)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("cannot load project config %s: %s", config_path, exc)
        return PerProjectConfig()

    auth_policy: PolicyKind | None = None
    raw_policy = data.get("auth_policy")
    if raw_policy is not None:
        try:
            auth_policy = PolicyKind(str(raw_policy).strip().lower())
        except ValueError:
            logger.warning("ignoring unknown auth_policy %r in %s", raw_policy, config_path)

    idle_timeout: str | None = None
    raw_timeout = data.get("idle_timeout")
    if raw_timeout is not None:
        candidate = str(raw_timeout).strip()
        if candidate.lower() == NEVER:
            idle_timeout = NEVER
        else:
            try:
                parse_duration(candidate)
            except ValueError:
                logger.warning("ignoring invalid idle_timeout %r in %s", raw_timeout, config_path)
            else:
                idle_timeout = candidate

    return PerProjectConfig(auth_policy=auth_policy, idle_timeout=idle_timeout)
