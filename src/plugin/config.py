"""Configuration loader for the mount cache plugin."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from cache.errors import ConfigurationError

from .selector import BackendOption

BACKEND_SLOTS: Tuple[str, ...] = ("sftp", "s3")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def parse_bool(value: Any, field_name: str = "flag") -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigurationError(f"{field_name}: expected a boolean, got {value!r}")


def parse_mounts(value: Any) -> Tuple[str, ...]:
    """Accept a list or a comma-separated string; drop empty entries."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ConfigurationError(f"mount: expected a list or string, got {type(value).__name__}")
    return tuple(str(item).strip() for item in items if str(item).strip())


def _slot_value(value: Any) -> str:
    """Backend slots are serialized blobs; YAML mappings are re-encoded as JSON."""
    if value is None:
        return ""
    if isinstance(value, dict):
        return json.dumps(value)
    return str(value)


@dataclass(frozen=True)
class PluginConfig:
    rebuild: bool
    restore: bool
    mounts: Tuple[str, ...]
    repo: str
    branch: str
    path: str
    sftp: str = ""
    s3: str = ""
    fallback_branch: Optional[str] = None
    log_level: str = "INFO"

    @property
    def mode(self) -> str:
        if self.rebuild and self.restore:
            return "both"
        if self.rebuild:
            return "rebuild"
        if self.restore:
            return "restore"
        return "neither"

    def backend_slots(self) -> List[BackendOption]:
        return [BackendOption(name, getattr(self, name)) for name in BACKEND_SLOTS]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PluginConfig":
        fallback = data.get("fallback_branch")
        return cls(
            rebuild=parse_bool(data.get("rebuild", False), "rebuild"),
            restore=parse_bool(data.get("restore", False), "restore"),
            mounts=parse_mounts(data.get("mount")),
            repo=str(data.get("repo") or ""),
            branch=str(data.get("branch") or ""),
            path=str(data.get("path") or ""),
            sftp=_slot_value(data.get("sftp")),
            s3=_slot_value(data.get("s3")),
            fallback_branch=str(fallback) if fallback else None,
            log_level=str(data.get("log_level") or "INFO").upper(),
        )


ENV_MAP = {
    "rebuild": "PLUGIN_REBUILD",
    "restore": "PLUGIN_RESTORE",
    "mount": "PLUGIN_MOUNT",
    "repo": "DRONE_REPO",
    "branch": "DRONE_BRANCH",
    "path": "PLUGIN_PATH",
    "sftp": "PLUGIN_SFTP",
    "s3": "PLUGIN_S3",
    "fallback_branch": "PLUGIN_FALLBACK_BRANCH",
    "log_level": "PLUGIN_LOG_LEVEL",
}


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"{path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: top level must be a mapping")
    return data


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(config_data)
    for key, env_name in ENV_MAP.items():
        if env_name in os.environ:
            merged[key] = os.environ[env_name]
    return merged


def load_config(
    config_path: str | Path | None = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PluginConfig:
    """
    Build the plugin configuration.

    Layers, later wins: YAML file (optional), CI environment, explicit
    overrides (None values are ignored).
    """
    data: Dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        data = load_yaml(path)

    data = merge_env_overrides(data)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return PluginConfig.from_dict(data)
