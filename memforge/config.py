from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .fs_paths import memforge_home, plugin_root

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://memclaude.thaicloud.ai"
DEFAULT_POLL_INTERVAL_MS = 2000
DEFAULT_DB_PATH = Path("~/.claude-mem/claude-mem.db").expanduser()
CLAUDE_MEM_SETTINGS_PATH = Path("~/.claude-mem/settings.json").expanduser()

# On-disk keys are camelCase (shared with the JS hooks); attributes are snake_case.
CONFIG_KEY_MAP = {
    "apiKey": "api_key",
    "serverUrl": "server_url",
    "syncEnabled": "sync_enabled",
    "pollInterval": "poll_interval_ms",
    "role": "role",
    "dbPath": "db_path",
}

CONFIG_ENV_OVERRIDES = {
    "api_key": "CLAUDE_MEM_API_KEY",
    "server_url": "CLAUDE_MEM_REMOTE_URL",
    "sync_enabled": "MEMFORGE_SYNC_ENABLED",
    "poll_interval_ms": "MEMFORGE_POLL_INTERVAL_MS",
    "db_path": "MEMFORGE_DB",
}


def canonical_config_path() -> Path:
    return memforge_home() / "config.json"


def legacy_config_path() -> Path:
    return plugin_root() / "config.local.json"


def resolve_config_path() -> Path | None:
    """Return the first config file that exists, canonical location first."""

    override = os.getenv("MEMFORGE_CONFIG")
    if override:
        candidate = Path(override).expanduser()
        return candidate if candidate.exists() else None
    for candidate in (canonical_config_path(), legacy_config_path()):
        if candidate.exists():
            return candidate
    return None


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = path or resolve_config_path()
    if config_path is None or not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemforgeConfig:
    api_key: str = ""
    server_url: str = DEFAULT_SERVER_URL
    sync_enabled: bool = False
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    role: str = "client"
    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    source: Path | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.server_url)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> MemforgeConfig:
    cfg = MemforgeConfig()
    config_path = path or resolve_config_path()
    if config_path is not None and config_path.exists():
        try:
            data = read_config_file(config_path)
        except (OSError, ValueError) as exc:
            logger.warning("config load failed", extra={"path": str(config_path)}, exc_info=exc)
            data = {}
        cfg = _apply_dict(cfg, data)
        cfg.source = config_path
    if not cfg.api_key:
        cfg.api_key = _claude_mem_settings_key()
    cfg = _apply_env(cfg)
    return cfg


def _claude_mem_settings_key() -> str:
    try:
        settings = json.loads(CLAUDE_MEM_SETTINGS_PATH.read_text())
    except (OSError, json.JSONDecodeError):
        return ""
    if not isinstance(settings, dict):
        return ""
    value = settings.get("CLAUDE_MEM_API_KEY")
    return value if isinstance(value, str) else ""


def _apply_dict(cfg: MemforgeConfig, data: dict[str, Any]) -> MemforgeConfig:
    for raw_key, value in data.items():
        key = CONFIG_KEY_MAP.get(raw_key)
        if key is None:
            continue
        if key == "poll_interval_ms":
            cfg.poll_interval_ms = _parse_int(value, cfg.poll_interval_ms, key=raw_key)
            continue
        if key == "sync_enabled":
            cfg.sync_enabled = _coerce_bool(value, cfg.sync_enabled, key=raw_key)
            continue
        if key == "db_path":
            if isinstance(value, str) and value.strip():
                cfg.db_path = Path(value).expanduser()
            continue
        if value is None:
            continue
        setattr(cfg, key, str(value))
    cfg.server_url = cfg.server_url.rstrip("/")
    return cfg


def _apply_env(cfg: MemforgeConfig) -> MemforgeConfig:
    for key, value in get_env_overrides().items():
        if key == "sync_enabled":
            cfg.sync_enabled = _parse_bool(value, cfg.sync_enabled)
        elif key == "poll_interval_ms":
            cfg.poll_interval_ms = _parse_int(value, cfg.poll_interval_ms, key=key)
        elif key == "db_path":
            if value:
                cfg.db_path = Path(value).expanduser()
        else:
            setattr(cfg, key, value)
    cfg.server_url = cfg.server_url.rstrip("/")
    return cfg
