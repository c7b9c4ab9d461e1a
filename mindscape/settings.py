# mindscape/settings.py
"""
Non-secret app settings in settings/app.json.

Missing keys are filled from DEFAULT_SETTINGS on load, so an old file keeps
working after new options appear. MINDSCAPE_CHAT_URL / MINDSCAPE_CHAT_KEY
override the chat section at runtime and are never written back.
"""
from __future__ import annotations
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT, DEFAULT_CHAT_TIMEOUT

log = logging.getLogger("settings")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "schema": 1,
    "logging": {
        "level": "INFO",
        "max_bytes": DEFAULT_LOG_MAX_BYTES,
        "backup_count": DEFAULT_LOG_BACKUP_COUNT,
    },
    "chat": {
        "url": "http://127.0.0.1:54321/functions/v1/chat",
        "api_key": "",
        "timeout": DEFAULT_CHAT_TIMEOUT,
    },
    # db_mode of the database last opened; written back at startup
    "security": {"mode": None},
}

ENV_OVERRIDES = {
    "MINDSCAPE_CHAT_URL": ("chat", "url"),
    "MINDSCAPE_CHAT_KEY": ("chat", "api_key"),
}


def _fill_defaults(target: dict, defaults: dict) -> None:
    for key, default in defaults.items():
        current = target.get(key)
        if key not in target:
            target[key] = copy.deepcopy(default)
        elif isinstance(default, dict) and isinstance(current, dict):
            _fill_defaults(current, default)


def load_settings(path: Path) -> dict:
    """Read app.json, creating it from defaults on first run."""
    if not path.exists():
        save_settings(path, DEFAULT_SETTINGS)
        return copy.deepcopy(DEFAULT_SETTINGS)
    cfg = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(cfg, dict):
        log.warning("Settings file %s is not a JSON object; using defaults", path)
        cfg = {}
    _fill_defaults(cfg, DEFAULT_SETTINGS)
    return cfg


def apply_env_overrides(cfg: dict) -> dict:
    """Copy of cfg with MINDSCAPE_* environment values applied."""
    effective = copy.deepcopy(cfg)
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            effective.setdefault(section, {})[key] = value
            log.debug("%s.%s taken from %s", section, key, var)
    return effective


def save_settings(path: Path, data: dict) -> None:
    # atomic replace
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_suffix(".tmp")
    staging.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
    staging.replace(path)


def set_security_mode(path: Path, cfg: dict, mode: str) -> dict:
    """Record the database mode in settings; only touches the file when it changed."""
    if (cfg.get("security") or {}).get("mode") == mode:
        return cfg
    updated = {**cfg, "security": {**(cfg.get("security") or {}), "mode": mode}}
    save_settings(path, updated)
    return updated
