"""Loading and saving the user's ThirdSpace settings."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional


logger = logging.getLogger("thirdspace.config")

APP_DIR = Path.home() / ".thirdspace"
CONFIG_FILE_NAME = "config.json"
LOGS_DIR_NAME = "logs"

DEFAULT_MODEL = "google/gemini-3-flash-preview"
DEFAULT_TARGET_LANGUAGE = "English"
DEFAULT_HOTKEY = "Ctrl+Alt+T"


class ConfigError(RuntimeError):
    """Raised when the settings file cannot be written."""


@dataclass(frozen=True)
class AppConfig:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    target_language: str = DEFAULT_TARGET_LANGUAGE
    reasoning_enabled: bool = True
    hotkey: str = DEFAULT_HOTKEY


_NON_EMPTY_FIELDS = ("model", "target_language", "hotkey")


def config_path(app_dir: Optional[Path] = None) -> Path:
    return (app_dir or APP_DIR) / CONFIG_FILE_NAME


def logs_dir(app_dir: Optional[Path] = None) -> Path:
    return (app_dir or APP_DIR) / LOGS_DIR_NAME


def config_from_dict(data: dict) -> AppConfig:
    """Build an :class:`AppConfig`, keeping defaults for missing or bad values."""

    defaults = AppConfig()
    values = {}
    for item in fields(AppConfig):
        default = getattr(defaults, item.name)
        value = data.get(item.name)
        if not isinstance(value, type(default)):
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value and item.name in _NON_EMPTY_FIELDS:
                continue
        values[item.name] = value
    return replace(defaults, **values)


def load_config(app_dir: Optional[Path] = None) -> AppConfig:
    path = config_path(app_dir)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return AppConfig()
    except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s, using defaults: %s", path, exc)
        return AppConfig()
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return AppConfig()
    return config_from_dict(data)


def save_config(config: AppConfig, app_dir: Optional[Path] = None) -> Path:
    path = config_path(app_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(config), indent=2, ensure_ascii=False), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to write {path}: {exc}") from exc
    return path
