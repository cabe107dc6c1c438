"""Load and save the per-project settings file."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from flow_commander.config.schema import Config
from flow_commander.utils.helpers import get_state_path

SETTINGS_FILE = "settings.json"


def get_config_path(workdir: Path | str | None = None) -> Path:
    """Settings file for ``workdir`` (default: the current directory)."""
    return get_state_path(workdir) / SETTINGS_FILE


def load_config(config_path: Path | None = None) -> Config:
    """Load settings, falling back to defaults when the file is missing or broken.

    Environment variables (``FLOW_COMMANDER_*``) fill in whatever the file
    does not set.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"[config] Failed to read {path}: {exc}; using defaults")
        return Config()
    if not isinstance(data, dict):
        logger.warning(f"[config] {path} does not contain a JSON object; using defaults")
        return Config()

    try:
        return Config(**data)
    except ValidationError as exc:
        logger.warning(f"[config] Invalid settings in {path}: {exc.error_count()} error(s); using defaults")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write settings as camelCase JSON and return the path."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump(by_alias=True, mode="json")
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.debug(f"[config] saved {path}")
    return path
