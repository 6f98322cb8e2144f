"""Load and save ``<root>/.usbide/config.json``."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from usbide.config.schema import Config
from usbide.utils.helpers import ensure_dir

CONFIG_FILE = "config.json"


def get_config_path(root: Path | None = None) -> Path:
    """Get the config file path for a workspace root."""
    return (root or Path.cwd()) / ".usbide" / CONFIG_FILE


def load_config(root: Path | None = None, path: Path | None = None) -> Config:
    """Load config from file (if any) with environment overrides applied."""
    path = path or get_config_path(root)
    data: object = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"[config] cannot read {path}: {exc}; using defaults")
            data = {}
    if not isinstance(data, dict):
        logger.warning(f"[config] {path} is not a JSON object; using defaults")
        data = {}
    try:
        return Config(**data)
    except ValidationError as exc:
        logger.warning(f"[config] invalid values in {path}: {exc.error_count()} error(s); using defaults")
        return Config()


def save_config(config: Config, root: Path | None = None, path: Path | None = None) -> Path:
    """Write config as pretty-printed JSON and return the file path."""
    path = path or get_config_path(root)
    ensure_dir(path.parent)
    path.write_text(
        json.dumps(config.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    return path
