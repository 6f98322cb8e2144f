"""Configuration module for usbide."""

from usbide.config.loader import get_config_path, load_config, save_config
from usbide.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
