"""Configuration module for flow-commander."""

from flow_commander.config.loader import get_config_path, load_config, save_config
from flow_commander.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
