"""
Utility modules for CodeBattle.

This module contains logging and configuration helpers shared by the
engine, the API server and the sync client.
"""

from .logger_config import setup_logging, setup_logging_from_config, get_logger, ColoredFormatter
from .config_manager import ConfigManager, get_config, set_config

__all__ = [
    "setup_logging", "setup_logging_from_config", "get_logger", "ColoredFormatter",
    "ConfigManager", "get_config", "set_config"
]
