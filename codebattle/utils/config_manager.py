"""
Configuration management for the CodeBattle server.

This module provides a centralized configuration management system
that supports file-based configuration, environment variables, and
command-line arguments with proper precedence handling.
"""

import copy
import json
import os
from typing import Dict, Any, Optional
from codebattle.utils.logger_config import get_logger

logger = get_logger("config_manager")


class ConfigManager:
    """Centralized configuration management for the CodeBattle server"""

    def __init__(self, config_path: Optional[str] = None, load_env: bool = True):
        """
        Initialize configuration manager

        Args:
            config_path: Path to configuration file (optional)
            load_env: Whether CODEBATTLE_* environment variables override the file
        """
        self.config_path = config_path or "config/server_config.json"
        self.load_env = load_env
        self._config = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables"""
        self._config = self._get_default_config()

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    file_config = json.load(f)
                self._merge_config(file_config)
                logger.info(f"Loaded configuration from {self.config_path}")
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file {self.config_path}: {e}")

        if self.load_env:
            self._load_from_env()

        logger.debug("Configuration loaded successfully")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values"""
        return {
            "server": {
                "host": "0.0.0.0",
                "port": 3000
            },
            "log": {
                "level": "INFO",
                "dir": "logs/server_logs",
                "enable_colors": True
            },
            "storage": {
                "backend": "json",
                "json_path": "data/data.json",
                "duckdb_path": "data/codebattle.duckdb"
            },
            "judge": {
                "backend": "llm",
                "timeout": 60,
                "llm": {
                    "api_base_url": "https://api.openai.com",
                    "api_key": "",
                    "model_id": "gpt-4o"
                },
                "oj": {
                    "endpoint": "http://localhost:9000/2015-03-31/functions/function/invocations",
                    "time_limit_ms": 2000
                }
            },
            "contest": {
                "default_duration_minutes": 60,
                "auto_finish_on_expiry": False
            },
            "admin": {
                "username": "admin",
                "password": "admin"
            },
            "sync": {
                "api_base": "http://localhost:3000",
                "interval": 5.0,
                "timeout": 5.0,
                "submit_timeout": 90.0,
                "snapshot_path": "data/local_snapshot.json"
            }
        }

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Merge new configuration into existing config"""
        def merge_dict(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    merge_dict(target[key], value)
                else:
                    target[key] = value

        merge_dict(self._config, new_config)

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        env_mappings = {
            "CODEBATTLE_HOST": ("server", "host"),
            "CODEBATTLE_PORT": ("server", "port"),
            "CODEBATTLE_LOG_LEVEL": ("log", "level"),
            "CODEBATTLE_LOG_DIR": ("log", "dir"),
            "CODEBATTLE_STORAGE_BACKEND": ("storage", "backend"),
            "CODEBATTLE_JSON_PATH": ("storage", "json_path"),
            "CODEBATTLE_DB_PATH": ("storage", "duckdb_path"),
            "CODEBATTLE_JUDGE_BACKEND": ("judge", "backend"),
            "CODEBATTLE_JUDGE_TIMEOUT": ("judge", "timeout"),
            "CODEBATTLE_LLM_API_BASE": ("judge", "llm", "api_base_url"),
            "CODEBATTLE_LLM_API_KEY": ("judge", "llm", "api_key"),
            "CODEBATTLE_LLM_MODEL": ("judge", "llm", "model_id"),
            "CODEBATTLE_OJ_ENDPOINT": ("judge", "oj", "endpoint"),
            "CODEBATTLE_AUTO_FINISH": ("contest", "auto_finish_on_expiry"),
            "CODEBATTLE_ADMIN_USERNAME": ("admin", "username"),
            "CODEBATTLE_ADMIN_PASSWORD": ("admin", "password"),
            "CODEBATTLE_SYNC_API_BASE": ("sync", "api_base"),
            "CODEBATTLE_SYNC_INTERVAL": ("sync", "interval"),
            "CODEBATTLE_SYNC_SUBMIT_TIMEOUT": ("sync", "submit_timeout"),
        }

        for env_var, config_path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                self._set_nested_value(config_path, self._parse_env_value(value))

    def _set_nested_value(self, path: tuple, value: Any) -> None:
        """Set a nested configuration value"""
        current = self._config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _parse_env_value(self, value: str) -> Any:
        """Parse environment variable value to appropriate type"""
        if value.lower() in ('true', 'yes', 'on'):
            return True
        if value.lower() in ('false', 'no', 'off'):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        # List values (comma-separated)
        if ',' in value:
            return [item.strip() for item in value.split(',')]

        return value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "log.level")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        current = self._config

        for k in keys:
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default

        return current

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation

        Args:
            key: Configuration key (e.g., "log.level")
            value: Value to set
        """
        keys = key.split('.')
        current = self._config

        for k in keys[:-1]:
            if k not in current:
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get entire configuration section"""
        return self._config.get(section, {})

    def to_dict(self) -> Dict[str, Any]:
        """Get complete configuration as dictionary"""
        return copy.deepcopy(self._config)

    def save(self, path: Optional[str] = None) -> None:
        """
        Save current configuration to file

        Args:
            path: File path to save to (uses default if not specified)
        """
        save_path = path or self.config_path
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            json.dump(self._config, f, indent=2, ensure_ascii=False)

        logger.info(f"Configuration saved to {save_path}")


# Global configuration instance
_global_config: Optional[ConfigManager] = None


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """
    Get or create global configuration instance

    Args:
        config_path: Configuration file path (optional)

    Returns:
        Global configuration manager instance
    """
    global _global_config
    if _global_config is None:
        _global_config = ConfigManager(config_path)
    return _global_config


def set_config(config_manager: ConfigManager) -> None:
    """
    Set global configuration instance

    Args:
        config_manager: Configuration manager instance
    """
    global _global_config
    _global_config = config_manager
