"""
Configuration Service

Service class for configuration management.
Holds agent, limit and transport settings in a JSON file and overlays
them on top of built-in defaults.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger("CodexAgent.ConfigService")


DEFAULTS: Dict[str, Any] = {
    "agent": {
        "agent_mode": False,
        "max_iterations": 50,
        "parallel_tools": False,
        "model": None,
    },
    "limits": {
        "max_file_size_mb": 20,
        "max_search_results": 500,
        "list_max_depth": 5,
        "list_max_entries": 1000,
        "summary_list_files_cap": 50,
        "summary_search_cap": 20,
        "summary_read_chars_cap": 20000,
        "diff_context": 3,
    },
    "transport": {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "api_key": None,
        "base_url": None,
        "timeout": 120,
        "temperature": 0.7,
        "max_tokens": 4096,
        "web_search": False,
        "token_url": None,
        "token_pattern": None,
    },
}


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (overlay or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigService:
    """
    Service class for configuration management.

    Provides:
    - Configuration loading (missing file means defaults)
    - Configuration saving
    - Dot-notation access ("limits.max_search_results")
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize config service.

        Args:
            config_path: Path to config file
        """
        if config_path is None:
            config_path = Path.home() / ".codexagent" / "config.json"

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULTS)

        if self.config_path.exists():
            try:
                self.load()
            except ValueError as e:
                # A broken file must not prevent the CLI from starting.
                logger.error(f"Failed to load config: {e}")

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and merge it over the defaults.

        Returns:
            Configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid JSON
        """
        if not self.config_path.exists():
            logger.error(f"Config file not found at: {self.config_path}")
            raise FileNotFoundError(f"Config file not found at: {self.config_path}")

        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Error parsing {self.config_path.name}: {e}\n"
                "Please ensure the configuration file is valid JSON."
            )
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration root must be an object: {self.config_path}")

        self._config = _deep_merge(DEFAULTS, loaded)
        logger.info(f"Configuration loaded from {self.config_path}")
        return copy.deepcopy(self._config)

    def save(self, data: Optional[Dict[str, Any]] = None) -> bool:
        """
        Save configuration to file.

        Args:
            data: Optional data to save (uses internal config if None)

        Returns:
            True if successful
        """
        if data is not None:
            self._config = _deep_merge(DEFAULTS, data)
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with self.config_path.open("w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=4)
            logger.info(f"Configuration saved to {self.config_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key (supports dot notation: "transport.api_key")
            default: Default value if key not found
        """
        value: Any = self._config
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value (supports dot notation)."""
        keys = key.split(".")
        config = self._config
        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]
        config[keys[-1]] = value

    def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def update(self, updates: Dict[str, Any]) -> None:
        """Deep-merge a dictionary of updates into the configuration."""
        self._config = _deep_merge(self._config, updates)
