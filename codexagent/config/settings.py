"""
Configuration Settings

Process-wide access to the configuration service.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional

from codexagent.services.config_service import ConfigService

logger = logging.getLogger(__name__)

# Overrides the default ~/.codexagent/config.json location when set.
CONFIG_ENV_VAR = "CODEXAGENT_CONFIG"

# Global config service instance
_config_service: Optional[ConfigService] = None


def get_config_service(config_path: Optional[Path] = None) -> ConfigService:
    """
    Get or create the global config service instance.

    An explicit ``config_path`` replaces the current instance.
    """
    global _config_service
    if config_path is not None:
        _config_service = ConfigService(config_path=Path(config_path))
    elif _config_service is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        _config_service = ConfigService(config_path=Path(env_path) if env_path else None)
        logger.debug(f"Using configuration file {_config_service.config_path}")
    return _config_service


def reset_config_service() -> None:
    global _config_service
    _config_service = None


def load_config() -> Dict[str, Any]:
    """
    Return the merged configuration dictionary.

    Missing files are not an error here: defaults are returned instead.
    """
    return get_config_service().get_all()


def save_config(data: Dict[str, Any]) -> bool:
    """Write configuration back to the active config file."""
    return get_config_service().save(data)
