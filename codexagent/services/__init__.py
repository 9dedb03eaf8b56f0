"""
Service Layer

Service classes shared by the CLI and the orchestrator.
"""

from codexagent.services.config_service import ConfigService, DEFAULTS

__all__ = [
    "ConfigService",
    "DEFAULTS",
]
