"""
Transport Factory

Factory pattern for creating chat transports from configuration.
"""

import logging
from typing import Any, Dict, Optional, Type

from codexagent.core.transport.base import ChatTransport, TransportConfig
from codexagent.core.transport.openai_transport import OpenAITransport
from codexagent.core.transport.sse_transport import SSEChatTransport
from codexagent.core.transport.token_manager import TokenManager

logger = logging.getLogger(__name__)


class TransportFactory:
    """
    Factory for creating transport instances.

    Supports:
    - Dynamic transport registration
    - Configuration-based creation
    """

    _transports: Dict[str, Type[ChatTransport]] = {
        "openai": OpenAITransport,
        "sse": SSEChatTransport,
    }

    @classmethod
    def register_transport(cls, name: str, transport_class: Type[ChatTransport]) -> None:
        cls._transports[name] = transport_class
        logger.info(f"Registered transport: {name}")

    @classmethod
    def available(cls) -> list:
        return sorted(cls._transports)

    @classmethod
    def create(
        cls,
        name: str,
        config: TransportConfig,
        token_manager: Optional[TokenManager] = None,
    ) -> ChatTransport:
        """
        Create a transport instance.

        Raises:
            ValueError: If the transport name is not registered
        """
        transport_class = cls._transports.get(name)
        if not transport_class:
            raise ValueError(f"Transport {name} not registered")
        return transport_class(config, token_manager=token_manager)

    @classmethod
    def create_from_config(cls, transport_config: Dict[str, Any]) -> ChatTransport:
        """
        Create a transport from the ``transport`` section of the
        configuration file.
        """
        section = transport_config or {}
        config = TransportConfig(
            model=section.get("model") or "gpt-4o-mini",
            api_key=section.get("api_key"),
            base_url=section.get("base_url"),
            timeout=int(section.get("timeout") or 120),
            temperature=float(section.get("temperature", 0.7)),
            max_tokens=int(section.get("max_tokens") or 4096),
            web_search=bool(section.get("web_search", False)),
            token_url=section.get("token_url"),
            token_pattern=section.get("token_pattern"),
            extra_params=section.get("extra_params"),
        )
        return cls.create(section.get("provider") or "openai", config)
