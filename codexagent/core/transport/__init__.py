from .base import (
    ChatTransport,
    StreamCompletion,
    StreamDelta,
    StreamError,
    StreamEvent,
    StreamPhase,
    TransportConfig,
    WebSource,
    collect_completion,
)
from .token_manager import TokenManager

__all__ = [
    "ChatTransport",
    "StreamCompletion",
    "StreamDelta",
    "StreamError",
    "StreamEvent",
    "StreamPhase",
    "TransportConfig",
    "WebSource",
    "collect_completion",
    "TokenManager",
]
