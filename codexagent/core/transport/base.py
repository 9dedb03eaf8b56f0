"""
Chat Transport Interface

A transport streams one model turn as a sequence of typed events:
zero or more StreamDelta, then exactly one StreamCompletion or
StreamError. Transports do not raise while streaming.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

from codexagent.core.context_manager import ConversationState
from codexagent.core.errors import TransportError


class StreamPhase(Enum):
    THINKING = "thinking"
    ANSWER = "answer"


@dataclass
class WebSource:
    url: str
    title: str = ""
    snippet: str = ""
    favicon: Optional[str] = None


@dataclass
class StreamDelta:
    phase: StreamPhase
    text: str


@dataclass
class StreamCompletion:
    text: str
    state: ConversationState
    thinking: str = ""
    sources: List[WebSource] = field(default_factory=list)
    raw: str = ""


@dataclass
class StreamError:
    message: str
    cause: Optional[Exception] = None
    status: Optional[int] = None


StreamEvent = Union[StreamDelta, StreamCompletion, StreamError]


@dataclass
class TransportConfig:
    """Configuration shared by all transports."""
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: int = 120
    temperature: float = 0.7
    max_tokens: int = 4096
    web_search: bool = False
    token_url: Optional[str] = None
    token_pattern: Optional[str] = None
    extra_params: Optional[Dict[str, Any]] = None


class ChatTransport(ABC):
    """
    Abstract base class for chat-completion transports.
    """

    def __init__(self, config: TransportConfig):
        self.config = config

    @abstractmethod
    def send_message(
        self,
        history: List[Dict[str, Any]],
        model: Optional[str],
        state: ConversationState,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Stream one turn.

        Args:
            history: ``{role, content}`` messages, oldest first
            model: Model name (overrides the configured default)
            state: Current remote conversation identifiers
            options: Transport-specific options

        Yields:
            StreamDelta events, then one StreamCompletion or StreamError
        """

    async def aclose(self) -> None:
        """Release pooled resources, if any."""


async def collect_completion(
    events: AsyncIterator[StreamEvent],
    on_delta: Optional[Callable[[StreamDelta], None]] = None,
    is_cancelled: Optional[Callable[[], bool]] = None,
) -> Optional[StreamCompletion]:
    """
    Drain an event stream in arrival order.

    Returns the completion, or None if ``is_cancelled`` turned true first.

    Raises:
        TransportError: on an error event or a stream without completion.
    """
    completion: Optional[StreamCompletion] = None
    try:
        async for event in events:
            if is_cancelled is not None and is_cancelled():
                return None
            if isinstance(event, StreamDelta):
                if on_delta is not None:
                    on_delta(event)
            elif isinstance(event, StreamCompletion):
                completion = event
                break
            elif isinstance(event, StreamError):
                raise TransportError(event.message, cause=event.cause, status=event.status)
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
    if is_cancelled is not None and is_cancelled():
        return None
    if completion is None:
        raise TransportError("Stream ended without a completion")
    return completion
