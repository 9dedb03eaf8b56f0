"""
OpenAI Transport

ChatTransport over the OpenAI chat-completions streaming API (or any
OpenAI-compatible endpoint via base_url). Reasoning deltas, when the
endpoint emits them, are surfaced as the thinking phase.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from codexagent.core.context_manager import ConversationState
from codexagent.core.transport.base import (
    ChatTransport,
    StreamCompletion,
    StreamDelta,
    StreamError,
    StreamEvent,
    StreamPhase,
    TransportConfig,
)
from codexagent.core.transport.token_manager import TokenManager

logger = logging.getLogger(__name__)

_REFRESHABLE_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.RateLimitError,
)


class OpenAITransport(ChatTransport):
    """OpenAI API transport implementation."""

    def __init__(
        self,
        config: TransportConfig,
        token_manager: Optional[TokenManager] = None,
        client: Optional[Any] = None,
    ):
        super().__init__(config)
        self.token_manager = token_manager or TokenManager(
            token_url=config.token_url,
            static_token=config.api_key,
            pattern=config.token_pattern,
        )
        self._client = client
        self._client_token: Optional[str] = None
        logger.info(f"OpenAITransport initialized with model: {config.model}")

    def _get_client(self, token: str) -> Any:
        if self._client is None or (self._client_token is not None and self._client_token != token):
            self._client = AsyncOpenAI(
                api_key=token,
                base_url=self.config.base_url,
                timeout=self.config.timeout,
            )
            self._client_token = token
        return self._client

    async def send_message(
        self,
        history: List[Dict[str, Any]],
        model: Optional[str],
        state: ConversationState,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        model = model or self.config.model
        options = options or {}
        extra = dict(self.config.extra_params or {})

        for attempt in range(2):
            try:
                token = await self.token_manager.get_token()
                client = self._get_client(token)
                stream = await client.chat.completions.create(
                    model=model,
                    messages=history,
                    temperature=options.get("temperature", self.config.temperature),
                    max_tokens=options.get("max_tokens", self.config.max_tokens),
                    stream=True,
                    **extra,
                )
            except _REFRESHABLE_ERRORS as e:
                if attempt == 0 and self.token_manager.can_refresh:
                    logger.info(f"OpenAI request rejected ({type(e).__name__}); refreshing token")
                    await self.token_manager.refresh(token)
                    continue
                yield StreamError(f"Authentication failed: {e}", cause=e, status=getattr(e, "status_code", None))
                return
            except openai.APIError as e:
                logger.error(f"OpenAI request failed: {e}")
                yield StreamError(str(e), cause=e, status=getattr(e, "status_code", None))
                return
            except Exception as e:
                yield StreamError(str(e), cause=e)
                return
            break

        answer: List[str] = []
        thinking: List[str] = []
        response_id: Optional[str] = None
        try:
            async for chunk in stream:
                response_id = getattr(chunk, "id", None) or response_id
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                reasoning = getattr(delta, "reasoning_content", None)
                if reasoning:
                    thinking.append(reasoning)
                    yield StreamDelta(StreamPhase.THINKING, reasoning)
                if delta.content:
                    answer.append(delta.content)
                    yield StreamDelta(StreamPhase.ANSWER, delta.content)
                await asyncio.sleep(0)
        except openai.APIError as e:
            yield StreamError(f"Stream interrupted: {e}", cause=e)
            return

        yield StreamCompletion(
            text="".join(answer) or "".join(thinking),
            state=state.with_parent(response_id),
            thinking="".join(thinking),
        )

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is not None:
            await close()
