"""
SSE chat transport.

Streams chat completions from a server that keeps conversations
server-side: a conversation is created first (``POST /chats/new``), and
each request carries the conversation id and the parent response id.
The stream interleaves "think" and "answer" phases and may carry web
search sources.
"""

import asyncio
import json
import logging
import re
import time
from collections import OrderedDict
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import aiohttp

from codexagent.core.context_manager import ConversationState
from codexagent.core.errors import TransportError
from codexagent.core.transport.base import (
    ChatTransport,
    StreamCompletion,
    StreamDelta,
    StreamError,
    StreamEvent,
    StreamPhase,
    TransportConfig,
    WebSource,
)
from codexagent.core.transport.token_manager import TokenManager

logger = logging.getLogger(__name__)

AUTH_RETRY_STATUSES = (401, 403, 429)

_CONTENT_FIELD_RE = re.compile(r'"content"\s*:\s*"((?:[^"\\]|\\.)*)"')
_FENCED_RE = re.compile(r"```.*```", re.DOTALL)


class SSEStreamDecoder:
    """
    Line-oriented decoder for one streamed response. Feed it lines in
    arrival order; it returns the events each line produces.
    """

    def __init__(self, state: ConversationState):
        self.state = state
        self.answer: List[str] = []
        self.thinking: List[str] = []
        self.sources: "OrderedDict[str, WebSource]" = OrderedDict()
        self.raw_lines: List[str] = []
        self.finished = False
        self.failed = False

    def feed_line(self, line: str) -> List[StreamEvent]:
        line = line.strip()
        if not line or self.finished:
            return []
        self.raw_lines.append(line)
        payload = line[5:].strip() if line.startswith("data:") else line
        if payload == "[DONE]":
            return self.finish()
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON stream line: {payload[:80]}")
            return []
        if not isinstance(chunk, dict):
            return []

        if chunk.get("error"):
            return [self._error(chunk["error"])]

        created = chunk.get("response.created")
        if isinstance(created, dict):
            self.state = ConversationState(
                conversation_id=created.get("chat_id") or self.state.conversation_id,
                last_parent_id=created.get("response_id") or self.state.last_parent_id,
            )
            return []

        choices = chunk.get("choices")
        if not choices or not isinstance(choices[0], dict):
            return []
        delta = choices[0].get("delta") or {}
        events: List[StreamEvent] = []

        extra = delta.get("extra") or {}
        for source in extra.get("sources") or []:
            if isinstance(source, dict) and source.get("url") and source["url"] not in self.sources:
                self.sources[source["url"]] = WebSource(
                    url=source["url"],
                    title=source.get("title") or "",
                    snippet=source.get("snippet") or "",
                    favicon=source.get("favicon"),
                )

        phase = delta.get("phase") or "answer"
        content = delta.get("content")
        if isinstance(content, str) and content:
            if phase in ("think", "thinking"):
                self.thinking.append(content)
                events.append(StreamDelta(StreamPhase.THINKING, content))
            else:
                self.answer.append(content)
                events.append(StreamDelta(StreamPhase.ANSWER, content))

        if delta.get("status") == "finished" and phase not in ("think", "thinking"):
            events.extend(self.finish())
        return events

    def _error(self, error: Any) -> StreamError:
        self.failed = True
        self.finished = True
        if isinstance(error, dict):
            message = error.get("message") or error.get("code") or json.dumps(error)
        else:
            message = str(error)
        return StreamError(f"Stream error: {message}")

    def finish(self) -> List[StreamEvent]:
        """Completion event for the accumulated text; emitted at most once."""
        if self.finished:
            return []
        self.finished = True
        text = "".join(self.answer) or "".join(self.thinking)
        if not text.strip():
            text = self.recover_content_from_raw()
        return [
            StreamCompletion(
                text=text,
                state=self.state,
                thinking="".join(self.thinking),
                sources=list(self.sources.values()),
                raw="\n".join(self.raw_lines),
            )
        ]

    def recover_content_from_raw(self) -> str:
        """
        Reassemble "content" fragments from raw lines the decoder could
        not attribute, preferring a fenced block when one is present.
        """
        parts = []
        for line in self.raw_lines:
            for fragment in _CONTENT_FIELD_RE.findall(line):
                try:
                    parts.append(json.loads(f'"{fragment}"'))
                except json.JSONDecodeError:
                    continue
        joined = "".join(parts)
        fenced = _FENCED_RE.search(joined)
        return fenced.group(0) if fenced else joined


class SSEChatTransport(ChatTransport):
    """
    aiohttp-based SSE transport with token refresh on 401/403/429.
    """

    def __init__(
        self,
        config: TransportConfig,
        token_manager: Optional[TokenManager] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        super().__init__(config)
        if not config.base_url:
            raise ValueError("SSE transport requires a base_url")
        self.base_url = config.base_url.rstrip("/")
        self.token_manager = token_manager or TokenManager(
            token_url=config.token_url,
            static_token=config.api_key,
            pattern=config.token_pattern,
        )
        self._session_factory = session_factory or self._default_session
        logger.info(f"SSE transport initialized for {self.base_url}")

    def _default_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.config.timeout))

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "X-Client-Identity": self.token_manager.identity,
        }

    # ------------------------------------------------------------------
    # Conversation bootstrap
    # ------------------------------------------------------------------
    async def create_conversation(self, model: str) -> str:
        payload = {
            "title": "New Chat",
            "models": [model],
            "chat_mode": "normal",
            "chat_type": "search" if self.config.web_search else "t2t",
            "timestamp": int(time.time() * 1000),
        }
        url = f"{self.base_url}/chats/new"
        for attempt in range(2):
            token = await self.token_manager.get_token()
            async with self._session_factory() as session:
                async with session.post(url, json=payload, headers=self._headers(token)) as resp:
                    if resp.status in AUTH_RETRY_STATUSES and attempt == 0:
                        logger.info(f"Conversation create got HTTP {resp.status}; refreshing token")
                        await self.token_manager.refresh(token)
                        continue
                    if resp.status >= 400:
                        text = await resp.text()
                        raise TransportError(
                            f"Conversation create failed: HTTP {resp.status}: {text[:200]}",
                            status=resp.status,
                        )
                    body = await resp.json(content_type=None)
            data = body.get("data") if isinstance(body, dict) else None
            conversation_id = (data or {}).get("id") if isinstance(data, dict) else None
            conversation_id = conversation_id or (body.get("id") if isinstance(body, dict) else None)
            if not conversation_id:
                raise TransportError("Conversation create response has no id")
            logger.info(f"Created remote conversation {conversation_id}")
            return str(conversation_id)
        raise TransportError("Conversation create failed after token refresh")

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------
    def _payload(
        self, history: List[Dict[str, Any]], model: str, state: ConversationState, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        # The server keeps the thread; after the first turn only new messages are sent.
        messages = history if state.last_parent_id is None else history[-1:]
        return {
            "stream": True,
            "incremental_output": True,
            "chat_id": state.conversation_id,
            "chat_mode": "normal",
            "model": model,
            "parent_id": state.last_parent_id,
            "messages": [
                {
                    "role": m.get("role"),
                    "content": m.get("content"),
                    "chat_type": "search" if self.config.web_search else "t2t",
                    "feature_config": {"thinking_enabled": bool(options.get("thinking"))},
                }
                for m in messages
            ],
        }

    async def send_message(
        self,
        history: List[Dict[str, Any]],
        model: Optional[str],
        state: ConversationState,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamEvent]:
        model = model or self.config.model
        options = options or {}
        try:
            if state.conversation_id is None:
                state = state.with_conversation(await self.create_conversation(model))

            url = f"{self.base_url}/chat/completions?chat_id={state.conversation_id}"
            payload = self._payload(history, model, state, options)
            decoder = SSEStreamDecoder(state)

            for attempt in range(2):
                token = await self.token_manager.get_token()
                async with self._session_factory() as session:
                    async with session.post(url, json=payload, headers=self._headers(token)) as resp:
                        if resp.status in AUTH_RETRY_STATUSES and attempt == 0:
                            logger.info(f"Stream request got HTTP {resp.status}; refreshing token")
                            await self.token_manager.refresh(token)
                            continue
                        if resp.status >= 400:
                            text = await resp.text()
                            yield StreamError(f"HTTP {resp.status}: {text[:200]}", status=resp.status)
                            return

                        buffer = b""
                        async for chunk in resp.content:
                            buffer += chunk
                            while b"\n" in buffer:
                                line, buffer = buffer.split(b"\n", 1)
                                for event in decoder.feed_line(line.decode("utf-8", errors="replace")):
                                    yield event
                                if decoder.finished:
                                    return
                            await asyncio.sleep(0)
                        if buffer:
                            for event in decoder.feed_line(buffer.decode("utf-8", errors="replace")):
                                yield event
                        for event in decoder.finish():
                            yield event
                        return
            yield StreamError("Authentication failed after token refresh")
        except TransportError as e:
            yield StreamError(str(e), cause=e.cause, status=e.status)
        except aiohttp.ClientError as e:
            logger.error(f"SSE request failed: {e}")
            yield StreamError(f"Connection error: {e}", cause=e)
        except asyncio.TimeoutError as e:
            yield StreamError("Request timed out", cause=e)
