"""
Token Manager

Holds the credential used by a transport. Refreshing is a critical
section: concurrent callers that saw the same stale token share one
fetch and all get the new token.
"""

import asyncio
import logging
import re
import uuid
from typing import Callable, Optional

import requests

from codexagent.core.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_PATTERN = r"(?:umx\.wu|__fycb)\('([^']+)'\)"


class TokenManager:
    def __init__(
        self,
        token_url: Optional[str] = None,
        static_token: Optional[str] = None,
        pattern: Optional[str] = None,
        fetcher: Optional[Callable[[], str]] = None,
        timeout: int = 30,
    ):
        """
        Args:
            token_url: Page the token is scraped from
            static_token: Fixed credential (API key); used when no URL is set
            pattern: Regex whose first group is the token
            fetcher: Blocking callable returning a fresh token (overrides token_url)
            timeout: HTTP timeout for the token request
        """
        self.token_url = token_url
        self.pattern = re.compile(pattern or DEFAULT_TOKEN_PATTERN)
        self.timeout = timeout
        self._fetcher = fetcher
        self._token: Optional[str] = static_token
        self._lock = asyncio.Lock()
        self._session: Optional[requests.Session] = None
        self.identity: str = str(uuid.uuid4())
        self.refresh_count = 0

    @property
    def can_refresh(self) -> bool:
        return self._fetcher is not None or self.token_url is not None

    async def get_token(self) -> str:
        async with self._lock:
            if self._token is None:
                await self._fetch_locked()
            return self._token

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """
        Fetch a new token unless another caller already replaced
        ``stale_token`` while this one waited for the lock.
        """
        async with self._lock:
            if self._token is not None and stale_token is not None and self._token != stale_token:
                logger.debug("Reusing token refreshed by a concurrent caller")
                return self._token
            if not self.can_refresh:
                if self._token is None:
                    raise TransportError("No credential configured")
                logger.warning("Credential is static and cannot be refreshed")
                return self._token
            await self._fetch_locked()
            return self._token

    async def _fetch_locked(self) -> None:
        if not self.can_refresh:
            raise TransportError("No credential configured")
        token = await asyncio.to_thread(self._fetcher or self._fetch_blocking)
        if not token:
            raise TransportError("Token fetch returned an empty token")
        self._token = token
        self.identity = str(uuid.uuid4())
        self.refresh_count += 1
        logger.info(f"Transport token refreshed (count={self.refresh_count})")

    def _fetch_blocking(self) -> str:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"User-Agent": "codexagent"})
        try:
            resp = self._session.get(self.token_url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Token request failed: {e}", cause=e)
        match = self.pattern.search(resp.text)
        if not match:
            raise TransportError("Token not found in response")
        return match.group(1)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
