"""
http.py – Async JSON client built on *aiohttp* with per-request proxies
          and per-instance default headers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ..exceptions import HttpStatusError

logger = logging.getLogger(__name__)


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * default & per-request headers
    * per-request ``proxy`` passthrough
    * non-2xx responses raised as :class:`HttpStatusError` with the body kept
    * async context-manager support

    Each call is a single attempt; callers own their retry protocol.
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Requests
    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        """Perform one request and decode the JSON body."""
        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))
        if kwargs.get("proxy") is None:
            kwargs.pop("proxy", None)

        session = await self._ensure_session()
        async with session.request(method, url, **kwargs) as resp:
            if resp.status >= 400:
                body = await resp.text()
                logger.debug("HTTP %s %s -> %s", method, url, resp.status)
                raise HttpStatusError(resp.status, resp.reason or "", body)
            return await resp.json(content_type=None)

    async def get_json(self, url: str, **kwargs) -> Any:
        return await self.request_json("GET", url, **kwargs)
