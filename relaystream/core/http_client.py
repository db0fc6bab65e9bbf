"""
relaystream - HTTP Transport

The HTTP collaborator used by streaming sessions: one POST whose body can be
read line by line. The underlying httpx client (and its connection pool) is
owned by the caller and only borrowed for one open/close cycle per session.
"""

from contextlib import asynccontextmanager
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    Mapping,
    Optional,
    Protocol,
)

import httpx

from ..observability.logging import get_logger


logger = get_logger(__name__)


class StreamingResponse(Protocol):
    """The subset of httpx.Response a session relies on."""

    status_code: int
    headers: Mapping[str, str]

    async def aread(self) -> bytes:
        ...

    def aiter_lines(self) -> AsyncIterator[str]:
        ...


class HttpTransport(Protocol):
    """post(url, headers, body) -> response with a streamable body."""

    def post(
        self,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
    ) -> AsyncContextManager[StreamingResponse]:
        ...


class HttpxTransport:
    """
    HttpTransport backed by httpx.AsyncClient.

    Only connect/write/pool timeouts are set on the client; per-line read
    timeouts are enforced by the session so a trickling stream is not cut
    off by httpx's whole-read timeout.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 15.0,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect_timeout, read=None)
        )

    @asynccontextmanager
    async def post(
        self,
        url: str,
        headers: Dict[str, str],
        body: Dict[str, Any],
    ) -> AsyncIterator[httpx.Response]:
        logger.debug(
            "Opening stream",
            extra={"url": url, "messages": len(body.get("messages", []))},
        )
        async with self._client.stream("POST", url, headers=headers, json=body) as response:
            yield response

    async def aclose(self) -> None:
        """Close the client if this transport created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
