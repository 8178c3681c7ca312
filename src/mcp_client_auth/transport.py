"""Transport selection for MCP servers.

Strategies are tried in order; each reports success with a
TransportConnection or declines with None. Exceptions are reserved for
authentication failures, which no other transport could fix.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urljoin

import httpx
from httpx_sse import ServerSentEvent, SSEError, aconnect_sse

from mcp_client_auth.models.errors import UnauthenticatedError
from mcp_client_auth.primitives.discovery import PROTOCOL_VERSION_HEADER

logger = logging.getLogger(__name__)

CLIENT_INFO = {"name": "mcp-client-auth", "version": "0.1.0"}


@dataclass
class TransportConnection:
    """A negotiated connection to an MCP server.

    For SSE the event stream stays open until aclose(); events yields the
    messages that follow the endpoint announcement.
    """

    kind: str
    endpoint: str
    session_id: str | None = None
    events: AsyncIterator[ServerSentEvent] | None = None
    _stack: AsyncExitStack | None = field(default=None, repr=False)

    async def aclose(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
        self.events = None


class TransportStrategy(Protocol):
    name: str

    async def connect(
        self, http_client: httpx.AsyncClient, url: str, protocol_version: str
    ) -> TransportConnection | None:
        """Try to establish a connection; return None to decline."""
        ...


class StreamableHttpStrategy:
    """Streamable HTTP: POST an initialize request to the server URL."""

    name = "streamable_http"

    async def connect(
        self, http_client: httpx.AsyncClient, url: str, protocol_version: str
    ) -> TransportConnection | None:
        payload = {
            "jsonrpc": "2.0",
            "id": 0,
            "method": "initialize",
            "params": {
                "protocolVersion": protocol_version,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        }
        headers = {
            "Accept": "application/json, text/event-stream",
            "Content-Type": "application/json",
            PROTOCOL_VERSION_HEADER: protocol_version,
        }

        try:
            async with http_client.stream(
                "POST", url, json=payload, headers=headers
            ) as response:
                _raise_if_unauthorized(response, url)
                content_type = response.headers.get("content-type", "")
                if response.status_code != 200:
                    logger.debug(
                        f"Streamable HTTP declined by {url}: HTTP {response.status_code}"
                    )
                    return None
                if not (
                    "application/json" in content_type
                    or "text/event-stream" in content_type
                ):
                    logger.debug(
                        f"Streamable HTTP declined by {url}: content-type {content_type}"
                    )
                    return None
                session_id = response.headers.get("mcp-session-id")
        except httpx.HTTPError as e:
            logger.debug(f"Streamable HTTP connection to {url} failed: {e}")
            return None

        return TransportConnection(kind=self.name, endpoint=url, session_id=session_id)


class SseStrategy:
    """Legacy HTTP+SSE: open the event stream and wait for the endpoint event."""

    name = "sse"

    def __init__(self, endpoint_timeout: float = 10.0):
        self.endpoint_timeout = endpoint_timeout

    async def connect(
        self, http_client: httpx.AsyncClient, url: str, protocol_version: str
    ) -> TransportConnection | None:
        stack = AsyncExitStack()
        try:
            event_source = await stack.enter_async_context(
                aconnect_sse(
                    http_client,
                    "GET",
                    url,
                    headers={PROTOCOL_VERSION_HEADER: protocol_version},
                )
            )
            if event_source.response.status_code == 401:
                await stack.aclose()
                _raise_if_unauthorized(event_source.response, url)
            if event_source.response.status_code != 200:
                logger.debug(
                    f"SSE declined by {url}: HTTP {event_source.response.status_code}"
                )
                await stack.aclose()
                return None

            events = event_source.aiter_sse()
            endpoint = await asyncio.wait_for(
                self._await_endpoint(events, url), self.endpoint_timeout
            )
        except (httpx.HTTPError, SSEError, asyncio.TimeoutError) as e:
            logger.debug(f"SSE connection to {url} failed: {e!r}")
            await stack.aclose()
            return None

        if endpoint is None:
            await stack.aclose()
            return None

        return TransportConnection(
            kind=self.name, endpoint=endpoint, events=events, _stack=stack
        )

    @staticmethod
    async def _await_endpoint(
        events: AsyncIterator[ServerSentEvent], url: str
    ) -> str | None:
        async for event in events:
            if event.event == "endpoint":
                return urljoin(url, event.data)
        return None


def _raise_if_unauthorized(response: httpx.Response, url: str) -> None:
    # BearerAuth has already refreshed and replayed by the time a 401 gets here
    if response.status_code == 401:
        raise UnauthenticatedError(
            f"{url} rejected the request with HTTP 401; authenticate again"
        )


def default_strategies() -> list[TransportStrategy]:
    return [StreamableHttpStrategy(), SseStrategy()]


async def select_transport(
    strategies: Sequence[TransportStrategy],
    http_client: httpx.AsyncClient,
    url: str,
    protocol_version: str,
) -> TransportConnection:
    """Return the first connection any strategy establishes.

    Raises:
        UnauthenticatedError: If the server answers 401; no later strategy is tried
        ConnectionError: If every strategy declines
    """
    attempted = []
    for strategy in strategies:
        attempted.append(strategy.name)
        connection = await strategy.connect(http_client, url, protocol_version)
        if connection is not None:
            logger.info(f"Connected to {url} using {strategy.name} transport")
            return connection
        logger.warning(f"{strategy.name} transport unavailable for {url}")

    raise ConnectionError(
        f"Could not connect to {url}; tried transports: {', '.join(attempted)}"
    )
