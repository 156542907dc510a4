"""
Streaming transport seam.

Sessions talk to :class:`StreamConnection` objects obtained from a
:class:`StreamConnector`. The websocket implementation is the one used in
production; tests swap in in-memory connections.
"""

from __future__ import annotations

import ssl
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import websockets
from loguru import logger
from websockets.asyncio.client import ClientConnection, connect

from ..core.config import DEFAULT_CONNECT_TIMEOUT, DurationSeconds
from ..core.errors import TransportError


@runtime_checkable
class StreamConnection(Protocol):
    """One bidirectional, message-oriented connection.

    ``receive`` returns None once the peer closed cleanly and raises
    :class:`TransportError` on any other failure.
    """

    @property
    def closed(self) -> bool: ...

    async def send(self, message: str) -> None: ...

    async def receive(self) -> str | None: ...

    async def close(self) -> None: ...


class StreamConnector(Protocol):
    async def connect(
        self, url: str, headers: Mapping[str, str], allow_insecure_tls: bool = False
    ) -> StreamConnection: ...


@dataclass(slots=True)
class WebSocketStreamConnection:
    url: str
    websocket: ClientConnection = field(repr=False)
    _closed: bool = field(default=False, init=False)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: str) -> None:
        if self._closed:
            raise TransportError(f"Connection already closed: {self.url}")
        try:
            await self.websocket.send(message)
        except websockets.exceptions.WebSocketException as e:
            self._closed = True
            raise TransportError(f"Send failed on {self.url}: {e}") from e

    async def receive(self) -> str | None:
        try:
            message = await self.websocket.recv()
        except websockets.exceptions.ConnectionClosedOK:
            self._closed = True
            return None
        except websockets.exceptions.WebSocketException as e:
            self._closed = True
            raise TransportError(f"Connection lost on {self.url}: {e}") from e
        if isinstance(message, bytes):
            return message.decode("utf-8", errors="replace")
        return message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except websockets.exceptions.WebSocketException as e:
            logger.debug("Ignoring close error on {}: {}", self.url, e)


@dataclass(slots=True)
class WebSocketStreamConnector:
    open_timeout: DurationSeconds = DEFAULT_CONNECT_TIMEOUT

    async def connect(
        self, url: str, headers: Mapping[str, str], allow_insecure_tls: bool = False
    ) -> StreamConnection:
        ssl_context: ssl.SSLContext | None = None
        if url.startswith("wss://") and allow_insecure_tls:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        try:
            websocket = await connect(
                url,
                additional_headers=dict(headers),
                ssl=ssl_context,
                open_timeout=self.open_timeout,
                user_agent_header=None,
            )
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"Could not connect to {url}: {e}") from e

        logger.debug("Stream connected: {}", url)
        return WebSocketStreamConnection(url=url, websocket=websocket)
