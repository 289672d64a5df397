import asyncio
from typing import Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .errors import ChannelClosed, TransportError
from .log import get_logger

"""
channel.py - the bidirectional message channel the handshake runs over.

The engine only needs four things from a channel: open it, send text,
receive the next text message, close it. `recv()` reports the peer going
away by raising ChannelClosed (code + reason) and any other transport
failure as TransportError, so there are no callbacks to wire up.
"""

logger = get_logger(__name__)


class Channel:
    """Abstract message channel. Messages are UTF-8 JSON text."""

    async def open(self) -> None:
        raise NotImplementedError

    async def send(self, text: str) -> None:
        raise NotImplementedError

    async def recv(self) -> Union[str, bytes]:
        raise NotImplementedError

    async def close(self, code: int = 1000, reason: str = "") -> None:
        raise NotImplementedError


def _closed_from(exc: ConnectionClosed) -> ChannelClosed:
    # rcvd is None when the TCP connection dropped without a close frame.
    frame = exc.rcvd
    if frame is None:
        return ChannelClosed(1006, "connection lost")
    return ChannelClosed(frame.code, frame.reason)


class WebSocketChannel(Channel):
    """Channel over a WebSocket (ws:// or wss://, TLS follows the scheme)."""

    def __init__(self, url: str, origin: Optional[str] = None, open_timeout: Optional[float] = 10.0) -> None:
        self.url = url
        self.origin = origin
        self.open_timeout = open_timeout
        self._ws = None

    async def open(self) -> None:
        logger.info("Connecting to %s", self.url)
        try:
            self._ws = await websockets.connect(
                self.url,
                origin=self.origin,
                open_timeout=self.open_timeout,
            )
        except (InvalidURI, InvalidHandshake, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"Failed to open {self.url}: {exc}") from exc
        logger.info("WebSocket connected")

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportError("channel is not open")
        try:
            await self._ws.send(text)
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc

    async def recv(self) -> Union[str, bytes]:
        if self._ws is None:
            raise TransportError("channel is not open")
        try:
            return await self._ws.recv()
        except ConnectionClosed as exc:
            raise _closed_from(exc) from exc
        except OSError as exc:
            raise TransportError(f"Receive failed: {exc}") from exc

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        await ws.close(code=code, reason=reason)
        logger.info("Connection closed: %s - %s", code, reason or "No reason")
