"""WebSocket transport implementation using the websockets library."""

from __future__ import annotations

import asyncio
import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI

from hapticctl.core.errors import (
    ProtocolError,
    TransportClosedError,
    TransportConnectError,
    UnexpectedAcknowledgementError,
)
from hapticctl.core.translator import Translator

LOGGER = logging.getLogger(__name__)


class WebSocketTransport:
    def __init__(self, url: str, *, open_timeout_s: float = 10.0) -> None:
        self.url = url
        self.open_timeout_s = open_timeout_s

    async def run(self, translator: Translator) -> None:
        try:
            websocket = await connect(self.url, open_timeout=self.open_timeout_s)
        except InvalidURI as exc:
            raise TransportConnectError(f"Invalid server URL '{self.url}': {exc}") from exc
        except (OSError, TimeoutError, InvalidHandshake) as exc:
            raise TransportConnectError(f"WebSocket connect failed for {self.url}: {exc}") from exc

        LOGGER.info("Connected to %s", self.url)
        try:
            await self._session(websocket, translator)
        finally:
            await websocket.close()

    async def _session(self, websocket: ClientConnection, translator: Translator) -> None:
        inbound = asyncio.create_task(self._receive(websocket, translator))
        outbound = asyncio.create_task(self._transmit(websocket, translator))
        try:
            await translator.handshake()
            done, _ = await asyncio.wait({inbound, outbound}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                task.result()
        finally:
            for task in (inbound, outbound):
                task.cancel()
            await asyncio.gather(inbound, outbound, return_exceptions=True)

    async def _receive(self, websocket: ClientConnection, translator: Translator) -> None:
        try:
            async for frame in websocket:
                if isinstance(frame, bytes):
                    LOGGER.debug("Ignoring binary frame (%d bytes)", len(frame))
                    continue
                try:
                    await translator.process(frame)
                except UnexpectedAcknowledgementError:
                    raise
                except ProtocolError as exc:
                    LOGGER.error("Dropping inbound frame: %s", exc)
        except ConnectionClosedError as exc:
            raise TransportClosedError(f"Connection to {self.url} closed abnormally: {exc}") from exc
        LOGGER.info("Server closed the connection")

    async def _transmit(self, websocket: ClientConnection, translator: Translator) -> None:
        try:
            async for line in translator.messages():
                await websocket.send(line)
        except ConnectionClosed as exc:
            raise TransportClosedError(f"Connection to {self.url} closed while sending: {exc}") from exc
