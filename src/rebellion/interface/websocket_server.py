"""
WebSocket transport between editors and the authority.

The server runs on the authority (the GM). It feeds every incoming update
into the state service's FIFO queue and broadcasts the full state after each
applied change. Editors connect with WebSocketChannel, which implements the
UpdateChannel protocol for a client StateService.

Wire messages (JSON):
    client → server:
        {"type": "update", "data": {...}, "senderId": "..."}
        {"type": "updateData" | "overrideData", "payload": {...}}
        {"type": "get_state"}
        {"type": "ping"}
    server → client:
        {"type": "state", "data": {...}}
        {"type": "pong"}
"""

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.server import Server, ServerConnection, broadcast, serve
from pydantic import ValidationError

from ..state import EventType, NotAuthorityError, StateService
from ..state.channel import ChannelMessage
from ..state.event_bus import BusEvent

logger = logging.getLogger(__name__)


UPDATE_TYPES = ("update", "updateData", "overrideData")


def state_message(service: StateService) -> str:
    """Serialized full-state message for the UI."""
    return json.dumps({
        "type": "state",
        "data": service.get().to_document(),
    }, ensure_ascii=False)


class RebellionWebSocketServer:
    """
    Authority-side bridge from editor sockets to the state service.

    Updates are queued, never applied inline, so editors see one ordered
    history. Every STATE_CHANGED or STATE_RESET on the service's bus fans the
    new document out to all connected editors.
    """

    def __init__(self, service: StateService, host: str = "localhost", port: int = 8765):
        if not service.is_authority:
            raise NotAuthorityError("serve updates")
        self.service = service
        self.host = host
        self.port = port
        self.editors: set[ServerConnection] = set()
        self._server: Server | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.service.start()
        for event_type in (EventType.STATE_CHANGED, EventType.STATE_RESET):
            self.service.bus.on(event_type, self._on_state_changed)
        self._server = await serve(self._session, self.host, self.port)
        logger.info(f"Authority listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        for event_type in (EventType.STATE_CHANGED, EventType.STATE_RESET):
            self.service.bus.off(event_type, self._on_state_changed)
        server, self._server = self._server, None
        if server is not None:
            # Closing the server closes every editor connection with it
            server.close()
            await server.wait_closed()
        self.editors.clear()
        await self.service.stop()
        logger.info("Authority stopped listening")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    def _on_state_changed(self, event: BusEvent) -> None:
        # Bus handlers run inline, possibly off the loop thread
        if self._loop is None or not self.listening or not self.editors:
            return
        self._loop.call_soon_threadsafe(self.push_state)

    def push_state(self) -> None:
        """Send the current document to every connected editor."""
        if not self.editors:
            return
        try:
            message = state_message(self.service)
        except ValidationError as e:
            logger.error(f"Stored state is invalid, not broadcasting: {e}")
            return
        # broadcast() skips connections that are closing and never raises
        broadcast(self.editors, message)

    async def _session(self, websocket: ServerConnection) -> None:
        self.editors.add(websocket)
        logger.info(f"Editor connected ({len(self.editors)} online)")
        try:
            await websocket.send(state_message(self.service))
            async for raw in websocket:
                await self._handle_message(websocket, raw)
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"Editor connection closed: {e}")
        except ValidationError as e:
            logger.error(f"Stored state is invalid, dropping editor: {e}")
        finally:
            self.editors.discard(websocket)
            logger.info(f"Editor gone ({len(self.editors)} online)")

    async def _handle_message(self, websocket: ServerConnection, raw: str | bytes) -> None:
        """Route one editor message. Malformed input is logged and dropped."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Dropping non-JSON message: {str(raw)[:100]}")
            return
        if not isinstance(message, dict):
            logger.warning("Dropping non-object message")
            return

        kind = message.get("type")
        if kind in UPDATE_TYPES:
            # Queued in arrival order; the broadcast follows STATE_CHANGED
            await self.service.receive(message)
        elif kind == "ping":
            await websocket.send(json.dumps({"type": "pong"}))
        elif kind == "get_state":
            try:
                await websocket.send(state_message(self.service))
            except ValidationError as e:
                logger.error(f"Stored state is invalid: {e}")
        else:
            logger.warning(f"Dropping message of unknown type {kind!r}")


class WebSocketChannel:
    """
    Client-side UpdateChannel over a websocket to the authority.

    Connects lazily on first send and reconnects after a failure. State
    broadcasts from the authority are kept in `latest_state`.
    """

    def __init__(self, uri: str = "ws://localhost:8765", open_timeout: float = 5.0):
        self.uri = uri
        self.open_timeout = open_timeout
        self.latest_state: dict[str, Any] | None = None
        self._connection: ClientConnection | None = None
        self._reader: asyncio.Task | None = None

    async def _connect(self) -> ClientConnection:
        if self._connection is None:
            self._connection = await websockets.connect(self.uri, open_timeout=self.open_timeout)
            self._reader = asyncio.get_running_loop().create_task(self._read(self._connection))
            logger.info(f"Connected to authority at {self.uri}")
        return self._connection

    async def _read(self, connection: ClientConnection) -> None:
        try:
            async for raw in connection:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON from authority: {str(raw)[:100]}")
                    continue
                if isinstance(message, dict) and message.get("type") == "state":
                    self.latest_state = message.get("data")
        except websockets.exceptions.ConnectionClosed:
            logger.info("Authority connection closed")
        finally:
            if self._connection is connection:
                self._connection = None

    async def send(self, message: ChannelMessage) -> bool:
        """Transmit a message. Returns False if the authority is unreachable."""
        try:
            connection = await self._connect()
            await connection.send(json.dumps(message.to_wire(), ensure_ascii=False))
            return True
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.warning(f"Authority at {self.uri} unreachable: {e}")
            self._connection = None
            return False

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        if self._reader is not None:
            await self._reader
            self._reader = None


async def run_server(service: StateService, host: str = "localhost", port: int = 8765) -> None:
    """Serve editors until cancelled."""
    await RebellionWebSocketServer(service, host, port).serve_forever()
