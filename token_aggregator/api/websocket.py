"""
WebSocket push channel for Token Aggregator.

Clients send {"type": "subscribe" | "unsubscribe", "tokenAddresses": [...]}
and receive {"event": <event kind>, "data": <payload>} messages.
"""

import asyncio
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from .dependencies import get_broadcast_service, get_ws_transport
from .schemas import EventKind
from ..core.logging_config import create_logger
from ..services.broadcast import BroadcastService, ConnectionEvent, ConnectionEventType

logger = create_logger(__name__)

router = APIRouter()

_CLIENT_EVENTS = {
    "subscribe": ConnectionEventType.SUBSCRIBE,
    "unsubscribe": ConnectionEventType.UNSUBSCRIBE,
}

_ACKNOWLEDGEMENTS = {
    ConnectionEventType.SUBSCRIBE: "subscribed",
    ConnectionEventType.UNSUBSCRIBE: "unsubscribed",
}


class WebSocketTransport:
    """Maps connection ids to live sockets and delivers push events."""

    def __init__(self):
        self._sockets: Dict[str, WebSocket] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()

    def unregister(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        self._send_locks.pop(connection_id, None)

    async def send(self, connection_id: str, message: Dict[str, Any]) -> None:
        """Write one message; the outbox pump and the receive loop share the socket."""
        websocket = self._sockets.get(connection_id)
        lock = self._send_locks.get(connection_id)
        if websocket is None or lock is None:
            return
        async with lock:
            await websocket.send_json(message)

    async def emit(self, connection_id: str, event_kind: EventKind, payload: Dict[str, Any]) -> None:
        await self.send(connection_id, {"event": event_kind.value, "data": payload})


def parse_client_message(connection_id: str, message: Any) -> Optional[ConnectionEvent]:
    """Turn a client message into a connection event; None when the message is not understood."""
    if not isinstance(message, dict):
        return None
    event_type = _CLIENT_EVENTS.get(message.get("type"))
    addresses = message.get("tokenAddresses")
    if event_type is None or not isinstance(addresses, list):
        return None
    return ConnectionEvent(
        event_type,
        connection_id,
        frozenset(address for address in addresses if isinstance(address, str))
    )


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    broadcaster: BroadcastService = Depends(get_broadcast_service),
    transport: WebSocketTransport = Depends(get_ws_transport),
):
    """Subscription channel for real-time token updates."""
    await websocket.accept()
    connection_id = uuid.uuid4().hex

    transport.register(connection_id, websocket)
    broadcaster.dispatch(ConnectionEvent(ConnectionEventType.CONNECT, connection_id))
    await transport.send(connection_id, {"event": "connected", "data": {"connectionId": connection_id}})

    try:
        while True:
            message = await websocket.receive_json()
            event = parse_client_message(connection_id, message)
            if event is None:
                logger.warning("Ignoring malformed client message", extra={
                    "connection_id": connection_id
                })
                await transport.send(connection_id, {"event": "error", "data": {"message": "Unsupported message"}})
                continue

            state = broadcaster.dispatch(event)
            await transport.send(connection_id, {
                "event": _ACKNOWLEDGEMENTS[event.type],
                "data": {
                    "tokenAddresses": sorted(event.token_addresses),
                    "state": state.value
                }
            })

    except WebSocketDisconnect:
        pass
    except (KeyError, ValueError) as e:
        # KeyError: a binary frame has no text payload
        logger.warning("Unreadable client frame, closing", extra={
            "connection_id": connection_id,
            "error": str(e)
        })
        await websocket.close(code=1003)
    finally:
        broadcaster.dispatch(ConnectionEvent(ConnectionEventType.DISCONNECT, connection_id))
        transport.unregister(connection_id)
