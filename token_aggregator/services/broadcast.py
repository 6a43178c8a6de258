"""
Subscription and change-detection broadcast layer.

Connections subscribe to token addresses. Every fresh merged record is
compared against the last record broadcast for the same address and pushed
to the subscribers of that address as a raw update, plus price-change and
volume-spike signals when the delta crosses a fixed threshold.

Publishing never waits on a client: each connection owns a bounded outbox
drained by its own task, so a slow socket only delays itself.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Set

from ..api.schemas import EventKind, TokenRecord
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)

PRICE_CHANGE_THRESHOLD = 5.0   # percent, absolute
VOLUME_SPIKE_THRESHOLD = 50.0  # percent increase


class Emitter(Protocol):
    """Outbound side of the push transport."""

    async def emit(self, connection_id: str, event_kind: EventKind, payload: Dict[str, Any]) -> None:
        ...


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"


class ConnectionEventType(str, Enum):
    CONNECT = "connect"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    DISCONNECT = "disconnect"


@dataclass(frozen=True)
class ConnectionEvent:
    """One transport event for one connection."""
    type: ConnectionEventType
    connection_id: str
    token_addresses: FrozenSet[str] = frozenset()


@dataclass
class _Connection:
    outbox: asyncio.Queue
    subscriptions: Set[str] = field(default_factory=set)
    pump: Optional[asyncio.Task] = None


def detect_price_change(old: TokenRecord, new: TokenRecord) -> float:
    """Percentage price change between two observations; 0 when the old price is 0."""
    if old.price_sol == 0:
        return 0.0
    return (new.price_sol - old.price_sol) / old.price_sol * 100


def detect_volume_spike(old: TokenRecord, new: TokenRecord) -> bool:
    """True when volume grew by more than the spike threshold."""
    if old.volume_sol == 0:
        return False
    increase = (new.volume_sol - old.volume_sol) / old.volume_sol * 100
    return increase > VOLUME_SPIKE_THRESHOLD


class BroadcastService:
    """Owns subscriptions and last-seen token state; fans out push events."""

    def __init__(self, emitter: Emitter, outbox_size: Optional[int] = None):
        self._emitter = emitter
        self._outbox_size = outbox_size or settings.outbox_size
        self._connections: Dict[str, _Connection] = {}
        self._last_seen: Dict[str, TokenRecord] = {}

    # Connection state machine

    def dispatch(self, event: ConnectionEvent) -> ConnectionState:
        """Apply one transport event and return the resulting connection state."""
        if event.type == ConnectionEventType.CONNECT:
            self._open(event.connection_id)
        elif event.type == ConnectionEventType.DISCONNECT:
            self._close(event.connection_id)
        else:
            connection = self._connections.get(event.connection_id)
            if connection is None:
                logger.warning("Ignoring event for unknown connection", extra={
                    "connection_id": event.connection_id,
                    "event": event.type.value
                })
                return ConnectionState.DISCONNECTED
            if event.type == ConnectionEventType.SUBSCRIBE:
                connection.subscriptions.update(event.token_addresses)
            else:
                connection.subscriptions.difference_update(event.token_addresses)
            logger.debug("Subscriptions changed", extra={
                "connection_id": event.connection_id,
                "event": event.type.value,
                "count": len(connection.subscriptions)
            })
        return self.connection_state(event.connection_id)

    def on_connect(self, connection_id: str) -> ConnectionState:
        return self.dispatch(ConnectionEvent(ConnectionEventType.CONNECT, connection_id))

    def on_subscribe(self, connection_id: str, token_addresses: Iterable[str]) -> ConnectionState:
        return self.dispatch(ConnectionEvent(
            ConnectionEventType.SUBSCRIBE, connection_id, frozenset(token_addresses)
        ))

    def on_unsubscribe(self, connection_id: str, token_addresses: Iterable[str]) -> ConnectionState:
        return self.dispatch(ConnectionEvent(
            ConnectionEventType.UNSUBSCRIBE, connection_id, frozenset(token_addresses)
        ))

    def on_disconnect(self, connection_id: str) -> ConnectionState:
        return self.dispatch(ConnectionEvent(ConnectionEventType.DISCONNECT, connection_id))

    def connection_state(self, connection_id: str) -> ConnectionState:
        connection = self._connections.get(connection_id)
        if connection is None:
            return ConnectionState.DISCONNECTED
        return ConnectionState.SUBSCRIBED if connection.subscriptions else ConnectionState.CONNECTED

    def subscriptions(self, connection_id: str) -> FrozenSet[str]:
        connection = self._connections.get(connection_id)
        return frozenset(connection.subscriptions) if connection else frozenset()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _open(self, connection_id: str) -> None:
        if connection_id in self._connections:
            self._close(connection_id)
        connection = _Connection(outbox=asyncio.Queue(maxsize=self._outbox_size))
        connection.pump = asyncio.create_task(self._pump(connection_id, connection))
        self._connections[connection_id] = connection
        logger.info("Client connected", extra={
            "connection_id": connection_id,
            "connections": len(self._connections)
        })

    def _close(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return
        if connection.pump and connection.pump is not asyncio.current_task():
            connection.pump.cancel()
        # Undelivered events are dropped so drain() never waits on a dead outbox
        while not connection.outbox.empty():
            connection.outbox.get_nowait()
            connection.outbox.task_done()
        logger.info("Client disconnected", extra={
            "connection_id": connection_id,
            "connections": len(self._connections)
        })

    # Publishing

    def publish_token_update(self, token: TokenRecord) -> List[EventKind]:
        """
        Diff a fresh record against the last broadcast one and enqueue push events.

        Runs without suspension points, so the swap of the last-seen record
        and the fan-out for one address cannot interleave with another
        publish for the same address.

        Returns:
            Event kinds produced for this update
        """
        address = token.token_address
        previous = self._last_seen.get(address)
        self._last_seen[address] = token

        events = [(EventKind.UPDATE, {"address": address, "data": token.dict()})]
        if previous is not None:
            change = detect_price_change(previous, token)
            if abs(change) > PRICE_CHANGE_THRESHOLD:
                events.append((EventKind.PRICE_CHANGE, {"address": address, "change": change}))
            if detect_volume_spike(previous, token):
                events.append((EventKind.VOLUME_SPIKE, {"address": address, "volume": token.volume_sol}))

        for connection_id, connection in list(self._connections.items()):
            if address not in connection.subscriptions:
                continue
            for event_kind, payload in events:
                self._enqueue(connection_id, connection, event_kind, payload)

        return [event_kind for event_kind, _ in events]

    def publish_many(self, tokens: Iterable[TokenRecord]) -> None:
        for token in tokens:
            self.publish_token_update(token)

    def last_seen(self, token_address: str) -> Optional[TokenRecord]:
        return self._last_seen.get(token_address)

    def _enqueue(self, connection_id: str, connection: _Connection, event_kind: EventKind, payload: Dict[str, Any]) -> None:
        try:
            connection.outbox.put_nowait((event_kind, payload))
        except asyncio.QueueFull:
            logger.warning("Outbox full, dropping event", extra={
                "connection_id": connection_id,
                "event": event_kind.value
            })

    async def _pump(self, connection_id: str, connection: _Connection) -> None:
        while True:
            event_kind, payload = await connection.outbox.get()
            try:
                await self._emitter.emit(connection_id, event_kind, payload)
            except Exception as e:
                logger.warning("Failed to deliver event, dropping connection", extra={
                    "connection_id": connection_id,
                    "event": event_kind.value,
                    "error": str(e)
                })
                self._close(connection_id)
                return
            finally:
                connection.outbox.task_done()

    async def drain(self) -> None:
        """Wait until every live outbox has been delivered."""
        await asyncio.gather(
            *(connection.outbox.join() for connection in list(self._connections.values()))
        )

    async def close(self) -> None:
        """Stop every pump task and forget all connections."""
        pumps = [connection.pump for connection in self._connections.values() if connection.pump]
        self._connections.clear()
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
