"""WebSocket server streaming swap, transaction, metrics and alert events"""

import asyncio
import functools
import itertools
import json
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from swaprouter.chains.tokens import TokenRegistry
from swaprouter.monitoring import metrics
from swaprouter.utils.events import (
    ALERT_TRIGGERED,
    METRICS_COLLECTED,
    SWAP_COMPLETED,
    SWAP_FAILED,
    SWAP_STARTED,
    TRANSACTION_COMPLETED,
    TRANSACTION_FAILED,
    TRANSACTION_SUBMITTED,
    TRANSACTION_TIMEOUT,
    EventChannel,
)

logger = structlog.get_logger()

EVENT_CHANNELS: Dict[str, str] = {
    SWAP_STARTED: "swaps",
    SWAP_COMPLETED: "swaps",
    SWAP_FAILED: "swaps",
    TRANSACTION_SUBMITTED: "transactions",
    TRANSACTION_COMPLETED: "transactions",
    TRANSACTION_FAILED: "transactions",
    TRANSACTION_TIMEOUT: "transactions",
    METRICS_COLLECTED: "metrics",
    ALERT_TRIGGERED: "alerts",
}

CHANNELS = ("swaps", "transactions", "metrics", "alerts")


def to_jsonable(obj: Any) -> Any:
    """Convert event payloads (dataclasses, enums, decimals, errors) to JSON types"""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, BaseException):
        return {"type": type(obj).__name__, "message": str(obj)}
    if hasattr(obj, "to_dict"):
        return to_jsonable(obj.to_dict())
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, bool) or obj is None or isinstance(obj, (str, float)):
        return obj
    if isinstance(obj, int):
        # Token amounts overflow JavaScript numbers
        return obj if abs(obj) < 2**53 else str(obj)
    return str(obj)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubscriptionFilter:
    """One channel subscription, optionally narrowed to a token address or a transaction"""

    def __init__(self, channel: str, token: Optional[str] = None, tx_hash: Optional[str] = None):
        self.channel = channel
        self.token = token.lower() if token else None
        self.tx_hash = tx_hash.lower() if tx_hash else None

    def matches(self, data: Dict[str, Any]) -> bool:
        """Check a serialized event payload against the token and hash filters"""
        trade = data.get("analytics") or data.get("params") or {}

        if self.tx_hash is not None:
            tx_hash = data.get("hash") or data.get("tx_hash") or trade.get("tx_hash")
            if not tx_hash or tx_hash.lower() != self.tx_hash:
                return False

        if self.token is not None:
            tokens = {str(trade.get("token_in", "")).lower(), str(trade.get("token_out", "")).lower()}
            if self.token not in tokens:
                return False

        return True


class WebSocketConnection:
    """A connected client and the channels it listens to"""

    def __init__(self, websocket: WebSocket, connection_id: str):
        self.websocket = websocket
        self.connection_id = connection_id
        self.subscriptions: List[SubscriptionFilter] = []
        self.last_seen = datetime.now(timezone.utc)
        self._logger = logger.bind(component="ws_client", connection_id=connection_id)

    def add_subscription(self, subscription: SubscriptionFilter) -> None:
        self.subscriptions.append(subscription)
        self._logger.info(
            "ws_subscribed",
            channel=subscription.channel,
            token=subscription.token,
            tx_hash=subscription.tx_hash,
        )

    def remove_subscription(self, channel: str) -> None:
        """Drop every filter registered on a channel"""
        kept = [s for s in self.subscriptions if s.channel != channel]
        dropped = len(self.subscriptions) - len(kept)
        self.subscriptions = kept
        if dropped:
            self._logger.info("ws_unsubscribed", channel=channel, dropped=dropped)

    def should_receive(self, channel: str, data: Dict[str, Any]) -> bool:
        return any(s.channel == channel and s.matches(data) for s in self.subscriptions)

    async def send_message(self, message: Dict[str, Any]) -> bool:
        """Write one JSON frame; False when the socket refused it"""
        try:
            await self.websocket.send_text(json.dumps(message))
        except Exception as e:
            self._logger.error("ws_send_failed", error=str(e), error_type=type(e).__name__)
            return False
        return True


class WebSocketManager:
    """
    Tracks client connections and fans component events out to them.

    Event channel callbacks are synchronous, so attach() forwards events into
    event_queue and a single broadcast task drains it.
    """

    def __init__(
        self,
        max_connections: int = 100,
        heartbeat_interval: float = 30.0,
        tokens: Optional[TokenRegistry] = None,
    ):
        self.max_connections = max_connections
        self.tokens = tokens
        self.heartbeat_interval = heartbeat_interval
        self.connections: Dict[str, WebSocketConnection] = {}
        self.event_queue: "asyncio.Queue[Tuple[str, str, Dict[str, Any]]]" = asyncio.Queue()

        self._ids = itertools.count(1)
        self._tasks: List[asyncio.Task] = []
        self._handlers: Dict[str, Callable[[WebSocketConnection, Dict[str, Any]], Awaitable[None]]] = {
            "subscribe": self._on_subscribe,
            "unsubscribe": self._on_unsubscribe,
            "ping": self._on_ping,
        }
        self._logger = logger.bind(component="ws_manager")

    def get_connection_count(self) -> int:
        return len(self.connections)

    def attach(self, *channels: EventChannel) -> None:
        """Forward every streamable event published on the given channels"""
        for channel in channels:
            for event in EVENT_CHANNELS:
                channel.on(event, functools.partial(self._enqueue, event))

    def _enqueue(self, event: str, payload: Any = None, *_: Any) -> None:
        self.publish(event, payload)

    def publish(self, event: str, payload: Any) -> None:
        """Queue an event for broadcasting; events with no channel are ignored"""
        channel = EVENT_CHANNELS.get(event)
        if channel is not None:
            self.event_queue.put_nowait((channel, event, to_jsonable(payload)))

    def _update_gauge(self) -> None:
        metrics.websocket_connections_active.set(len(self.connections))

    async def connect(self, websocket: WebSocket) -> Optional[WebSocketConnection]:
        """Accept a client, or return None without accepting when full"""
        if len(self.connections) >= self.max_connections:
            self._logger.warning("ws_rejected_full", limit=self.max_connections)
            return None

        await websocket.accept()
        connection = WebSocketConnection(websocket, f"ws_{next(self._ids)}")
        self.connections[connection.connection_id] = connection
        self._update_gauge()

        self._logger.info("ws_connected", connection_id=connection.connection_id, clients=len(self.connections))
        return connection

    async def disconnect(self, connection_id: str) -> None:
        if self.connections.pop(connection_id, None) is None:
            return
        self._update_gauge()
        self._logger.info("ws_disconnected", connection_id=connection_id, clients=len(self.connections))

    async def handle_message(self, connection: WebSocketConnection, message: str) -> None:
        """Dispatch one client frame by its type field"""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            await connection.send_message({"type": "error", "message": "Invalid JSON"})
            return

        kind = data.get("type") if isinstance(data, dict) else None
        handler = self._handlers.get(kind)
        if handler is None:
            await connection.send_message({"type": "error", "message": f"Unknown message type: {kind}"})
            return

        try:
            await handler(connection, data)
        except Exception as e:
            self._logger.error(
                "ws_message_failed",
                connection_id=connection.connection_id,
                message_type=kind,
                error=str(e),
            )
            await connection.send_message({"type": "error", "message": "Internal error"})

    async def _on_subscribe(self, connection: WebSocketConnection, data: Dict[str, Any]) -> None:
        channel = data.get("channel")
        if channel not in CHANNELS:
            await connection.send_message({
                "type": "error",
                "message": f"Invalid channel: {channel}. Must be one of {', '.join(CHANNELS)}",
            })
            return

        filters = data.get("filters") or {}
        token = filters.get("token")
        if token and self.tokens is not None:
            # Payloads carry addresses, so symbols are resolved up front
            try:
                token = self.tokens.resolve_address(token)
            except KeyError:
                await connection.send_message({"type": "error", "message": f"Unknown token: {token}"})
                return

        connection.add_subscription(SubscriptionFilter(channel, token=token, tx_hash=filters.get("tx_hash")))
        await connection.send_message({"type": "subscribed", "channel": channel, "filters": filters})

    async def _on_unsubscribe(self, connection: WebSocketConnection, data: Dict[str, Any]) -> None:
        channel = data.get("channel")
        if not channel:
            await connection.send_message({"type": "error", "message": "unsubscribe needs a channel"})
            return

        connection.remove_subscription(channel)
        await connection.send_message({"type": "unsubscribed", "channel": channel})

    async def _on_ping(self, connection: WebSocketConnection, data: Dict[str, Any]) -> None:
        connection.last_seen = datetime.now(timezone.utc)
        await connection.send_message({"type": "pong", "timestamp": _now()})

    async def broadcast(self, channel: str, event: str, data: Dict[str, Any]) -> int:
        """Send one event to every matching client and return how many got it"""
        frame = {"type": "event", "channel": channel, "event": event, "data": data, "timestamp": _now()}
        targets = [c for c in list(self.connections.values()) if c.should_receive(channel, data)]

        delivered = 0
        for connection in targets:
            if await connection.send_message(frame):
                delivered += 1

        if delivered:
            metrics.websocket_messages_sent.labels(message_type=channel).inc(delivered)
            self._logger.debug("ws_event_sent", event_name=event, clients=delivered)
        return delivered

    async def _drain_events(self) -> None:
        while True:
            channel, event, data = await self.event_queue.get()
            try:
                await self.broadcast(channel, event, data)
            except Exception as e:
                self._logger.error("ws_broadcast_failed", event_name=event, error=str(e))

    async def _send_heartbeats(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            frame = {"type": "heartbeat", "timestamp": _now()}
            for connection in list(self.connections.values()):
                await connection.send_message(frame)

    async def start_background_tasks(self) -> None:
        self._tasks = [
            asyncio.create_task(self._drain_events()),
            asyncio.create_task(self._send_heartbeats()),
        ]
        self._logger.info("ws_tasks_started", heartbeat_interval=self.heartbeat_interval)

    async def stop_background_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._logger.info("ws_tasks_stopped")


async def websocket_endpoint(websocket: WebSocket, manager: WebSocketManager) -> None:
    """Serve one /ws/v1/events client until it goes away"""
    connection = await manager.connect(websocket)
    if connection is None:
        await websocket.close(code=1008, reason="Too many connections")
        return

    await connection.send_message({
        "type": "connected",
        "connection_id": connection.connection_id,
        "channels": list(CHANNELS),
    })
    try:
        while True:
            await manager.handle_message(connection, await websocket.receive_text())
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("ws_client_error", connection_id=connection.connection_id, error=str(e))
    finally:
        await manager.disconnect(connection.connection_id)
