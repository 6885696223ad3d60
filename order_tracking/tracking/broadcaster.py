"""
Order Tracking — Room-based realtime broadcaster

Architecture:
  - Each authenticated socket is wrapped in a RealtimeConnection that owns a
    bounded outbound queue and one sender task, so events reach a client in
    the order they were broadcast and broadcasting never awaits a client.
  - The room table (order_id → connections) is owned by RoomBroadcaster and
    only mutated while holding its lock.
  - Broadcasts go through an optional relay (Redis pub/sub) so every worker
    process delivers to its own local rooms; without a relay delivery is
    in-process.
"""
import asyncio
import logging
import uuid
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from prometheus_client import Gauge

from order_tracking.core.security import AuthenticatedUser
from order_tracking.schemas.tracking import TrackingLocation, TrackingSnapshot
from order_tracking.tracking.store import AccessChecker

logger = logging.getLogger(__name__)

REALTIME_CONNECTIONS = Gauge("order_tracking_realtime_connections", "Open realtime connections")
REALTIME_ROOMS = Gauge("order_tracking_realtime_rooms", "Order rooms with at least one member")

# Server → client events
JOINED_ORDER = "joined_order"
LEFT_ORDER = "left_order"
ERROR = "error"
ORDER_STATUS_CHANGED = "order_status_changed"
LOCATION_UPDATE = "location_update"
ORDER_UPDATE = "order_update"


def _timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class EventRelay(Protocol):
    async def publish(self, order_id: str, event: str, data: dict[str, Any]) -> None: ...


class RealtimeConnection:
    def __init__(
        self,
        send: Callable[[dict[str, Any]], Awaitable[None]],
        user: AuthenticatedUser,
        queue_size: int = 100,
        closer: Callable[[], Awaitable[None]] | None = None,
        connection_id: str | None = None,
    ):
        self.id = connection_id or uuid.uuid4().hex
        self.user = user
        self.rooms: set[str] = set()
        self.closed = False
        self._send = send
        self._closer = closer
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._sender: asyncio.Task | None = None

    def __repr__(self) -> str:
        return f"<RealtimeConnection id={self.id} user={self.user.id}>"

    def start(self) -> None:
        if self._sender is None:
            self._sender = asyncio.create_task(self._drain(), name=f"realtime-sender-{self.id}")

    def enqueue(self, event: str, data: dict[str, Any]) -> bool:
        """Queue an event without waiting. False if closed or the queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            return False
        return True

    def send_error(self, code: str, message: str) -> bool:
        return self.enqueue(ERROR, {"code": code, "message": message})

    async def _drain(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._send(message)
            except Exception:
                logger.exception("Failed to deliver %s to connection %s", message["event"], self.id)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until everything queued so far has been handed to the transport."""
        await self._queue.join()

    async def close(self) -> None:
        self.closed = True
        if self._sender is not None:
            self._sender.cancel()
            with suppress(asyncio.CancelledError):
                await self._sender
            self._sender = None
        if self._closer is not None:
            closer, self._closer = self._closer, None
            try:
                await closer()
            except Exception:
                logger.debug("Transport already closed for connection %s", self.id)


class RoomBroadcaster:
    def __init__(self, access_checker: AccessChecker, relay: EventRelay | None = None):
        self._check_access = access_checker
        self._rooms: dict[str, set[RealtimeConnection]] = {}
        self._connections: dict[str, RealtimeConnection] = {}
        self._lock = asyncio.Lock()
        self.relay = relay

    # ── Connection lifecycle ──────────────────────────────────────────────────

    async def connect(self, connection: RealtimeConnection) -> None:
        async with self._lock:
            self._connections[connection.id] = connection
            REALTIME_CONNECTIONS.set(len(self._connections))
        connection.start()
        logger.info("Realtime client connected: connection=%s user=%s", connection.id, connection.user.id)

    async def join(self, connection: RealtimeConnection, order_id: str) -> bool:
        try:
            allowed = await self._check_access(order_id, connection.user.id)
        except Exception:
            logger.exception("Order access check failed: order=%s user=%s", order_id, connection.user.id)
            connection.send_error("JOIN_FAILED", "Failed to join order room")
            return False

        if not allowed:
            logger.warning("Join denied: order=%s user=%s", order_id, connection.user.id)
            connection.send_error("ACCESS_DENIED", "You do not have access to this order")
            return False

        async with self._lock:
            if connection.closed or connection.id not in self._connections:
                return False
            self._rooms.setdefault(order_id, set()).add(connection)
            connection.rooms.add(order_id)
            REALTIME_ROOMS.set(len(self._rooms))
            # Acked under the lock so no broadcast for this room can overtake it.
            connection.enqueue(JOINED_ORDER, {"orderId": order_id})

        logger.debug("Connection %s joined order room %s", connection.id, order_id)
        return True

    async def leave(self, connection: RealtimeConnection, order_id: str) -> None:
        async with self._lock:
            self._remove_from_room(connection, order_id)
            connection.enqueue(LEFT_ORDER, {"orderId": order_id})
        logger.debug("Connection %s left order room %s", connection.id, order_id)

    async def disconnect(self, connection: RealtimeConnection) -> None:
        async with self._lock:
            for order_id in list(connection.rooms):
                self._remove_from_room(connection, order_id)
            self._connections.pop(connection.id, None)
            REALTIME_CONNECTIONS.set(len(self._connections))
        await connection.close()
        logger.info("Realtime client disconnected: connection=%s user=%s", connection.id, connection.user.id)

    def _remove_from_room(self, connection: RealtimeConnection, order_id: str) -> None:
        connection.rooms.discard(order_id)
        members = self._rooms.get(order_id)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self._rooms[order_id]
        REALTIME_ROOMS.set(len(self._rooms))

    # ── Broadcasts (orchestrator only) ────────────────────────────────────────

    async def broadcast_status_changed(self, order_id: str, status: str, updated_by: str | None) -> None:
        await self._emit(order_id, ORDER_STATUS_CHANGED, {
            "orderId": order_id,
            "status": status,
            "updatedBy": updated_by,
            "timestamp": _timestamp(),
        })
        logger.info("Broadcasted status change: order=%s status=%s by=%s", order_id, status, updated_by)

    async def broadcast_location_update(self, order_id: str, location: TrackingLocation) -> None:
        await self._emit(order_id, LOCATION_UPDATE, {
            "orderId": order_id,
            "location": location.to_wire(),
            "timestamp": _timestamp(),
        })

    async def broadcast_snapshot(self, order_id: str, snapshot: TrackingSnapshot) -> None:
        await self._emit(order_id, ORDER_UPDATE, {
            "orderId": order_id,
            "tracking": snapshot.to_wire(),
            "timestamp": _timestamp(),
        })

    async def _emit(self, order_id: str, event: str, data: dict[str, Any]) -> None:
        if self.relay is not None:
            await self.relay.publish(order_id, event, data)
        else:
            await self.deliver(order_id, event, data)

    async def deliver(self, order_id: str, event: str, data: dict[str, Any]) -> int:
        """Fan an event out to this process's members of the order room."""
        stalled: list[RealtimeConnection] = []
        async with self._lock:
            members = list(self._rooms.get(order_id, ()))
            for connection in members:
                if not connection.enqueue(event, data) and not connection.closed:
                    stalled.append(connection)

        for connection in stalled:
            logger.warning("Dropping slow realtime consumer %s (send queue full)", connection.id)
            await self.disconnect(connection)

        logger.debug("Delivered %s for order %s to %d connection(s)", event, order_id, len(members) - len(stalled))
        return len(members) - len(stalled)

    # ── Introspection ─────────────────────────────────────────────────────────

    def room_size(self, order_id: str) -> int:
        return len(self._rooms.get(order_id, ()))

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def connection_count(self) -> int:
        return len(self._connections)
