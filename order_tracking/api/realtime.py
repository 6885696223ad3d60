"""
Order Tracking — Realtime WebSocket endpoint

Handshake: bearer token as `?token=` or `Authorization: Bearer`. A missing or
invalid token closes the socket (1008) before accept, so no room logic runs.

Client → server frames:  {"event": "join_order" | "leave_order", "data": "<orderId>"}
                         (data may also be {"orderId": "<orderId>"})
Server → client frames:  {"event": <name>, "data": {...}}
"""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from order_tracking.core.config import get_settings
from order_tracking.core.errors import AuthenticationError
from order_tracking.core.security import extract_bearer, verify_token
from order_tracking.tracking.broadcaster import RealtimeConnection, RoomBroadcaster

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])

JOIN_ORDER = "join_order"
LEAVE_ORDER = "leave_order"


def _order_id_from(data) -> str | None:
    if isinstance(data, str):
        return data or None
    if isinstance(data, dict):
        value = data.get("orderId") or data.get("order_id")
        return str(value) if value else None
    return None


def _frame_text(frame: dict) -> str | None:
    """Text of a text frame, or of a binary frame holding UTF-8."""
    if frame.get("text") is not None:
        return frame["text"]
    try:
        return (frame.get("bytes") or b"").decode("utf-8")
    except UnicodeDecodeError:
        return None


async def handle_client_message(broadcaster: RoomBroadcaster, connection: RealtimeConnection, raw: str) -> None:
    try:
        message = json.loads(raw)
        event = message["event"]
    except (ValueError, KeyError, TypeError):
        connection.send_error("INVALID_MESSAGE", "Expected a JSON object with an 'event' field")
        return

    if event not in (JOIN_ORDER, LEAVE_ORDER):
        connection.send_error("UNKNOWN_EVENT", f"Unsupported event: {event}")
        return

    order_id = _order_id_from(message.get("data"))
    if order_id is None:
        connection.send_error("INVALID_MESSAGE", "orderId is required")
        return

    if event == JOIN_ORDER:
        await broadcaster.join(connection, order_id)
    else:
        await broadcaster.leave(connection, order_id)


@router.websocket(settings.REALTIME_PATH)
async def realtime(websocket: WebSocket):
    broadcaster: RoomBroadcaster = websocket.app.state.broadcaster

    token = websocket.query_params.get("token") or extract_bearer(websocket.headers.get("authorization"))
    try:
        user = verify_token(token)
    except AuthenticationError as exc:
        logger.info("Rejected realtime handshake: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    await websocket.accept()
    connection = RealtimeConnection(
        websocket.send_json,
        user,
        queue_size=settings.REALTIME_SEND_QUEUE_SIZE,
        closer=lambda: websocket.close(code=status.WS_1013_TRY_AGAIN_LATER),
    )
    await broadcaster.connect(connection)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = _frame_text(frame)
            if raw is None:
                connection.send_error("INVALID_MESSAGE", "Frames must be UTF-8 encoded JSON")
                continue
            await handle_client_message(broadcaster, connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(connection)
