"""
Room broadcaster: join authorization, acknowledgements, isolation between
rooms, disconnect cleanup and slow consumers.
"""
import asyncio

import pytest

from order_tracking.core.security import AuthenticatedUser
from order_tracking.schemas.tracking import TrackingLocation
from order_tracking.tracking.broadcaster import RealtimeConnection, RoomBroadcaster

from conftest import RecordingSocket, add_order


@pytest.mark.asyncio
async def test_join_acknowledges_only_the_caller(broadcaster, connect, world):
    owner_conn, owner_socket = await connect(world.owner)
    admin_conn, admin_socket = await connect(world.admin)

    assert await broadcaster.join(owner_conn, world.order_id)
    await owner_conn.flush()
    await admin_conn.flush()

    assert owner_socket.messages == [{"event": "joined_order", "data": {"orderId": world.order_id}}]
    assert admin_socket.messages == []
    assert broadcaster.room_size(world.order_id) == 1


@pytest.mark.asyncio
async def test_denied_join_sends_error_and_does_not_add(broadcaster, connect, world):
    conn, socket = await connect(world.stranger)

    assert not await broadcaster.join(conn, world.order_id)
    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await conn.flush()

    assert socket.messages == [
        {"event": "error", "data": {"code": "ACCESS_DENIED", "message": "You do not have access to this order"}}
    ]
    assert broadcaster.room_size(world.order_id) == 0
    assert world.order_id not in conn.rooms


@pytest.mark.asyncio
async def test_access_check_failure_reports_join_failed():
    async def broken_check(order_id, user_id):
        raise RuntimeError("database unavailable")

    broadcaster = RoomBroadcaster(broken_check)
    socket = RecordingSocket()
    conn = RealtimeConnection(socket.send, AuthenticatedUser(id="u1"))
    await broadcaster.connect(conn)

    assert not await broadcaster.join(conn, "order-1")
    await conn.flush()
    assert socket.of("error")[0]["code"] == "JOIN_FAILED"
    await broadcaster.disconnect(conn)


@pytest.mark.asyncio
async def test_connection_that_never_joins_receives_nothing(broadcaster, connect, world):
    idle_conn, idle_socket = await connect(world.admin)
    member_conn, member_socket = await connect(world.owner)
    await broadcaster.join(member_conn, world.order_id)

    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await broadcaster.broadcast_location_update(world.order_id, TrackingLocation(latitude=1.0, longitude=2.0))
    await idle_conn.flush()
    await member_conn.flush()

    assert idle_socket.messages == []
    assert member_socket.events == ["joined_order", "order_status_changed", "location_update"]


@pytest.mark.asyncio
async def test_events_do_not_cross_rooms(broadcaster, session_factory, connect, world):
    order_b = await add_order(session_factory, world.owner.id)
    conn, socket = await connect(world.owner)
    await broadcaster.join(conn, world.order_id)
    await broadcaster.join(conn, order_b)
    only_b_conn, only_b_socket = await connect(world.admin)
    await broadcaster.join(only_b_conn, order_b)

    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await broadcaster.broadcast_status_changed(order_b, "cancelled", world.owner.id)
    await broadcaster.broadcast_status_changed(world.order_id, "in_progress", world.provider.id)
    await conn.flush()
    await only_b_conn.flush()

    changes = socket.of("order_status_changed")
    assert [(c["orderId"], c["status"]) for c in changes] == [
        (world.order_id, "assigned"),
        (order_b, "cancelled"),
        (world.order_id, "in_progress"),
    ]
    assert [(c["orderId"], c["status"]) for c in only_b_socket.of("order_status_changed")] == [
        (order_b, "cancelled")
    ]


@pytest.mark.asyncio
async def test_status_payload_shape(broadcaster, connect, world):
    conn, socket = await connect(world.owner)
    await broadcaster.join(conn, world.order_id)
    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await conn.flush()

    payload = socket.of("order_status_changed")[0]
    assert set(payload) == {"orderId", "status", "updatedBy", "timestamp"}
    assert payload["updatedBy"] == world.admin.id


@pytest.mark.asyncio
async def test_leave_is_unconditional_and_discards_empty_room(broadcaster, connect, world):
    conn, socket = await connect(world.owner)
    await broadcaster.join(conn, world.order_id)
    await broadcaster.leave(conn, world.order_id)
    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await conn.flush()

    assert socket.events == ["joined_order", "left_order"]
    assert broadcaster.room_size(world.order_id) == 0
    assert broadcaster.room_count == 0

    # Leaving a room never joined still acknowledges.
    await broadcaster.leave(conn, "never-joined")
    await conn.flush()
    assert socket.messages[-1] == {"event": "left_order", "data": {"orderId": "never-joined"}}


@pytest.mark.asyncio
async def test_disconnect_removes_connection_from_every_room(broadcaster, session_factory, connect, world):
    order_b = await add_order(session_factory, world.owner.id)
    leaving, _ = await connect(world.owner)
    staying, _ = await connect(world.admin)
    for order_id in (world.order_id, order_b):
        await broadcaster.join(leaving, order_id)
    await broadcaster.join(staying, world.order_id)

    await broadcaster.disconnect(leaving)

    assert broadcaster.room_size(world.order_id) == 1
    assert broadcaster.room_size(order_b) == 0
    assert broadcaster.room_count == 1
    assert leaving.closed
    assert not await broadcaster.join(leaving, world.order_id)


@pytest.mark.asyncio
async def test_rejoin_after_reconnect_behaves_like_first_join(broadcaster, connect, world):
    first, _ = await connect(world.owner)
    await broadcaster.join(first, world.order_id)
    await broadcaster.disconnect(first)

    second, socket = await connect(world.owner)
    assert await broadcaster.join(second, world.order_id)
    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await second.flush()
    assert socket.events == ["joined_order", "order_status_changed"]


@pytest.mark.asyncio
async def test_concurrent_join_leave_disconnect_keeps_table_consistent(broadcaster, connect, world):
    connections = [(await connect(world.owner))[0] for _ in range(20)]

    await asyncio.gather(*(broadcaster.join(c, world.order_id) for c in connections))
    assert broadcaster.room_size(world.order_id) == 20

    await asyncio.gather(
        *(broadcaster.leave(c, world.order_id) for c in connections[:10]),
        *(broadcaster.disconnect(c) for c in connections[10:]),
    )
    assert broadcaster.room_size(world.order_id) == 0
    assert broadcaster.room_count == 0


@pytest.mark.asyncio
async def test_slow_consumer_is_dropped(broadcaster, connect, world):
    release = asyncio.Event()

    async def stuck_send(message):
        await release.wait()

    slow = RealtimeConnection(stuck_send, world.owner, queue_size=2)
    await broadcaster.connect(slow)
    await broadcaster.join(slow, world.order_id)
    fast, fast_socket = await connect(world.admin)
    await broadcaster.join(fast, world.order_id)

    for status in ("assigned", "in_progress", "completed", "cancelled"):
        await broadcaster.broadcast_status_changed(world.order_id, status, world.admin.id)
    await fast.flush()

    assert slow.closed
    assert broadcaster.room_size(world.order_id) == 1
    assert len(fast_socket.of("order_status_changed")) == 4
    release.set()


@pytest.mark.asyncio
async def test_send_failure_does_not_stop_later_events(broadcaster, world):
    frames: list[dict] = []

    async def flaky_send(message):
        if not frames and message["event"] == "order_status_changed":
            frames.append({"failed": True})
            raise ConnectionResetError("socket write failed")
        frames.append(message)

    conn = RealtimeConnection(flaky_send, world.owner)
    await broadcaster.connect(conn)
    await broadcaster.join(conn, world.order_id)
    # joined_order goes through first, so the failure hits the status event.
    await conn.flush()
    frames.clear()

    await broadcaster.broadcast_status_changed(world.order_id, "assigned", world.admin.id)
    await broadcaster.broadcast_status_changed(world.order_id, "in_progress", world.admin.id)
    await conn.flush()

    assert frames[0] == {"failed": True}
    assert frames[1]["data"]["status"] == "in_progress"
    await broadcaster.disconnect(conn)
