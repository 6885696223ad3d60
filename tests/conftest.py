"""
Shared fixtures: a throwaway SQLite database per test, a seeded marketplace
(owner, providers, admin, stranger, one pending order) and recording doubles
for sockets and broadcasts.
"""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("METRICS_ENABLED", "false")
os.environ.setdefault("DB_CREATE_TABLES", "false")
os.environ.setdefault("REALTIME_RELAY_ENABLED", "false")

from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool

from order_tracking.core.security import AuthenticatedUser, create_access_token
from order_tracking.db.database import Base, build_engine, build_session_factory
from order_tracking.models.order import Order, OrderStatus, OrderType
from order_tracking.models.user import User
from order_tracking.tracking.broadcaster import RealtimeConnection, RoomBroadcaster
from order_tracking.tracking.orchestrator import TrackingOrchestrator
from order_tracking.tracking.store import TrackingStore, order_access_checker


def sqlite_engine(path):
    return build_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_world(session_factory) -> SimpleNamespace:
    """Users plus one pending cleaning order opened the way the order service does it."""
    users = {
        "owner": User(email="owner@marketplace.test", name="Order Owner"),
        "provider": User(email="provider@marketplace.test", name="Service Provider", is_agent=True),
        "other_provider": User(email="provider2@marketplace.test", name="Second Provider", is_agent=True),
        "admin": User(email="admin@marketplace.test", name="Admin User", is_admin=True),
        "stranger": User(email="stranger@marketplace.test", name="Unrelated User"),
    }
    async with session_factory() as session:
        async with session.begin():
            session.add_all(users.values())
            await session.flush()
            order = Order(owner_id=users["owner"].id, type=OrderType.CLEANING, status=OrderStatus.PENDING)
            session.add(order)
            await session.flush()
            await TrackingStore(session).open_tracking(order.id, users["owner"].id)

    world = SimpleNamespace(order_id=order.id)
    for role, user in users.items():
        setattr(world, role, AuthenticatedUser(id=user.id, email=user.email))
        setattr(world, f"{role}_token", create_access_token(user.id, user.email))
    return world


async def add_order(session_factory, owner_id: str, status=OrderStatus.PENDING, open_tracking=True) -> str:
    async with session_factory() as session:
        async with session.begin():
            order = Order(owner_id=owner_id, type=OrderType.LAUNDRY, status=status)
            session.add(order)
            await session.flush()
            if open_tracking:
                await TrackingStore(session).open_tracking(order.id, owner_id)
            return order.id


class RecordingSocket:
    """Stands in for a WebSocket: keeps every frame handed to it."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    @property
    def events(self) -> list[str]:
        return [m["event"] for m in self.messages]

    def of(self, event: str) -> list[dict]:
        return [m["data"] for m in self.messages if m["event"] == event]


class RecordingBroadcaster(RoomBroadcaster):
    def __init__(self, access_checker):
        super().__init__(access_checker)
        self.emitted: list[tuple[str, str, dict]] = []

    async def _emit(self, order_id, event, data):
        self.emitted.append((event, order_id, data))
        await super()._emit(order_id, event, data)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = sqlite_engine(tmp_path / "tracking.db")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def world(session_factory):
    return await seed_world(session_factory)


@pytest.fixture
def broadcaster(session_factory):
    return RecordingBroadcaster(order_access_checker(session_factory))


@pytest.fixture
def orchestrator(session_factory, broadcaster):
    return TrackingOrchestrator(session_factory, broadcaster)


@pytest_asyncio.fixture
async def connect(broadcaster):
    """Factory: open a recorded realtime connection for a user."""
    opened: list[RealtimeConnection] = []

    async def _connect(user: AuthenticatedUser, queue_size: int = 100):
        socket = RecordingSocket()
        connection = RealtimeConnection(socket.send, user, queue_size=queue_size)
        await broadcaster.connect(connection)
        opened.append(connection)
        return connection, socket

    yield _connect
    for connection in opened:
        await broadcaster.disconnect(connection)
