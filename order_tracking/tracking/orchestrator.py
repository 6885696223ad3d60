"""
Order Tracking — Tracking orchestrator

The only place that mutates order status / tracking and then broadcasts.

Flow for every mutation:
  1. Validate + persist inside one transaction (row lock on the order for
     status changes, plus a per-order in-process mutex). A status transition
     fails if the order moved away from the status it was requested from.
  2. Re-read the authoritative snapshot
  3. Broadcast the narrow event, then the full snapshot

Nothing is broadcast unless the transaction committed. Broadcast failures are
logged and never reach the caller: the persisted state is what counts.
"""
import logging
from typing import Awaitable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_tracking.core.errors import ForbiddenError, InvalidTransitionError, ValidationError
from order_tracking.core.locks import KeyedLock
from order_tracking.core.security import AuthenticatedUser
from order_tracking.models.order import OrderStatus
from order_tracking.schemas.tracking import StatusHistoryEntry, TrackingLocation, TrackingSnapshot
from order_tracking.tracking.broadcaster import RoomBroadcaster
from order_tracking.tracking.state_machine import is_terminal, validate_transition
from order_tracking.tracking.store import TrackingStore

logger = logging.getLogger(__name__)


def ensure_unchanged(current: OrderStatus, observed: OrderStatus, requested: OrderStatus) -> None:
    """
    Version check for transitions: a transition is validated against the status
    it was requested from. If another transition committed while this one was
    queued, this one loses even when the new status would also allow it.
    """
    if current is not observed:
        raise InvalidTransitionError(
            current.value,
            requested.value,
            f"Order status changed from {observed.value} to {current.value} before the update to "
            f"{requested.value} was applied",
        )


class TrackingOrchestrator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], broadcaster: RoomBroadcaster):
        self._session_factory = session_factory
        self._broadcaster = broadcaster
        self._order_locks = KeyedLock()

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_order_tracking(self, order_id: str, user: AuthenticatedUser) -> TrackingSnapshot:
        async with self._session_factory() as session:
            async with session.begin():
                return await TrackingStore(session).get_tracking(order_id, user.id)

    async def get_status_history(self, order_id: str, user: AuthenticatedUser) -> list[StatusHistoryEntry]:
        async with self._session_factory() as session:
            async with session.begin():
                return await TrackingStore(session).get_status_history(order_id, user.id)

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def update_order_status(
        self,
        order_id: str,
        user: AuthenticatedUser,
        status: OrderStatus | str,
        notes: str | None = None,
    ) -> TrackingSnapshot:
        status = OrderStatus(status)
        observed = await self._observed_status(order_id)
        async with self._order_locks.hold(order_id):
            async with self._session_factory() as session:
                async with session.begin():
                    store = TrackingStore(session)
                    order = await store.get_order(order_id, for_update=True)
                    try:
                        await store.authorize_order_access(order, user.id)
                    except ForbiddenError:
                        raise ForbiddenError("You do not have permission to update this order status")
                    ensure_unchanged(order.status, observed, status)
                    validate_transition(order.status, status)
                    await store.set_order_status(order, status)
                    store.append_status_history(order_id, status, user.id, notes)

            logger.info("Order %s status → %s (by %s)", order_id, status.value, user.id)
            snapshot = await self._load_snapshot(order_id)
            await self._broadcast_status(order_id, status, user.id, snapshot)
        return snapshot

    async def update_service_provider_location(
        self,
        order_id: str,
        user: AuthenticatedUser,
        latitude: float,
        longitude: float,
        label: str | None = None,
    ) -> TrackingSnapshot:
        async with self._session_factory() as session:
            async with session.begin():
                store = TrackingStore(session)
                # Owners and admins can read the location but only the provider reports it.
                if not await store.is_assigned_provider(order_id, user.id):
                    raise ForbiddenError("You are not assigned as service provider for this order")
                order = await store.get_order(order_id)
                if is_terminal(order.status):
                    raise ValidationError(
                        f"Cannot update location of a {order.status.value} order", code="ORDER_CLOSED"
                    )
                await store.update_location(order_id, latitude, longitude, label)

        snapshot = await self._load_snapshot(order_id)
        location = TrackingLocation(latitude=latitude, longitude=longitude, label=label)
        await self._safely(order_id, self._broadcaster.broadcast_location_update(order_id, location))
        await self._safely(order_id, self._broadcaster.broadcast_snapshot(order_id, snapshot))
        return snapshot

    async def assign_service_provider(
        self, order_id: str, provider_id: str, assigned_by: AuthenticatedUser
    ) -> TrackingSnapshot:
        observed = await self._observed_status(order_id)
        async with self._order_locks.hold(order_id):
            async with self._session_factory() as session:
                async with session.begin():
                    store = TrackingStore(session)
                    order = await store.get_order(order_id, for_update=True)
                    assigner = await store.get_user(assigned_by.id)
                    if not assigner.is_admin:
                        raise ForbiddenError("Only administrators can assign service providers")
                    ensure_unchanged(order.status, observed, OrderStatus.ASSIGNED)
                    validate_transition(order.status, OrderStatus.ASSIGNED)

                    await store.assign_provider(order_id, provider_id)
                    logger.info("Order %s assigned to provider %s (by %s)", order_id, provider_id, assigned_by.id)

                    await store.set_order_status(order, OrderStatus.ASSIGNED)
                    store.append_status_history(
                        order_id,
                        OrderStatus.ASSIGNED,
                        assigned_by.id,
                        f"Assigned to service provider {provider_id}",
                    )

            snapshot = await self._load_snapshot(order_id)
            await self._broadcast_status(order_id, OrderStatus.ASSIGNED, assigned_by.id, snapshot)
        return snapshot

    async def cancel_order(self, order_id: str, user: AuthenticatedUser) -> TrackingSnapshot:
        """Owner cancellation. Cancelling an already cancelled order is a no-op."""
        async with self._order_locks.hold(order_id):
            async with self._session_factory() as session:
                async with session.begin():
                    store = TrackingStore(session)
                    order = await store.get_order(order_id, for_update=True)
                    if order.owner_id != user.id:
                        raise ForbiddenError("Access denied")

                    already_cancelled = order.status is OrderStatus.CANCELLED
                    if not already_cancelled:
                        if order.status is not OrderStatus.PENDING:
                            raise ValidationError(
                                "Only pending orders can be cancelled", code="ORDER_NOT_CANCELLABLE"
                            )
                        await store.set_order_status(order, OrderStatus.CANCELLED)
                        store.append_status_history(order_id, OrderStatus.CANCELLED, user.id, "Cancelled by owner")

            snapshot = await self._load_snapshot(order_id)
            if not already_cancelled:
                logger.info("Order %s cancelled by owner %s", order_id, user.id)
                await self._broadcast_status(order_id, OrderStatus.CANCELLED, user.id, snapshot)
        return snapshot

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _observed_status(self, order_id: str) -> OrderStatus:
        """Status as the caller saw it, read before queueing on the order lock."""
        async with self._session_factory() as session:
            return (await TrackingStore(session).get_order(order_id)).status

    async def _load_snapshot(self, order_id: str) -> TrackingSnapshot:
        async with self._session_factory() as session:
            async with session.begin():
                store = TrackingStore(session)
                order = await store.get_order(order_id)
                tracking = await store.get_or_create_tracking(order_id)
                return await store.build_snapshot(order, tracking)

    async def _broadcast_status(
        self, order_id: str, status: OrderStatus, updated_by: str, snapshot: TrackingSnapshot
    ) -> None:
        await self._safely(order_id, self._broadcaster.broadcast_status_changed(order_id, status.value, updated_by))
        await self._safely(order_id, self._broadcaster.broadcast_snapshot(order_id, snapshot))

    async def _safely(self, order_id: str, broadcast: Awaitable[None]) -> None:
        try:
            await broadcast
        except Exception:
            logger.exception("Broadcast failed for order %s", order_id)
