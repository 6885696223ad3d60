"""
Order Tracking — Tracking store accessor

Reads and writes order_tracking / order_status_history with authorization
built into every read. A TrackingStore is bound to one AsyncSession and never
commits: the caller owns the unit of work, so a status update plus its history
row either land together or not at all.
"""
import logging
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_tracking.core.errors import ForbiddenError, NotFoundError, ValidationError
from order_tracking.models.order import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    OrderTracking,
    utcnow,
)
from order_tracking.models.user import User
from order_tracking.schemas.tracking import (
    ServiceProviderSummary,
    StatusHistoryEntry,
    TrackingLocation,
    TrackingSnapshot,
)

logger = logging.getLogger(__name__)

AccessChecker = Callable[[str, str], Awaitable[bool]]


class TrackingStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Lookups ───────────────────────────────────────────────────────────────

    async def get_order(self, order_id: str, for_update: bool = False) -> Order:
        query = select(Order).where(Order.id == order_id)
        if for_update:
            query = query.with_for_update()
        order = (await self.session.execute(query)).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order")
        return order

    async def get_user(self, user_id: str) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User")
        return user

    async def find_tracking(self, order_id: str) -> OrderTracking | None:
        result = await self.session.execute(
            select(OrderTracking).where(OrderTracking.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_tracking(self, order_id: str) -> OrderTracking:
        """Return the tracking row, creating an empty one if the opening hook never ran."""
        tracking = await self.find_tracking(order_id)
        if tracking is None:
            logger.warning("Tracking row missing for order %s, creating it", order_id)
            tracking = OrderTracking(order_id=order_id)
            self.session.add(tracking)
            await self.session.flush()
        return tracking

    async def open_tracking(self, order_id: str, created_by: str | None = None) -> OrderTracking:
        """Tracking row + initial history entry for a freshly created order."""
        tracking = await self.get_or_create_tracking(order_id)
        self.append_status_history(order_id, OrderStatus.PENDING, created_by, "Order created")
        await self.session.flush()
        return tracking

    # ── Authorization ─────────────────────────────────────────────────────────

    async def is_assigned_provider(self, order_id: str, user_id: str) -> bool:
        result = await self.session.execute(
            select(OrderTracking.service_provider_id).where(OrderTracking.order_id == order_id)
        )
        provider_id = result.scalar_one_or_none()
        return provider_id is not None and provider_id == user_id

    async def authorize_order_access(self, order: Order, user_id: str) -> User:
        """Owner, admin or currently assigned provider; anything else is Forbidden."""
        user = await self.get_user(user_id)
        if order.owner_id == user_id or user.is_admin:
            return user
        if await self.is_assigned_provider(order.id, user_id):
            return user
        raise ForbiddenError("Access denied")

    async def has_access(self, order_id: str, user_id: str) -> bool:
        try:
            order = await self.get_order(order_id)
            await self.authorize_order_access(order, user_id)
        except (NotFoundError, ForbiddenError):
            return False
        return True

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_tracking(self, order_id: str, requesting_user_id: str) -> TrackingSnapshot:
        order = await self.get_order(order_id)
        await self.authorize_order_access(order, requesting_user_id)
        tracking = await self.get_or_create_tracking(order_id)
        return await self.build_snapshot(order, tracking)

    async def get_status_history(self, order_id: str, requesting_user_id: str) -> list[StatusHistoryEntry]:
        order = await self.get_order(order_id)
        await self.authorize_order_access(order, requesting_user_id)
        return await self.list_status_history(order_id)

    async def list_status_history(self, order_id: str) -> list[StatusHistoryEntry]:
        result = await self.session.execute(
            select(OrderStatusHistory)
            .where(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.seq.asc())
        )
        return [
            StatusHistoryEntry(
                id=row.id,
                status=row.status,
                updated_by=row.updated_by,
                notes=row.notes,
                created_at=row.created_at,
            )
            for row in result.scalars().all()
        ]

    async def build_snapshot(self, order: Order, tracking: OrderTracking) -> TrackingSnapshot:
        provider = None
        if tracking.service_provider_id:
            user = await self.session.get(User, tracking.service_provider_id)
            if user is not None:
                provider = ServiceProviderSummary(id=user.id, name=user.name, email=user.email)

        location = None
        if tracking.current_location_latitude is not None and tracking.current_location_longitude is not None:
            location = TrackingLocation(
                latitude=tracking.current_location_latitude,
                longitude=tracking.current_location_longitude,
                label=tracking.current_location_label,
            )

        return TrackingSnapshot(
            order_id=order.id,
            current_status=order.status,
            status_history=await self.list_status_history(order.id),
            service_provider=provider,
            current_location=location,
            estimated_completion_time=tracking.estimated_completion_time,
            last_updated_at=tracking.last_updated_at,
        )

    # ── Writes ────────────────────────────────────────────────────────────────

    def append_status_history(
        self,
        order_id: str,
        status: OrderStatus | str,
        updated_by: str | None,
        notes: str | None = None,
    ) -> OrderStatusHistory:
        # Consecutive duplicates are kept: this is a log, not a state.
        entry = OrderStatusHistory(
            order_id=order_id, status=OrderStatus(status), updated_by=updated_by, notes=notes
        )
        self.session.add(entry)
        return entry

    async def set_order_status(self, order: Order, status: OrderStatus | str) -> Order:
        order.status = OrderStatus(status)
        order.updated_at = utcnow()
        if order.status is OrderStatus.CANCELLED:
            order.cancelled_at = order.updated_at
        await self.session.flush()
        return order

    async def update_location(
        self, order_id: str, latitude: float, longitude: float, label: str | None = None
    ) -> OrderTracking:
        if not -90 <= latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90", code="INVALID_LATITUDE")
        if not -180 <= longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180", code="INVALID_LONGITUDE")

        tracking = await self.get_or_create_tracking(order_id)
        tracking.current_location_latitude = latitude
        tracking.current_location_longitude = longitude
        tracking.current_location_label = label
        tracking.last_updated_at = utcnow()
        await self.session.flush()
        return tracking

    async def assign_provider(self, order_id: str, provider_id: str) -> OrderTracking:
        """Set the provider. Status is left alone; the orchestrator transitions it separately."""
        provider = await self.session.get(User, provider_id)
        if provider is None:
            raise ValidationError("Service provider does not exist", code="PROVIDER_NOT_FOUND")
        if not provider.is_agent:
            raise ValidationError("User is not an agent/service provider", code="NOT_A_SERVICE_PROVIDER")

        tracking = await self.get_or_create_tracking(order_id)
        tracking.service_provider_id = provider_id
        tracking.last_updated_at = utcnow()
        await self.session.flush()
        return tracking


def order_access_checker(session_factory: async_sessionmaker[AsyncSession]) -> AccessChecker:
    """Owner-or-admin-or-assigned-provider check with its own short-lived session."""

    async def check(order_id: str, user_id: str) -> bool:
        async with session_factory() as session:
            return await TrackingStore(session).has_access(order_id, user_id)

    return check
