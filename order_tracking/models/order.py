"""
Order Tracking — Order DB models

orders               — owned by the ordering service; only status is written here
order_tracking       — one row per order (created by the order-opening hook)
order_status_history — append-only transition log
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import String, DateTime, Float, Integer, Text, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from order_tracking.db.database import Base


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class OrderType(str, PyEnum):
    CLEANING = "cleaning"
    LAUNDRY = "laundry"
    PROPERTY_BOOKING = "property_booking"


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


order_status_enum = Enum(
    OrderStatus, name="order_status", values_callable=lambda enum: [m.value for m in enum]
)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=False)
    type: Mapped[OrderType] = mapped_column(
        Enum(OrderType, name="order_type", values_callable=lambda enum: [m.value for m in enum]),
        nullable=False,
    )
    status: Mapped[OrderStatus] = mapped_column(order_status_enum, default=OrderStatus.PENDING, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status}>"


class OrderTracking(Base):
    """Exactly one row per order. Location fields stay null until the first ping."""

    __tablename__ = "order_tracking"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), unique=True, index=True, nullable=False
    )
    service_provider_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
    current_location_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_location_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_location_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    estimated_completion_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class OrderStatusHistory(Base):
    """Never updated or deleted; `status` is the value transitioned to.

    `seq` follows insertion order and breaks ties between equal `created_at` values.
    """

    __tablename__ = "order_status_history"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[OrderStatus] = mapped_column(order_status_enum, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True, nullable=False)
