"""
Order Tracking — Pydantic schemas

Wire format is camelCase (what web and mobile clients consume); Python code
uses the snake_case field names.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from order_tracking.models.order import OrderStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class TrackingLocation(CamelModel):
    latitude: float
    longitude: float
    label: str | None = None


class ServiceProviderSummary(CamelModel):
    id: str
    name: str
    email: str


class StatusHistoryEntry(CamelModel):
    id: str
    status: OrderStatus
    updated_by: str | None = None
    notes: str | None = None
    created_at: datetime


class TrackingSnapshot(CamelModel):
    order_id: str
    current_status: OrderStatus
    status_history: list[StatusHistoryEntry]
    service_provider: ServiceProviderSummary | None = None
    current_location: TrackingLocation | None = None
    estimated_completion_time: datetime | None = None
    last_updated_at: datetime


class StatusHistoryResponse(CamelModel):
    history: list[StatusHistoryEntry]


# ── Request bodies ────────────────────────────────────────────────────────────

class UpdateOrderStatusRequest(CamelModel):
    status: OrderStatus
    notes: str | None = Field(None, max_length=500)


class UpdateLocationRequest(CamelModel):
    latitude: float
    longitude: float
    label: str | None = Field(None, max_length=255)


class AssignServiceProviderRequest(CamelModel):
    service_provider_id: str = Field(..., min_length=1, max_length=36)
