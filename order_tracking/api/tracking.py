"""
Order Tracking — Tracking API

Thin HTTP layer over TrackingOrchestrator: pulls the authenticated identity
once and passes it down explicitly. Domain errors are mapped to status codes
by the exception handler registered in main.py.
"""
from fastapi import APIRouter, Depends

from order_tracking.api.deps import get_current_user, get_orchestrator
from order_tracking.core.security import AuthenticatedUser
from order_tracking.schemas.tracking import (
    AssignServiceProviderRequest,
    StatusHistoryResponse,
    TrackingSnapshot,
    UpdateLocationRequest,
    UpdateOrderStatusRequest,
)
from order_tracking.tracking.orchestrator import TrackingOrchestrator

router = APIRouter(prefix="/orders", tags=["tracking"])


@router.get("/{order_id}/tracking", response_model=TrackingSnapshot)
async def get_order_tracking(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.get_order_tracking(order_id, user)


@router.get("/{order_id}/status-history", response_model=StatusHistoryResponse)
async def get_status_history(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    history = await orchestrator.get_status_history(order_id, user)
    return StatusHistoryResponse(history=history)


@router.patch("/{order_id}/status", response_model=TrackingSnapshot)
async def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_order_status(order_id, user, payload.status, payload.notes)


@router.post("/{order_id}/tracking/location", response_model=TrackingSnapshot)
async def update_location(
    order_id: str,
    payload: UpdateLocationRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_service_provider_location(
        order_id, user, payload.latitude, payload.longitude, payload.label
    )


@router.post("/{order_id}/assign", response_model=TrackingSnapshot)
async def assign_service_provider(
    order_id: str,
    payload: AssignServiceProviderRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.assign_service_provider(order_id, payload.service_provider_id, user)


@router.post("/{order_id}/cancel", response_model=TrackingSnapshot)
async def cancel_order(
    order_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: TrackingOrchestrator = Depends(get_orchestrator),
):
    """Owner cancellation; repeating it on a cancelled order returns the same snapshot."""
    return await orchestrator.cancel_order(order_id, user)
