"""
Order Tracking — Route dependencies
"""
from fastapi import Request

from order_tracking.core.security import AuthenticatedUser
from order_tracking.tracking.orchestrator import TrackingOrchestrator


def get_orchestrator(request: Request) -> TrackingOrchestrator:
    return request.app.state.orchestrator


def get_current_user(request: Request) -> AuthenticatedUser:
    # Set by JWTAuthMiddleware; routes pass it on explicitly.
    return request.state.user
