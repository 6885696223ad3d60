"""
Order Tracking — JWT Authentication Middleware
Validates Bearer token on all protected HTTP routes; returns 401 on failure.
WebSocket scopes pass straight through: the realtime handshake authenticates itself.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from order_tracking.core.errors import AuthenticationError
from order_tracking.core.security import extract_bearer, verify_token

# Paths that do NOT require authentication
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every HTTP request. Validates the JWT Bearer token and
    attaches the AuthenticatedUser to request.state.user on success.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in PUBLIC_PATHS or request.url.path.startswith("/metrics"):
            return await call_next(request)

        try:
            request.state.user = verify_token(extract_bearer(request.headers.get("Authorization")))
        except AuthenticationError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.message, "code": exc.code},
                headers={"WWW-Authenticate": "Bearer"},
            )

        return await call_next(request)
