"""
Order Tracking — Domain errors

Raised by the store accessor and the state machine, passed through the
orchestrator untouched, and mapped to HTTP status codes / realtime error
events at the edges.
"""


class TrackingError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(TrackingError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ForbiddenError(TrackingError):
    status_code = 403
    code = "ACCESS_DENIED"


class ValidationError(TrackingError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: str, requested: str, message: str | None = None):
        super().__init__(message or f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class AuthenticationError(TrackingError):
    status_code = 401
    code = "AUTH_REQUIRED"
