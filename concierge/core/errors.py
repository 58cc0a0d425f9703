"""
Domain exceptions. The HTTP layer maps each class to a status code and a
machine-readable error code (see `concierge.api.errors`).
"""

from __future__ import annotations


class ConciergeError(Exception):
    code = "error"

    def __init__(self, message: str = "", **extra):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.extra = extra


class ValidationFailed(ConciergeError):
    code = "invalid_request"


class NotFoundError(ConciergeError):
    code = "not_found"


class ConflictError(ConciergeError):
    code = "conflict"


class AuthenticationFailed(ConciergeError):
    """Raised for every credential problem. The message never reveals the cause."""

    code = "unauthorized"

    def __init__(self):
        super().__init__("Unauthorized")


class AccessDenied(ConciergeError):
    code = "forbidden"


class TierRequired(AccessDenied):
    code = "tier_required"


class TierLimitReached(AccessDenied):
    code = "tier_limit_reached"


class RoutingKeyConflict(ConflictError):
    code = "routing_key_conflict"


class EmailTaken(ValidationFailed):
    code = "email_taken"
