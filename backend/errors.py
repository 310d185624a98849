"""
Typed service outcomes.

Entity services raise these instead of HTTP exceptions; main.py maps each one
to a JSON response with the matching status code and a {"detail": ...} body.
"""


class ServiceError(Exception):
    status_code = 500
    default_detail = "Internal error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotAuthenticated(ServiceError):
    """No verifiable actor identity. Always a blanket deny."""
    status_code = 401
    default_detail = "Not authenticated"


class AccessDenied(ServiceError):
    status_code = 403
    default_detail = "Access denied"


class NotFound(ServiceError):
    status_code = 404
    default_detail = "Not found"


class ValidationFailed(ServiceError):
    status_code = 400
    default_detail = "Invalid request"


class Conflict(ServiceError):
    status_code = 409
    default_detail = "Conflict"


class ConcurrencyConflict(Conflict):
    default_detail = "The record was modified concurrently. Reload and try again."
