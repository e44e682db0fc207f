"""
Booking workflow error taxonomy

Every rejected operation raises one of these with a stable ``kind`` so callers
(and UI layers) can branch on it. The HTTP mapping lives in main.py.
"""


class BookingFlowError(Exception):
    """Base class for all workflow failures"""

    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class ValidationFailure(BookingFlowError):
    """Malformed or missing required input"""

    kind = "validation_error"
    status_code = 400


class NotFoundFailure(BookingFlowError):
    """Referenced booking, provider or requester does not exist"""

    kind = "not_found"
    status_code = 404


class AuthorizationFailure(BookingFlowError):
    """Acting identity is not entitled to perform the operation"""

    kind = "forbidden"
    status_code = 403


class StateConflictFailure(BookingFlowError):
    """Transition is illegal from the booking's current state"""

    kind = "invalid_state"
    status_code = 409


class ConflictFailure(BookingFlowError):
    """Provider cannot deliver the service, or the slot overlaps a confirmed booking"""

    kind = "conflict"
    status_code = 409


class TransientStoreFailure(BookingFlowError):
    """Underlying persistence unavailable; the only retryable kind"""

    kind = "store_unavailable"
    status_code = 503
