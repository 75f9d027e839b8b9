"""
Exceptions raised by the waitlist services.

Each class carries the ``ErrorCode`` and HTTP status it maps to, so the error
middleware can render any of them without a lookup of its own. Services raise
these and roll back their unit of work; routers let them propagate.
"""

from typing import Any, Dict, Optional, List
from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable codes returned in ``error.error_code``."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"

    # Waitlist and ticket rules
    INVALID_STATE = "INVALID_STATE"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    NOT_SOLD_OUT = "NOT_SOLD_OUT"
    EVENT_ENDED = "EVENT_ENDED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"

    # Row claimed by another transaction
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    DATABASE_UNAVAILABLE = "DATABASE_UNAVAILABLE"


class WaitlistReassignmentError(Exception):
    """Root of the service's exceptions.

    Attributes:
        message: Human-readable text, returned as ``error.message``
        details: Structured context, returned as ``error.details``
        suggestions: Hints for the caller
        retry_after: Seconds before a retry makes sense; sent as ``Retry-After``
    """

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error_code": self.error_code.value, "message": self.message}
        for key in ("details", "suggestions", "retry_after"):
            value = getattr(self, key)
            if value:
                body[key] = value
        return body


class ValidationError(WaitlistReassignmentError):
    """Malformed input or a violated database constraint."""

    error_code = ErrorCode.VALIDATION_ERROR
    status_code = 422

    def __init__(self, message: str, field_errors: Optional[Dict[str, List[str]]] = None, **kwargs):
        if field_errors:
            kwargs.setdefault("details", {"field_errors": field_errors})
        super().__init__(message, **kwargs)
        self.field_errors = field_errors or {}


class NotFoundError(WaitlistReassignmentError):
    """A referenced row does not exist.

    Subclasses set ``resource`` and build the message from the id.
    """

    error_code = ErrorCode.NOT_FOUND
    status_code = 404
    resource = "resource"

    def __init__(self, resource_id: Any = None, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("details", {"resource_type": self.resource, "resource_id": resource_id})
        super().__init__(message or f"{self.resource.replace('_', ' ').capitalize()} {resource_id} not found", **kwargs)
        self.resource_id = resource_id


class UserNotFoundError(NotFoundError):
    resource = "user"


class EventNotFoundError(NotFoundError):
    resource = "event"


class TicketTypeNotFoundError(NotFoundError):
    resource = "ticket_type"


class TicketNotFoundError(NotFoundError):
    resource = "ticket"

    def __init__(self, ticket_id: int, **kwargs):
        kwargs.setdefault("suggestions", ["Check the ticket ID", "View your tickets"])
        super().__init__(ticket_id, **kwargs)


class OfferNotFoundError(NotFoundError):
    """No outstanding waitlist offer matches the transaction."""

    resource = "offer"

    def __init__(self, transaction_id: int, **kwargs):
        super().__init__(
            transaction_id,
            message=f"Reservation for transaction {transaction_id} not found or already resolved",
            **kwargs
        )


class WaitlistEntryNotFoundError(NotFoundError):
    resource = "waitlist_entry"

    def __init__(self, message: str = "Waitlist entry not found", entry_id: Optional[int] = None, **kwargs):
        super().__init__(entry_id, message=message, **kwargs)


class AuthorizationError(WaitlistReassignmentError):
    """The caller does not own the ticket, entry or offer, or does not organize the event."""

    error_code = ErrorCode.FORBIDDEN
    status_code = 403

    def __init__(self, message: str = "Access denied", **kwargs):
        super().__init__(message, **kwargs)


class BusinessLogicError(WaitlistReassignmentError):
    """A waitlist or ticket rule forbids the operation in the current state."""

    status_code = 400


class InvalidTicketStateError(BusinessLogicError):
    error_code = ErrorCode.INVALID_STATE

    def __init__(self, ticket_id: int, current_state: str, required_state: str, **kwargs):
        super().__init__(
            f"Ticket {ticket_id} is in {current_state} state, required {required_state}",
            details={"ticket_id": ticket_id, "current_state": current_state, "required_state": required_state},
            **kwargs
        )


class AlreadyOnWaitlistError(BusinessLogicError):
    error_code = ErrorCode.DUPLICATE_ENTRY
    status_code = 409

    def __init__(self, user_id: int, event_id: int, **kwargs):
        super().__init__(
            f"User {user_id} is already on the waitlist for event {event_id}",
            details={"user_id": user_id, "event_id": event_id},
            **kwargs
        )


class EventNotSoldOutError(BusinessLogicError):
    """Joining a waitlist and self-returns both need a sold-out event."""

    error_code = ErrorCode.NOT_SOLD_OUT

    def __init__(self, event_id: int, available: int, message: Optional[str] = None, **kwargs):
        super().__init__(
            message or f"Event {event_id} is not sold out ({available} tickets available)",
            details={"event_id": event_id, "available": available},
            suggestions=["Purchase a ticket directly"],
            **kwargs
        )


class EventEndedError(BusinessLogicError):
    error_code = ErrorCode.EVENT_ENDED

    def __init__(self, event_id: int, **kwargs):
        super().__init__(
            f"Event {event_id} has already ended",
            details={"event_id": event_id},
            **kwargs
        )


class ReservationExpiredError(BusinessLogicError):
    """Raised on accept after the window lapsed; the slot has already moved on."""

    error_code = ErrorCode.RESERVATION_EXPIRED
    status_code = 410

    def __init__(self, transaction_id: int, window_minutes: int, **kwargs):
        super().__init__(
            f"Reservation {transaction_id} has expired ({window_minutes} minutes limit). "
            "The ticket has been offered to the next person on the waitlist.",
            details={"transaction_id": transaction_id, "window_minutes": window_minutes},
            suggestions=["Join the waitlist again"],
            **kwargs
        )


class ConcurrencyError(WaitlistReassignmentError):
    """Another transaction holds or already resolved the row."""

    error_code = ErrorCode.CONCURRENCY_CONFLICT
    status_code = 409

    def __init__(self, message: str, retry_after: int = 1, **kwargs):
        super().__init__(
            message,
            retry_after=retry_after,
            suggestions=["Wait a moment and retry"],
            **kwargs
        )


class DatabaseUnavailableError(WaitlistReassignmentError):
    error_code = ErrorCode.DATABASE_UNAVAILABLE
    status_code = 503

    def __init__(self, message: str = "Database service temporarily unavailable", **kwargs):
        kwargs.setdefault("retry_after", 30)
        super().__init__(message, **kwargs)
