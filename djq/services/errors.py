"""Domain error codes for the booking engine.

Every rejection the engine produces is one of these. Callers branch on the
class (or on ``code``) and show ``message`` to the user.
"""

from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    SLOT_NOT_FOUND = "SLOT_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    B2B_REQUEST_NOT_FOUND = "B2B_REQUEST_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    DUPLICATE_ACTIVE_REQUEST = "DUPLICATE_ACTIVE_REQUEST"
    PERFORMER_INELIGIBLE = "PERFORMER_INELIGIBLE"
    INVALID_SLOT_SELECTION = "INVALID_SLOT_SELECTION"
    BOOKING_BUSY = "BOOKING_BUSY"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist."""


class EventNotFoundError(NotFoundError):
    code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, event_id: str) -> None:
        super().__init__("Event not found")
        self.event_id = event_id


class SlotNotFoundError(NotFoundError):
    code = ErrorCode.SLOT_NOT_FOUND

    def __init__(self, slot_ids: list[str]) -> None:
        super().__init__("One or more slots not found")
        self.slot_ids = slot_ids


class BookingNotFoundError(NotFoundError):
    code = ErrorCode.BOOKING_NOT_FOUND

    def __init__(self, booking_id: str) -> None:
        super().__init__("Booking not found")
        self.booking_id = booking_id


class B2BRequestNotFoundError(NotFoundError):
    code = ErrorCode.B2B_REQUEST_NOT_FOUND

    def __init__(self, request_id: str) -> None:
        super().__init__("B2B request not found")
        self.request_id = request_id


class InvalidStateError(DomainError):
    """Raised when an operation is illegal for the entity's current status."""

    code = ErrorCode.INVALID_STATE


class NotAuthorizedError(DomainError):
    """Raised when the actor lacks the required relationship to the entity."""

    code = ErrorCode.NOT_AUTHORIZED


class SlotUnavailableError(DomainError):
    """Raised when a requested slot is already booked or its event is not open."""

    code = ErrorCode.SLOT_UNAVAILABLE


class DuplicateActiveRequestError(DomainError):
    code = ErrorCode.DUPLICATE_ACTIVE_REQUEST

    def __init__(self, booking_id: str) -> None:
        super().__init__("This booking already has a pending or accepted B2B request")
        self.booking_id = booking_id


class PerformerIneligibleError(DomainError):
    code = ErrorCode.PERFORMER_INELIGIBLE

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(reason)
        self.user_id = user_id


class InvalidSlotSelectionError(DomainError):
    """Raised when a batch of slot ids breaks the event's booking rules."""

    code = ErrorCode.INVALID_SLOT_SELECTION


class BookingBusyError(DomainError):
    code = ErrorCode.BOOKING_BUSY

    def __init__(self, booking_id: str) -> None:
        super().__init__("Booking is being updated, please try again.")
        self.booking_id = booking_id
