"""Booking and scheduling exceptions."""


class BookingError(Exception):
    """Base exception for all slotbook errors."""


class InvalidInputError(BookingError):
    """Raised when slot generation parameters are malformed."""


class InvalidRangeError(BookingError):
    """Raised when a date range ends before it starts."""


class SlotUnavailableError(BookingError):
    """Raised when a slot cannot be claimed (already taken or in the past)."""


class InvalidStateError(BookingError):
    """Raised when an operation is not allowed in the record's current status."""


class InvalidTransitionError(InvalidStateError):
    """Raised when a lifecycle trigger has no transition from the current status."""


class NotFoundError(BookingError):
    """Base for lookups that found nothing."""


class SlotNotFoundError(NotFoundError):
    pass


class BookingNotFoundError(NotFoundError):
    pass


class ServiceNotFoundError(NotFoundError):
    pass


class SlotOverlapError(BookingError):
    """Raised when a single slot would overlap an existing active slot."""


class SlotInUseError(BookingError):
    """Raised when deleting a slot with an active booking, or moving a booked slot."""


class ServiceInUseError(BookingError):
    """Raised when removing a service whose slots still carry active bookings."""


class DuplicateServiceError(BookingError):
    """Raised when a provider already offers a service with the same name."""


class CancelTokenExpiredError(BookingError):
    """Raised when a cancel link is used after its expiry."""
