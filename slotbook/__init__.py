"""Availability slot generation and booking state machine."""

from slotbook.errors import (
    BookingError,
    InvalidInputError,
    InvalidRangeError,
    InvalidStateError,
    SlotUnavailableError,
)
from slotbook.scheduling import BookingStateMachine, SlotGenerator

__all__ = [
    "BookingError",
    "BookingStateMachine",
    "InvalidInputError",
    "InvalidRangeError",
    "InvalidStateError",
    "SlotGenerator",
    "SlotUnavailableError",
]
