from slotbook.scheduling.booking_state_machine import BookingStateMachine
from slotbook.scheduling.lifecycle import (
    BOOKING_LIFECYCLE,
    SLOT_LIFECYCLE,
    BookingTrigger,
    SlotTrigger,
)
from slotbook.scheduling.slot_generator import SlotGenerator

__all__ = [
    "BookingStateMachine",
    "SlotGenerator",
    "SLOT_LIFECYCLE",
    "BOOKING_LIFECYCLE",
    "SlotTrigger",
    "BookingTrigger",
]
