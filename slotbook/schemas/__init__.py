from slotbook.schemas.booking_schema import Booking, BookingStatus
from slotbook.schemas.slot_schema import (
    AvailabilitySlot,
    BulkCreationReport,
    BulkSlotRequest,
    Service,
    SkippedSlot,
    SlotCandidate,
    SlotQuery,
    SlotStatus,
    SlotUpdate,
)

__all__ = [
    "AvailabilitySlot",
    "Booking",
    "BookingStatus",
    "BulkCreationReport",
    "BulkSlotRequest",
    "Service",
    "SkippedSlot",
    "SlotCandidate",
    "SlotQuery",
    "SlotStatus",
    "SlotUpdate",
]
