"""
Persistence collaborator contract for the booking core.

A store owns services, slots and bookings. The three status-changing
operations (``claim_slot``, ``cancel_booking``, ``retire_slot``) must each
be a single atomic step: concurrent callers on the same record observe some
serial order, and no caller ever sees half of a change. Stores signal
failures with the exceptions in ``slotbook.errors``.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from slotbook.errors import InvalidInputError, InvalidStateError, SlotInUseError
from slotbook.schemas.booking_schema import Booking
from slotbook.schemas.slot_schema import (
    AvailabilitySlot,
    BulkCreationReport,
    Service,
    SlotCandidate,
    SlotQuery,
    SlotStatus,
    SlotUpdate,
)

_STATUS_HINTS = {
    SlotStatus.BOOKED: "Slots are booked through claim.",
    SlotStatus.CANCELLED: "Use retire to withdraw a slot.",
    SlotStatus.OPEN: "Cancel its booking to reopen a slot.",
}


def edited_slot(slot: AvailabilitySlot, edit: SlotUpdate) -> AvailabilitySlot:
    """
    Apply a provider edit to a copy of ``slot``.

    Only the checks that need nothing but the slot itself live here; stores
    add the service lookup and the overlap check. An update that changes
    nothing returns an unchanged copy, whatever the slot's status.

    Raises:
        InvalidStateError: ``edit.status`` differs from the current status,
            or the slot is CANCELLED.
        SlotInUseError: The slot is BOOKED.
        InvalidInputError: Offset-aware times, or the edited interval is empty.
    """
    if edit.status is not None and edit.status != slot.status:
        raise InvalidStateError(
            f"Slot {slot.id} is {slot.status.value}; an update cannot set it to "
            f"{edit.status.value}. {_STATUS_HINTS[edit.status]}"
        )
    changes = {k: v for k, v in edit.changes().items() if getattr(slot, k) != v}
    if not changes:
        return slot.model_copy()
    if slot.status == SlotStatus.CANCELLED:
        raise InvalidStateError(f"Slot {slot.id} is cancelled and cannot be changed.")
    if slot.status == SlotStatus.BOOKED:
        raise SlotInUseError(f"Slot {slot.id} is booked and cannot be moved.")
    if any(changes[k].tzinfo for k in ("start_at", "end_at") if k in changes):
        raise InvalidInputError("Slot times are wall-clock times and must not carry an offset.")

    edited = slot.model_copy(update=changes)
    if edited.start_at >= edited.end_at:
        raise InvalidInputError(
            f"start_at {edited.start_at:%Y-%m-%d %H:%M} must be before "
            f"end_at {edited.end_at:%Y-%m-%d %H:%M}."
        )
    return edited


class SlotStore(ABC):
    """Abstract store for services, availability slots and bookings."""

    # --- Services ---

    @abstractmethod
    def add_service(self, service: Service) -> Service:
        """Persist a service. Raises DuplicateServiceError on a name clash per provider."""

    @abstractmethod
    def get_service(self, service_id: str) -> Service:
        """Raises ServiceNotFoundError."""

    @abstractmethod
    def list_services(self, provider_id: Optional[str] = None) -> list[Service]:
        ...

    @abstractmethod
    def delete_service(self, service_id: str) -> None:
        """Remove a service and its slots.

        Raises ServiceInUseError while any of its slots has an active booking.
        """

    # --- Slots ---

    @abstractmethod
    def insert_slots(self, candidates: Sequence[SlotCandidate]) -> BulkCreationReport:
        """
        Insert each candidate as an OPEN slot unless it overlaps an active
        (non-cancelled) slot in the same scope, including slots inserted
        earlier in the same call. Overlapping candidates are skipped and
        reported; the rest are still inserted.
        """

    @abstractmethod
    def get_slot(self, slot_id: str) -> AvailabilitySlot:
        """Raises SlotNotFoundError."""

    @abstractmethod
    def list_slots(self, query: Optional[SlotQuery] = None) -> list[AvailabilitySlot]:
        """Slots matching ``query``, ordered by start time."""

    @abstractmethod
    def update_slot(self, slot_id: str, edit: SlotUpdate) -> AvailabilitySlot:
        """
        Reschedule a slot or move it to another service or staff member.

        Raises:
            SlotNotFoundError: Unknown slot.
            ServiceNotFoundError: The new service does not exist.
            SlotOverlapError: The edited slot overlaps another active slot
                in its scope. The slot never conflicts with itself.
            InvalidStateError, SlotInUseError, InvalidInputError: See
                ``edited_slot``.
        """

    @abstractmethod
    def delete_slot(self, slot_id: str) -> None:
        """Physically remove a slot. Raises SlotInUseError while it has an active booking."""

    # --- Bookings ---

    @abstractmethod
    def claim_slot(self, slot_id: str, booking: Booking, now: datetime) -> Booking:
        """
        Atomically flip an OPEN slot starting after ``now`` to BOOKED and
        store ``booking`` for it.

        Raises:
            SlotNotFoundError: Unknown slot.
            SlotUnavailableError: The slot is not OPEN or has already started.
        """

    @abstractmethod
    def cancel_booking(
        self, booking_id: str, actor_id: str, now: datetime
    ) -> tuple[Booking, AvailabilitySlot]:
        """
        Atomically cancel a CONFIRMED booking. Its slot goes back to OPEN
        when it is still BOOKED and starts after ``now``.

        Raises:
            BookingNotFoundError: Unknown booking.
            InvalidTransitionError: The booking is not CONFIRMED.
        """

    @abstractmethod
    def retire_slot(
        self, slot_id: str, actor_id: Optional[str], now: datetime
    ) -> tuple[AvailabilitySlot, Optional[Booking]]:
        """
        Atomically move a slot to CANCELLED, cancelling its active booking
        if it has one. Returns the slot and the cancelled booking, if any.

        Raises:
            SlotNotFoundError: Unknown slot.
            InvalidTransitionError: The slot is already CANCELLED.
        """

    @abstractmethod
    def get_booking(self, booking_id: str) -> Booking:
        """Raises BookingNotFoundError."""

    @abstractmethod
    def find_booking_by_token(self, cancel_token: str) -> Booking:
        """Raises BookingNotFoundError."""

    @abstractmethod
    def list_client_bookings(self, client_id: str) -> list[Booking]:
        """A client's bookings, most recent slot first."""
