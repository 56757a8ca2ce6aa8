"""
In-process slot store.

Keeps services, slots and bookings in dicts guarded by one re-entrant lock,
so every public operation is atomic with respect to other threads. Records
are copied on the way in and out; callers never hold a reference into the
store's state.
"""

import threading
from datetime import datetime
from typing import Optional, Sequence, Union

from slotbook.errors import (
    BookingNotFoundError,
    DuplicateServiceError,
    ServiceInUseError,
    ServiceNotFoundError,
    SlotInUseError,
    SlotNotFoundError,
    SlotOverlapError,
    SlotUnavailableError,
)
from slotbook.logging_context import get_request_logger
from slotbook.scheduling.lifecycle import (
    BOOKING_LIFECYCLE,
    SLOT_LIFECYCLE,
    BookingTrigger,
    SlotTrigger,
)
from slotbook.schemas.booking_schema import Booking
from slotbook.schemas.slot_schema import (
    AvailabilitySlot,
    BulkCreationReport,
    Service,
    SkippedSlot,
    SlotCandidate,
    SlotQuery,
    SlotStatus,
    SlotUpdate,
)
from slotbook.storage.base import SlotStore, edited_slot
from slotbook.utils import intervals_overlap

logger = get_request_logger(__name__)


class InMemorySlotStore(SlotStore):
    """Thread-safe dict-backed store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._services: dict[str, Service] = {}
        self._slots: dict[str, AvailabilitySlot] = {}
        self._bookings: dict[str, Booking] = {}
        # slot_id -> booking_id of its single non-cancelled booking
        self._active_booking_by_slot: dict[str, str] = {}

    # --- Services ---

    def add_service(self, service: Service) -> Service:
        with self._lock:
            for existing in self._services.values():
                if existing.provider_id == service.provider_id and existing.name == service.name:
                    raise DuplicateServiceError(
                        f"Provider {service.provider_id} already offers '{service.name}'."
                    )
            self._services[service.id] = service.model_copy()
            logger.info("Service added: %s (%s, %d min)", service.id, service.name,
                        service.duration_minutes)
            return service.model_copy()

    def get_service(self, service_id: str) -> Service:
        with self._lock:
            service = self._services.get(service_id)
            if service is None:
                raise ServiceNotFoundError(f"Service {service_id} not found.")
            return service.model_copy()

    def list_services(self, provider_id: Optional[str] = None) -> list[Service]:
        with self._lock:
            return [
                s.model_copy()
                for s in self._services.values()
                if provider_id is None or s.provider_id == provider_id
            ]

    def delete_service(self, service_id: str) -> None:
        with self._lock:
            if service_id not in self._services:
                raise ServiceNotFoundError(f"Service {service_id} not found.")
            slot_ids = [s.id for s in self._slots.values() if s.service_id == service_id]
            if any(sid in self._active_booking_by_slot for sid in slot_ids):
                raise ServiceInUseError(
                    f"Service {service_id} has slots with active bookings."
                )
            for sid in slot_ids:
                self._remove_slot(sid)
            del self._services[service_id]
            logger.info("Service deleted: %s (%d slots removed)", service_id, len(slot_ids))

    # --- Slots ---

    def _find_overlap(
        self, candidate: Union[SlotCandidate, AvailabilitySlot], exclude_id: Optional[str] = None
    ) -> Optional[AvailabilitySlot]:
        for slot in self._slots.values():
            if slot.id == exclude_id:
                continue
            if slot.status == SlotStatus.CANCELLED or slot.scope != candidate.scope:
                continue
            if intervals_overlap(slot.start_at, slot.end_at, candidate.start_at, candidate.end_at):
                return slot
        return None

    def insert_slots(self, candidates: Sequence[SlotCandidate]) -> BulkCreationReport:
        report = BulkCreationReport()
        with self._lock:
            for candidate in candidates:
                conflict = self._find_overlap(candidate)
                if conflict is not None:
                    report.skipped.append(SkippedSlot(
                        start_at=candidate.start_at,
                        end_at=candidate.end_at,
                        conflicting_slot_id=conflict.id,
                    ))
                    continue
                slot = candidate.to_slot()
                self._slots[slot.id] = slot
                report.created.append(slot.model_copy())
        logger.info("Inserted %d slots, skipped %d", report.created_count, report.skipped_count)
        return report

    def get_slot(self, slot_id: str) -> AvailabilitySlot:
        with self._lock:
            return self._get_slot(slot_id).model_copy()

    def _get_slot(self, slot_id: str) -> AvailabilitySlot:
        slot = self._slots.get(slot_id)
        if slot is None:
            raise SlotNotFoundError(f"Slot {slot_id} not found.")
        return slot

    def list_slots(self, query: Optional[SlotQuery] = None) -> list[AvailabilitySlot]:
        query = query or SlotQuery()
        with self._lock:
            matched = [s.model_copy() for s in self._slots.values() if query.matches(s)]
        return sorted(matched, key=lambda s: s.start_at)

    def update_slot(self, slot_id: str, edit: SlotUpdate) -> AvailabilitySlot:
        with self._lock:
            slot = self._get_slot(slot_id)
            edited = edited_slot(slot, edit)
            if edited == slot:
                return edited
            if edited.service_id not in self._services:
                raise ServiceNotFoundError(f"Service {edited.service_id} not found.")
            conflict = self._find_overlap(edited, exclude_id=slot_id)
            if conflict is not None:
                raise SlotOverlapError(
                    f"Slot {edited.start_at:%Y-%m-%d %H:%M}-{edited.end_at:%H:%M} "
                    f"overlaps slot {conflict.id}."
                )
            self._slots[slot_id] = edited
            logger.info("Slot updated: %s (%s-%s)", slot_id, edited.start_at, edited.end_at)
            return edited.model_copy()

    def delete_slot(self, slot_id: str) -> None:
        with self._lock:
            self._get_slot(slot_id)
            if slot_id in self._active_booking_by_slot:
                raise SlotInUseError(
                    f"Slot {slot_id} has an active booking. Cancel the booking or retire the slot."
                )
            self._remove_slot(slot_id)
            logger.info("Slot deleted: %s", slot_id)

    def _remove_slot(self, slot_id: str) -> None:
        # Cancelled booking history goes with the slot.
        for booking_id in [b.id for b in self._bookings.values() if b.slot_id == slot_id]:
            del self._bookings[booking_id]
        del self._slots[slot_id]

    # --- Bookings ---

    def claim_slot(self, slot_id: str, booking: Booking, now: datetime) -> Booking:
        with self._lock:
            slot = self._get_slot(slot_id)
            if slot.status not in SLOT_LIFECYCLE.sources(SlotTrigger.CLAIM):
                raise SlotUnavailableError(f"Slot {slot_id} is {slot.status.value}.")
            if slot.start_at <= now:
                raise SlotUnavailableError(f"Slot {slot_id} has already started.")
            if slot_id in self._active_booking_by_slot:
                raise SlotUnavailableError(f"Slot {slot_id} already has an active booking.")

            slot.status = SLOT_LIFECYCLE.apply(slot.status, SlotTrigger.CLAIM)
            stored = booking.model_copy()
            self._bookings[stored.id] = stored
            self._active_booking_by_slot[slot_id] = stored.id
            return stored.model_copy()

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self._bookings.get(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found.")
        return booking

    def _cancel(self, booking: Booking, actor_id: Optional[str], now: datetime) -> None:
        booking.status = BOOKING_LIFECYCLE.apply(booking.status, BookingTrigger.CANCEL)
        booking.cancelled_at = now
        booking.cancelled_by = actor_id
        self._active_booking_by_slot.pop(booking.slot_id, None)

    def cancel_booking(
        self, booking_id: str, actor_id: str, now: datetime
    ) -> tuple[Booking, AvailabilitySlot]:
        with self._lock:
            booking = self._get_booking(booking_id)
            self._cancel(booking, actor_id, now)
            slot = self._get_slot(booking.slot_id)
            if slot.status == SlotStatus.BOOKED and slot.start_at > now:
                slot.status = SLOT_LIFECYCLE.apply(slot.status, SlotTrigger.RELEASE)
            return booking.model_copy(), slot.model_copy()

    def retire_slot(
        self, slot_id: str, actor_id: Optional[str], now: datetime
    ) -> tuple[AvailabilitySlot, Optional[Booking]]:
        with self._lock:
            slot = self._get_slot(slot_id)
            new_status = SLOT_LIFECYCLE.apply(slot.status, SlotTrigger.RETIRE)
            cancelled: Optional[Booking] = None
            booking_id = self._active_booking_by_slot.get(slot_id)
            if booking_id is not None:
                cancelled = self._bookings[booking_id]
                self._cancel(cancelled, actor_id, now)
                cancelled = cancelled.model_copy()
            slot.status = new_status
            return slot.model_copy(), cancelled

    def get_booking(self, booking_id: str) -> Booking:
        with self._lock:
            return self._get_booking(booking_id).model_copy()

    def find_booking_by_token(self, cancel_token: str) -> Booking:
        with self._lock:
            for booking in self._bookings.values():
                if booking.cancel_token == cancel_token:
                    return booking.model_copy()
        raise BookingNotFoundError("No booking matches this cancel token.")

    def list_client_bookings(self, client_id: str) -> list[Booking]:
        with self._lock:
            owned = [b for b in self._bookings.values() if b.client_id == client_id]
            owned.sort(key=lambda b: self._slots[b.slot_id].start_at, reverse=True)
            return [b.model_copy() for b in owned]

    def reset(self) -> None:
        """Clear all records. Used by test fixtures for isolation."""
        with self._lock:
            self._services.clear()
            self._slots.clear()
            self._bookings.clear()
            self._active_booking_by_slot.clear()
