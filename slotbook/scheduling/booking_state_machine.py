"""
Booking state machine for availability slots.

Mediates every status change of a slot after creation: a client claiming an
OPEN slot, a booking being cancelled, and a provider retiring a slot. The
check-and-transition of each operation is delegated to the store as one
atomic step, so N concurrent claims on one slot yield exactly one booking
and N-1 SlotUnavailableError.

Usage:
    machine = BookingStateMachine(store)
    booking = machine.claim(slot_id, client_id="client-42")
    machine.cancel(booking.id, actor_id="client-42")
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Optional

from slotbook.config import settings
from slotbook.errors import CancelTokenExpiredError, InvalidStateError, SlotUnavailableError
from slotbook.logging_context import get_request_logger, in_request_scope
from slotbook.notifications import LoggingNotifier, Notifier, build_cancel_url
from slotbook.schemas.booking_schema import Booking, BookingStatus
from slotbook.schemas.slot_schema import AvailabilitySlot, SlotStatus
from slotbook.utils import local_now, new_cancel_token

if TYPE_CHECKING:
    from slotbook.storage.base import SlotStore

logger = get_request_logger(__name__)


class BookingStateMachine:
    """
    Claim, cancel and retire operations over one store.

    Cancelling a booking whose slot has already started leaves the slot
    BOOKED: the interval is in the past and is never offered again.
    No operation is retried; a SlotUnavailableError is a normal business
    outcome for the caller to report.
    """

    def __init__(
        self,
        store: SlotStore,
        notifier: Optional[Notifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cancel_token_ttl_hours: Optional[int] = None,
        frontend_url: Optional[str] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock or (lambda: local_now(settings.booking.timezone))
        if cancel_token_ttl_hours is None:
            cancel_token_ttl_hours = settings.booking.cancel_token_ttl_hours
        if cancel_token_ttl_hours < 1:
            raise ValueError(
                f"cancel_token_ttl_hours must be >= 1, got {cancel_token_ttl_hours}"
            )
        self._token_ttl = timedelta(hours=cancel_token_ttl_hours)
        self._frontend_url = frontend_url

    def now(self) -> datetime:
        return self._clock()

    @in_request_scope
    def claim(self, slot_id: str, client_id: str) -> Booking:
        """
        Book an OPEN, future slot for a client.

        Returns:
            The new CONFIRMED booking.

        Raises:
            SlotNotFoundError: Unknown slot.
            SlotUnavailableError: The slot is not OPEN, has already started,
                or another client claimed it first.
        """
        now = self.now()
        slot = self._store.get_slot(slot_id)
        if slot.status != SlotStatus.OPEN:
            raise SlotUnavailableError(f"Slot {slot_id} is {slot.status.value}.")
        if slot.start_at <= now:
            raise SlotUnavailableError(f"Slot {slot_id} has already started.")

        booking = Booking(
            slot_id=slot_id,
            client_id=client_id,
            status=BookingStatus.CONFIRMED,
            created_at=now,
            cancel_token=new_cancel_token(),
            cancel_token_expires_at=now + self._token_ttl,
        )
        try:
            booking = self._store.claim_slot(slot_id, booking, now)
        except SlotUnavailableError:
            logger.info("Claim on slot %s by %s rejected", slot_id, client_id)
            raise

        slot.status = SlotStatus.BOOKED
        logger.info("Slot %s booked by %s (booking %s)", slot_id, client_id, booking.id)
        self._notify_confirmed(booking, slot)
        return booking

    @in_request_scope
    def cancel(self, booking_id: str, actor_id: str) -> Booking:
        """
        Cancel a CONFIRMED booking. A future slot becomes claimable again.

        Raises:
            BookingNotFoundError: Unknown booking.
            InvalidStateError: The booking is not CONFIRMED.
        """
        booking = self._store.get_booking(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidStateError(
                f"Booking {booking_id} is {booking.status.value}; "
                "only confirmed bookings can be cancelled."
            )
        return self._cancel(booking_id, actor_id, self.now())

    @in_request_scope
    def cancel_by_token(self, cancel_token: str) -> Booking:
        """
        Cancel through the link sent with the confirmation.

        Raises:
            BookingNotFoundError: No booking carries this token.
            CancelTokenExpiredError: The link has expired.
            InvalidStateError: The booking is not CONFIRMED.
        """
        now = self.now()
        booking = self._store.find_booking_by_token(cancel_token)
        if booking.cancel_token_expires_at is not None and now > booking.cancel_token_expires_at:
            raise CancelTokenExpiredError(f"Cancel link for booking {booking.id} has expired.")
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidStateError(f"Booking {booking.id} is already {booking.status.value}.")
        return self._cancel(booking.id, booking.client_id, now)

    def _cancel(self, booking_id: str, actor_id: str, now: datetime) -> Booking:
        booking, slot = self._store.cancel_booking(booking_id, actor_id, now)
        if slot.status == SlotStatus.OPEN:
            logger.info("Booking %s cancelled by %s; slot %s reopened", booking_id, actor_id, slot.id)
        else:
            logger.info(
                "Booking %s cancelled by %s; slot %s stays %s",
                booking_id, actor_id, slot.id, slot.status.value,
            )
        self._notify_cancelled(booking, slot)
        return booking

    @in_request_scope
    def retire(self, slot_id: str, actor_id: Optional[str] = None) -> AvailabilitySlot:
        """
        Permanently withdraw a slot, cancelling its booking if it has one.

        Raises:
            SlotNotFoundError: Unknown slot.
            InvalidStateError: The slot is already CANCELLED.
        """
        slot, cancelled = self._store.retire_slot(slot_id, actor_id, self.now())
        logger.info("Slot %s retired by %s", slot_id, actor_id or "system")
        if cancelled is not None:
            self._notify_cancelled(cancelled, slot)
        return slot

    def client_bookings(self, client_id: str) -> list[Booking]:
        return self._store.list_client_bookings(client_id)

    def _notify_confirmed(self, booking: Booking, slot: AvailabilitySlot) -> None:
        cancel_url = (
            build_cancel_url(booking.cancel_token, self._frontend_url)
            if booking.cancel_token else None
        )
        try:
            self._notifier.booking_confirmed(booking, slot, cancel_url)
        except Exception:
            # The booking is committed; delivery problems must not undo it.
            logger.exception("Confirmation notification failed for booking %s", booking.id)

    def _notify_cancelled(self, booking: Booking, slot: AvailabilitySlot) -> None:
        try:
            self._notifier.booking_cancelled(booking, slot)
        except Exception:
            logger.exception("Cancellation notification failed for booking %s", booking.id)
