"""
Booking notifications.

In production, this would deliver email or SMS through a provider
(SMTP, SendGrid, Twilio). The default implementation writes the message to
the log so the booking flow can run without any delivery backend.
"""

from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlencode

from slotbook.config import settings
from slotbook.logging_context import get_request_logger
from slotbook.schemas.booking_schema import Booking
from slotbook.schemas.slot_schema import AvailabilitySlot

logger = get_request_logger(__name__)


def build_cancel_url(cancel_token: str, frontend_url: Optional[str] = None) -> str:
    """Link a client follows to cancel without logging in."""
    base = (frontend_url or settings.booking.frontend_url).rstrip("/")
    return f"{base}/cancel?{urlencode({'token': cancel_token})}"


class Notifier(ABC):
    """Delivery channel for booking lifecycle messages."""

    @abstractmethod
    def booking_confirmed(
        self, booking: Booking, slot: AvailabilitySlot, cancel_url: Optional[str]
    ) -> None:
        ...

    @abstractmethod
    def booking_cancelled(self, booking: Booking, slot: AvailabilitySlot) -> None:
        ...


class LoggingNotifier(Notifier):
    """Logs each notification instead of sending it."""

    def booking_confirmed(
        self, booking: Booking, slot: AvailabilitySlot, cancel_url: Optional[str]
    ) -> None:
        logger.info(
            "Confirmation for client %s: booking %s on %s. Cancel link: %s",
            booking.client_id, booking.id, slot.start_at.strftime("%Y-%m-%d %H:%M"),
            cancel_url or "n/a",
        )

    def booking_cancelled(self, booking: Booking, slot: AvailabilitySlot) -> None:
        logger.info(
            "Cancellation for client %s: booking %s on %s",
            booking.client_id, booking.id, slot.start_at.strftime("%Y-%m-%d %H:%M"),
        )
