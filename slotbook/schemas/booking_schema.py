"""Booking data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from slotbook.utils import new_id


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Booking(BaseModel):
    """A client occupying one availability slot."""
    id: str = Field(default_factory=new_id)
    slot_id: str
    client_id: str
    status: BookingStatus = BookingStatus.CONFIRMED
    created_at: datetime
    cancel_token: Optional[str] = None
    cancel_token_expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED
