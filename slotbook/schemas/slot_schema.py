"""Service, availability slot and bulk-generation data models."""

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from slotbook.errors import InvalidInputError
from slotbook.utils import new_id, parse_wall_time


class SlotStatus(str, Enum):
    """Lifecycle status of an availability slot."""
    OPEN = "open"
    BOOKED = "booked"
    CANCELLED = "cancelled"


def overlap_scope(service_id: str, staff_id: Optional[str]) -> tuple[str, str]:
    """Key of the resource a slot occupies.

    Slots with a staff member compete for that staff member's time;
    staff-less slots compete for the service.
    """
    if staff_id:
        return ("staff", staff_id)
    return ("service", service_id)


class Service(BaseModel):
    """Offered unit of work. Its duration sizes generated slots."""
    id: str = Field(default_factory=new_id)
    provider_id: str
    name: str = Field(min_length=1)
    duration_minutes: int = Field(gt=0)
    price: int = Field(ge=0, description="Minor currency units")


class AvailabilitySlot(BaseModel):
    """A bookable time interval, half-open: [start_at, end_at)."""
    id: str = Field(default_factory=new_id)
    service_id: str
    staff_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: SlotStatus = SlotStatus.OPEN

    @model_validator(mode="after")
    def _end_after_start(self) -> "AvailabilitySlot":
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self

    @property
    def scope(self) -> tuple[str, str]:
        return overlap_scope(self.service_id, self.staff_id)


class SlotCandidate(BaseModel):
    """A generated interval waiting to be persisted as an OPEN slot."""
    model_config = ConfigDict(frozen=True)

    service_id: str
    staff_id: Optional[str] = None
    start_at: datetime
    end_at: datetime

    @property
    def scope(self) -> tuple[str, str]:
        return overlap_scope(self.service_id, self.staff_id)

    def to_slot(self) -> AvailabilitySlot:
        return AvailabilitySlot(
            service_id=self.service_id,
            staff_id=self.staff_id,
            start_at=self.start_at,
            end_at=self.end_at,
        )


class BulkSlotRequest(BaseModel):
    """
    Parameters for bulk slot generation.

    Accepts both snake_case field names and the camelCase keys sent by the
    provider dashboard (``serviceId``, ``daysOfWeek``, ``dailyStartTime``...).
    Weekdays are numbered Sunday=0 through Saturday=6.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    service_id: str
    staff_id: Optional[str] = None
    start_date: date
    end_date: date
    days_of_week: frozenset[int]
    daily_start_time: time
    daily_end_time: time
    slot_duration_minutes: int

    @field_validator("staff_id", mode="before")
    @classmethod
    def _blank_staff_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("daily_start_time", "daily_end_time", mode="before")
    @classmethod
    def _parse_wall_time(cls, value: Any) -> Any:
        # Accepts unpadded hours such as "9:00".
        if isinstance(value, str):
            return parse_wall_time(value)
        return value

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BulkSlotRequest":
        """Build a request from a raw payload, mapping type errors to InvalidInputError."""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise InvalidInputError(
                f"Invalid bulk slot request, check: {', '.join(fields)}"
            ) from exc

    @classmethod
    def for_service(
        cls,
        service: Service,
        *,
        start_date: date,
        end_date: date,
        days_of_week: set[int],
        daily_start_time: time,
        daily_end_time: time,
        staff_id: Optional[str] = None,
    ) -> "BulkSlotRequest":
        """Request whose slot length is the service's duration."""
        return cls(
            service_id=service.id,
            staff_id=staff_id,
            start_date=start_date,
            end_date=end_date,
            days_of_week=frozenset(days_of_week),
            daily_start_time=daily_start_time,
            daily_end_time=daily_end_time,
            slot_duration_minutes=service.duration_minutes,
        )


class SlotUpdate(BaseModel):
    """
    Provider edit of an existing slot. Only fields present in the payload
    are changed; an explicit ``staffId: null`` clears the staff member.

    ``status`` is accepted so a dashboard can send the full record back,
    but it must match the slot's current status. Status changes go through
    the booking state machine.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    service_id: Optional[str] = None
    staff_id: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    status: Optional[SlotStatus] = None

    @field_validator("staff_id", mode="before")
    @classmethod
    def _blank_staff_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _lowercase_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SlotUpdate":
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise InvalidInputError(f"Invalid slot update, check: {', '.join(fields)}") from exc

    def changes(self) -> dict[str, Any]:
        """Field changes to apply, without ``status``. ``None`` values are skipped
        except for ``staff_id``, which may be cleared."""
        changes = {}
        for name in ("service_id", "staff_id", "start_at", "end_at"):
            if name not in self.model_fields_set:
                continue
            value = getattr(self, name)
            if value is None and name != "staff_id":
                continue
            changes[name] = value
        return changes


class SkippedSlot(BaseModel):
    """A candidate rejected because it overlaps an existing active slot."""
    start_at: datetime
    end_at: datetime
    conflicting_slot_id: Optional[str] = None
    reason: str = "overlap"


class BulkCreationReport(BaseModel):
    """Outcome of a best-effort bulk insert."""
    created: list[AvailabilitySlot] = Field(default_factory=list)
    skipped: list[SkippedSlot] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def message(self) -> str:
        msg = f"{self.created_count} slots created."
        if self.skipped:
            ranges = ", ".join(
                f"{s.start_at:%Y-%m-%d %H:%M}-{s.end_at:%H:%M}" for s in self.skipped
            )
            msg += f" {self.skipped_count} skipped due to overlap: {ranges}."
        return msg


class SlotQuery(BaseModel):
    """Filters for listing slots. Unset fields match everything."""
    service_id: Optional[str] = None
    staff_id: Optional[str] = None
    status: Optional[SlotStatus] = None
    start_from: Optional[datetime] = None
    start_until: Optional[datetime] = None

    def matches(self, slot: AvailabilitySlot) -> bool:
        if self.service_id is not None and slot.service_id != self.service_id:
            return False
        if self.staff_id is not None and slot.staff_id != self.staff_id:
            return False
        if self.status is not None and slot.status != self.status:
            return False
        if self.start_from is not None and slot.start_at < self.start_from:
            return False
        if self.start_until is not None and slot.start_at > self.start_until:
            return False
        return True
