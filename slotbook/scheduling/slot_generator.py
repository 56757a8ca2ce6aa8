"""
Bulk availability slot generation.

Turns a provider's bulk request (date range, weekdays, daily window, slot
length) into an ordered list of non-overlapping candidate intervals, then
hands them to the store, which inserts them best-effort: each candidate
that overlaps an existing active slot is skipped and reported on its own.

Usage:
    generator = SlotGenerator(store)
    report = generator.create_bulk(BulkSlotRequest.from_payload(body))
    print(report.message)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterator, Optional, Union

from slotbook.errors import InvalidInputError, InvalidRangeError, SlotOverlapError
from slotbook.logging_context import get_request_logger, in_request_scope
from slotbook.schemas.slot_schema import (
    AvailabilitySlot,
    BulkCreationReport,
    BulkSlotRequest,
    SlotCandidate,
    SlotUpdate,
)
from slotbook.utils import sunday_weekday

if TYPE_CHECKING:
    from slotbook.storage.base import SlotStore

logger = get_request_logger(__name__)

WEEKDAYS = range(0, 7)  # Sunday=0 .. Saturday=6


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Every calendar date from ``start`` to ``end`` inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


class SlotGenerator:
    """Generates availability slots and persists them through a store."""

    def __init__(self, store: Optional[SlotStore] = None) -> None:
        self._store = store

    @staticmethod
    def validate(request: BulkSlotRequest) -> None:
        """
        Check a request before generating anything.

        Raises:
            InvalidRangeError: ``start_date`` is after ``end_date``.
            InvalidInputError: Empty or out-of-range weekdays, an inverted
                daily window, times carrying a UTC offset, or a non-positive
                slot duration.
        """
        if request.start_date > request.end_date:
            raise InvalidRangeError(
                f"start_date {request.start_date} is after end_date {request.end_date}."
            )
        if not request.days_of_week:
            raise InvalidInputError("Select at least one day of the week.")
        bad_days = sorted(d for d in request.days_of_week if d not in WEEKDAYS)
        if bad_days:
            raise InvalidInputError(f"Weekdays must be 0 (Sunday) to 6 (Saturday), got {bad_days}.")
        if request.daily_start_time.tzinfo or request.daily_end_time.tzinfo:
            raise InvalidInputError("Daily times are wall-clock times and must not carry an offset.")
        if request.daily_start_time >= request.daily_end_time:
            raise InvalidInputError(
                f"daily_start_time {request.daily_start_time:%H:%M} must be before "
                f"daily_end_time {request.daily_end_time:%H:%M}."
            )
        if request.slot_duration_minutes <= 0:
            raise InvalidInputError(
                f"slot_duration_minutes must be positive, got {request.slot_duration_minutes}."
            )

    def generate(self, request: BulkSlotRequest) -> list[SlotCandidate]:
        """
        Produce the candidate intervals for a request, ordered by start.

        A slot that would run past the daily end time is dropped, not
        truncated. No candidates is a valid result.
        """
        self.validate(request)
        duration = timedelta(minutes=request.slot_duration_minutes)
        candidates: list[SlotCandidate] = []

        for day in iter_dates(request.start_date, request.end_date):
            if sunday_weekday(day) not in request.days_of_week:
                continue
            current = datetime.combine(day, request.daily_start_time)
            day_end = datetime.combine(day, request.daily_end_time)
            while current + duration <= day_end:
                candidates.append(SlotCandidate(
                    service_id=request.service_id,
                    staff_id=request.staff_id,
                    start_at=current,
                    end_at=current + duration,
                ))
                current += duration

        logger.debug(
            "Generated %d candidates for service %s between %s and %s",
            len(candidates), request.service_id, request.start_date, request.end_date,
        )
        return candidates

    def _require_store(self) -> SlotStore:
        if self._store is None:
            raise RuntimeError("SlotGenerator needs a store to persist slots.")
        return self._store

    @in_request_scope
    def create_bulk(self, request: BulkSlotRequest) -> BulkCreationReport:
        """Generate and insert slots; overlapping candidates are skipped, not fatal."""
        store = self._require_store()
        candidates = self.generate(request)
        store.get_service(request.service_id)

        if not candidates:
            logger.info("No slots generated for service %s", request.service_id)
            return BulkCreationReport()

        report = store.insert_slots(candidates)
        if report.skipped:
            logger.warning(
                "Bulk creation for service %s skipped %d overlapping slots",
                request.service_id, report.skipped_count,
            )
        logger.info("Bulk creation for service %s: %s", request.service_id, report.message)
        return report

    @in_request_scope
    def create_slot(
        self,
        service_id: str,
        start_at: datetime,
        end_at: datetime,
        staff_id: Optional[str] = None,
    ) -> AvailabilitySlot:
        """
        Create a single OPEN slot.

        Raises:
            InvalidInputError: ``start_at`` is not before ``end_at``, or a
                datetime carries a UTC offset.
            ServiceNotFoundError: Unknown service.
            SlotOverlapError: The interval overlaps an existing active slot.
        """
        store = self._require_store()
        if start_at.tzinfo or end_at.tzinfo:
            raise InvalidInputError("Slot times are wall-clock times and must not carry an offset.")
        if start_at >= end_at:
            raise InvalidInputError("start_at must be before end_at.")
        store.get_service(service_id)

        report = store.insert_slots([SlotCandidate(
            service_id=service_id, staff_id=staff_id, start_at=start_at, end_at=end_at,
        )])
        if report.skipped:
            conflict = report.skipped[0].conflicting_slot_id
            raise SlotOverlapError(
                f"Slot {start_at:%Y-%m-%d %H:%M}-{end_at:%H:%M} overlaps slot {conflict}."
            )
        slot = report.created[0]
        logger.info("Slot created: %s (%s)", slot.id, slot.start_at)
        return slot

    @in_request_scope
    def update_slot(
        self, slot_id: str, edit: Union[SlotUpdate, dict[str, Any]]
    ) -> AvailabilitySlot:
        """
        Reschedule an OPEN slot or move it to another service or staff member.

        ``edit`` may be a raw dashboard payload (camelCase keys). The slot
        is checked for overlaps against every other active slot in its new
        scope, never against itself.

        Raises:
            InvalidInputError: Malformed payload, an empty interval, or
                times carrying a UTC offset.
            SlotNotFoundError / ServiceNotFoundError: Unknown slot or service.
            SlotOverlapError: The edited interval overlaps another active slot.
            SlotInUseError: The slot is booked.
            InvalidStateError: The slot is cancelled, or the edit tries to
                change its status.
        """
        store = self._require_store()
        if not isinstance(edit, SlotUpdate):
            edit = SlotUpdate.from_payload(edit)
        slot = store.update_slot(slot_id, edit)
        logger.info("Slot %s now %s-%s", slot.id, slot.start_at, slot.end_at)
        return slot
