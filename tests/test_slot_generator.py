"""Tests for bulk slot generation and best-effort insertion."""

from datetime import date, datetime, time, timedelta, timezone

import pytest

from slotbook.errors import (
    InvalidInputError,
    InvalidRangeError,
    InvalidStateError,
    ServiceNotFoundError,
    SlotInUseError,
    SlotNotFoundError,
    SlotOverlapError,
)
from slotbook.scheduling.slot_generator import SlotGenerator, iter_dates
from slotbook.schemas.slot_schema import (
    BulkSlotRequest,
    Service,
    SlotQuery,
    SlotStatus,
    SlotUpdate,
)
from slotbook.utils import intervals_overlap, sunday_weekday
from tests.conftest import make_slot

MONDAY = date(2025, 3, 3)
SUNDAY = date(2025, 3, 2)


def make_request(**overrides) -> BulkSlotRequest:
    fields = dict(
        service_id="svc-1",
        start_date=MONDAY,
        end_date=MONDAY,
        days_of_week=frozenset({1}),
        daily_start_time=time(9, 0),
        daily_end_time=time(10, 5),
        slot_duration_minutes=30,
    )
    fields.update(overrides)
    return BulkSlotRequest(**fields)


@pytest.fixture
def pure_generator():
    return SlotGenerator()


class TestValidation:
    def test_inverted_date_range(self, pure_generator):
        with pytest.raises(InvalidRangeError):
            pure_generator.generate(make_request(start_date=MONDAY, end_date=SUNDAY))

    def test_empty_days_of_week(self, pure_generator):
        with pytest.raises(InvalidInputError, match="day of the week"):
            pure_generator.generate(make_request(days_of_week=frozenset()))

    def test_weekday_out_of_range(self, pure_generator):
        with pytest.raises(InvalidInputError, match="0 \\(Sunday\\) to 6"):
            pure_generator.generate(make_request(days_of_week=frozenset({1, 7})))

    def test_inverted_daily_window(self, pure_generator):
        with pytest.raises(InvalidInputError):
            pure_generator.generate(
                make_request(daily_start_time=time(17, 0), daily_end_time=time(9, 0))
            )

    def test_empty_daily_window(self, pure_generator):
        with pytest.raises(InvalidInputError):
            pure_generator.generate(
                make_request(daily_start_time=time(9, 0), daily_end_time=time(9, 0))
            )

    def test_non_positive_duration(self, pure_generator):
        with pytest.raises(InvalidInputError, match="slot_duration_minutes"):
            pure_generator.generate(make_request(slot_duration_minutes=0))

    def test_offset_aware_times_rejected(self, pure_generator):
        with pytest.raises(InvalidInputError, match="offset"):
            pure_generator.generate(
                make_request(daily_start_time=time(9, 0, tzinfo=timezone.utc))
            )

    def test_range_checked_before_weekdays(self, pure_generator):
        with pytest.raises(InvalidRangeError):
            pure_generator.generate(
                make_request(start_date=MONDAY, end_date=SUNDAY, days_of_week=frozenset())
            )


class TestGenerate:
    def test_window_not_multiple_of_duration_drops_overrun(self, pure_generator):
        candidates = pure_generator.generate(make_request())
        assert [(c.start_at.time(), c.end_at.time()) for c in candidates] == [
            (time(9, 0), time(9, 30)),
            (time(9, 30), time(10, 0)),
        ]

    def test_exact_fit_includes_last_slot(self, pure_generator):
        candidates = pure_generator.generate(make_request(daily_end_time=time(10, 0)))
        assert len(candidates) == 2
        assert candidates[-1].end_at == datetime(2025, 3, 3, 10, 0)

    def test_window_shorter_than_duration_yields_nothing(self, pure_generator):
        request = make_request(daily_end_time=time(9, 20), slot_duration_minutes=30)
        assert pure_generator.generate(request) == []

    def test_no_matching_weekday_yields_nothing(self, pure_generator):
        # Monday to Saturday, Sundays only.
        request = make_request(end_date=date(2025, 3, 8), days_of_week=frozenset({0}))
        assert pure_generator.generate(request) == []

    def test_sunday_is_zero(self, pure_generator):
        request = make_request(
            start_date=SUNDAY, end_date=date(2025, 3, 8), days_of_week=frozenset({0})
        )
        candidates = pure_generator.generate(request)
        assert {c.start_at.date() for c in candidates} == {SUNDAY}

    def test_week_of_selected_days(self, pure_generator):
        request = make_request(
            start_date=MONDAY,
            end_date=date(2025, 3, 9),
            days_of_week=frozenset({1, 3, 5}),
            daily_start_time=time(9, 0),
            daily_end_time=time(12, 0),
            slot_duration_minutes=60,
        )
        candidates = pure_generator.generate(request)
        assert len(candidates) == 9
        assert {c.start_at.date() for c in candidates} == {
            date(2025, 3, 3), date(2025, 3, 5), date(2025, 3, 7),
        }

    def test_generated_intervals_respect_request(self, pure_generator):
        request = make_request(
            start_date=SUNDAY,
            end_date=date(2025, 3, 15),
            days_of_week=frozenset({0, 2, 4, 6}),
            daily_start_time=time(8, 15),
            daily_end_time=time(17, 40),
            slot_duration_minutes=45,
        )
        candidates = pure_generator.generate(request)
        assert candidates
        for c in candidates:
            assert sunday_weekday(c.start_at.date()) in request.days_of_week
            assert c.start_at.time() >= request.daily_start_time
            assert c.end_at.time() <= request.daily_end_time
            assert c.end_at - c.start_at == timedelta(minutes=45)
            assert c.service_id == "svc-1"

    def test_generated_intervals_do_not_overlap_and_are_ordered(self, pure_generator):
        request = make_request(
            end_date=date(2025, 3, 16),
            days_of_week=frozenset(range(7)),
            daily_start_time=time(7, 0),
            daily_end_time=time(19, 0),
            slot_duration_minutes=25,
        )
        candidates = pure_generator.generate(request)
        starts = [c.start_at for c in candidates]
        assert starts == sorted(starts)
        for earlier, later in zip(candidates, candidates[1:]):
            assert not intervals_overlap(
                earlier.start_at, earlier.end_at, later.start_at, later.end_at
            )

    def test_staff_carried_to_candidates(self, pure_generator):
        candidates = pure_generator.generate(make_request(staff_id="staff-9"))
        assert all(c.staff_id == "staff-9" for c in candidates)

    def test_iter_dates_inclusive(self):
        assert list(iter_dates(SUNDAY, MONDAY)) == [SUNDAY, MONDAY]


class TestBulkRequestParsing:
    def test_camel_case_payload(self):
        request = BulkSlotRequest.from_payload({
            "serviceId": "svc-1",
            "staffId": "",
            "startDate": "2025-03-03",
            "endDate": "2025-03-07",
            "daysOfWeek": [1, 2, 2],
            "dailyStartTime": "9:00",
            "dailyEndTime": "12:00",
            "slotDurationMinutes": 30,
        })
        assert request.staff_id is None
        assert request.days_of_week == frozenset({1, 2})
        assert request.daily_start_time == time(9, 0)
        assert request.start_date == MONDAY

    def test_bad_payload_raises_invalid_input(self):
        with pytest.raises(InvalidInputError, match="startDate"):
            BulkSlotRequest.from_payload({
                "serviceId": "svc-1",
                "startDate": "not-a-date",
                "endDate": "2025-03-07",
                "daysOfWeek": [1],
                "dailyStartTime": "09:00",
                "dailyEndTime": "12:00",
                "slotDurationMinutes": 30,
            })

    def test_for_service_uses_service_duration(self):
        service = Service(provider_id="p", name="Massage", duration_minutes=50, price=9000)
        request = BulkSlotRequest.for_service(
            service,
            start_date=MONDAY,
            end_date=MONDAY,
            days_of_week={1},
            daily_start_time=time(9, 0),
            daily_end_time=time(12, 0),
        )
        assert request.slot_duration_minutes == 50
        assert request.service_id == service.id


class TestCreateBulk:
    def test_creates_open_slots(self, generator, service, store):
        report = generator.create_bulk(make_request(service_id=service.id))
        assert report.created_count == 2
        assert report.skipped_count == 0
        assert all(s.status == SlotStatus.OPEN for s in report.created)
        assert len(store.list_slots(SlotQuery(service_id=service.id))) == 2
        assert report.message == "2 slots created."

    def test_repeat_run_skips_every_candidate(self, generator, service):
        first = generator.create_bulk(make_request(service_id=service.id))
        second = generator.create_bulk(make_request(service_id=service.id))
        assert second.created_count == 0
        assert second.skipped_count == 2
        assert {s.conflicting_slot_id for s in second.skipped} == {s.id for s in first.created}
        assert "2 skipped due to overlap" in second.message
        assert "2025-03-03 09:00-09:30" in second.message

    def test_partial_overlap_is_per_slot(self, generator, service, store):
        blocker = make_slot(store, service, datetime(2025, 3, 3, 9, 15))
        report = generator.create_bulk(make_request(
            service_id=service.id, daily_end_time=time(11, 0),
        ))
        assert [s.start_at.time() for s in report.created] == [time(10, 0), time(10, 30)]
        assert [s.start_at.time() for s in report.skipped] == [time(9, 0), time(9, 30)]
        assert all(s.conflicting_slot_id == blocker.id for s in report.skipped)

    def test_back_to_back_slots_do_not_conflict(self, generator, service, store):
        make_slot(store, service, datetime(2025, 3, 3, 8, 30))
        report = generator.create_bulk(make_request(service_id=service.id))
        assert report.created_count == 2

    def test_different_staff_do_not_conflict(self, generator, service):
        generator.create_bulk(make_request(service_id=service.id, staff_id="ana"))
        report = generator.create_bulk(make_request(service_id=service.id, staff_id="bia"))
        assert report.created_count == 2

    def test_same_staff_conflicts_across_services(self, generator, service, store):
        other = store.add_service(
            Service(provider_id="prov-1", name="Beard trim", duration_minutes=30, price=2000)
        )
        generator.create_bulk(make_request(service_id=service.id, staff_id="ana"))
        report = generator.create_bulk(make_request(service_id=other.id, staff_id="ana"))
        assert report.created_count == 0
        assert report.skipped_count == 2

    def test_retired_slot_does_not_block(self, generator, machine, service, store):
        slot = make_slot(store, service)
        machine.retire(slot.id, actor_id="prov-1")
        report = generator.create_bulk(make_request(service_id=service.id))
        assert report.created_count == 2

    def test_zero_candidates_is_empty_report(self, generator, service):
        report = generator.create_bulk(make_request(
            service_id=service.id, daily_end_time=time(9, 10),
        ))
        assert report.created_count == 0
        assert report.skipped_count == 0

    def test_unknown_service(self, generator):
        with pytest.raises(ServiceNotFoundError):
            generator.create_bulk(make_request(service_id="missing"))

    def test_invalid_request_rejected_before_store(self, generator, service, store):
        with pytest.raises(InvalidRangeError):
            generator.create_bulk(make_request(
                service_id=service.id, start_date=MONDAY, end_date=SUNDAY,
            ))
        assert store.list_slots() == []

    def test_requires_store(self, pure_generator):
        with pytest.raises(RuntimeError):
            pure_generator.create_bulk(make_request())


class TestCreateSlot:
    def test_single_slot(self, generator, service):
        slot = generator.create_slot(
            service.id, datetime(2025, 3, 4, 14, 0), datetime(2025, 3, 4, 15, 0), staff_id="ana",
        )
        assert slot.status == SlotStatus.OPEN
        assert slot.staff_id == "ana"

    def test_overlap_raises(self, generator, service, store):
        existing = make_slot(store, service, datetime(2025, 3, 4, 14, 0), minutes=60)
        with pytest.raises(SlotOverlapError, match=existing.id):
            generator.create_slot(
                service.id, datetime(2025, 3, 4, 14, 30), datetime(2025, 3, 4, 15, 30),
            )

    def test_inverted_times(self, generator, service):
        with pytest.raises(InvalidInputError):
            generator.create_slot(
                service.id, datetime(2025, 3, 4, 15, 0), datetime(2025, 3, 4, 14, 0),
            )

    def test_unknown_service(self, generator):
        with pytest.raises(ServiceNotFoundError):
            generator.create_slot(
                "missing", datetime(2025, 3, 4, 14, 0), datetime(2025, 3, 4, 15, 0),
            )


def at(hour: int, minute: int = 0, day: int = 3) -> datetime:
    return datetime(2025, 3, day, hour, minute)


class TestSlotUpdatePayload:
    def test_camel_case_fields(self):
        edit = SlotUpdate.from_payload({
            "startAt": "2025-03-03T11:00:00",
            "endAt": "2025-03-03T11:30:00",
            "status": "OPEN",
        })
        assert edit.status == SlotStatus.OPEN
        assert edit.changes() == {"start_at": at(11), "end_at": at(11, 30)}

    def test_null_staff_clears_it_and_absent_fields_are_kept(self):
        edit = SlotUpdate.from_payload({"staffId": None})
        assert edit.changes() == {"staff_id": None}
        assert SlotUpdate.from_payload({}).changes() == {}

    def test_bad_payload_raises_invalid_input(self):
        with pytest.raises(InvalidInputError, match="startAt"):
            SlotUpdate.from_payload({"startAt": "noon"})


class TestUpdateSlot:
    def test_reschedule(self, generator, service, store):
        slot = make_slot(store, service)
        updated = generator.update_slot(
            slot.id, {"startAt": "2025-03-03T11:00:00", "endAt": "2025-03-03T11:45:00"}
        )
        assert (updated.start_at, updated.end_at) == (at(11), at(11, 45))
        assert updated.status == SlotStatus.OPEN
        stored = store.get_slot(slot.id)
        assert (stored.start_at, stored.end_at) == (at(11), at(11, 45))

    def test_shift_within_own_interval(self, generator, service, store):
        # The slot's current interval must not count as a conflict.
        slot = make_slot(store, service)
        updated = generator.update_slot(
            slot.id, SlotUpdate(start_at=at(9, 15), end_at=at(9, 45))
        )
        assert updated.start_at == at(9, 15)

    def test_overlap_with_another_slot(self, generator, service, store):
        first = make_slot(store, service, at(9))
        second = make_slot(store, service, at(10))
        with pytest.raises(SlotOverlapError, match=first.id):
            generator.update_slot(second.id, SlotUpdate(start_at=at(9, 15), end_at=at(9, 45)))
        assert store.get_slot(second.id).start_at == at(10)

    def test_retired_slot_does_not_block(self, generator, machine, service, store):
        retired = make_slot(store, service, at(9))
        machine.retire(retired.id, actor_id="prov-1")
        slot = make_slot(store, service, at(10))
        updated = generator.update_slot(slot.id, SlotUpdate(start_at=at(9), end_at=at(9, 30)))
        assert updated.start_at == at(9)

    def test_move_to_busy_staff(self, generator, service, store):
        make_slot(store, service, at(9), staff_id="ana")
        slot = make_slot(store, service, at(9), staff_id="bia")
        with pytest.raises(SlotOverlapError):
            generator.update_slot(slot.id, {"staffId": "ana"})
        assert generator.update_slot(slot.id, {"staffId": "caio"}).staff_id == "caio"

    def test_clear_staff(self, generator, service, store):
        slot = make_slot(store, service, staff_id="ana")
        updated = generator.update_slot(slot.id, {"staffId": None})
        assert updated.staff_id is None
        assert store.get_slot(slot.id).staff_id is None

    def test_move_to_another_service(self, generator, service, store):
        other = store.add_service(
            Service(provider_id="prov-1", name="Beard trim", duration_minutes=30, price=2000)
        )
        slot = make_slot(store, service)
        assert generator.update_slot(slot.id, {"serviceId": other.id}).service_id == other.id
        assert [s.id for s in store.list_slots(SlotQuery(service_id=other.id))] == [slot.id]

    def test_unknown_service(self, generator, service, store):
        slot = make_slot(store, service)
        with pytest.raises(ServiceNotFoundError):
            generator.update_slot(slot.id, {"serviceId": "missing"})

    def test_unknown_slot(self, generator):
        with pytest.raises(SlotNotFoundError):
            generator.update_slot("missing", {"startAt": "2025-03-03T11:00:00"})

    def test_inverted_interval(self, generator, service, store):
        slot = make_slot(store, service)
        with pytest.raises(InvalidInputError):
            generator.update_slot(slot.id, SlotUpdate(end_at=at(8, 30)))
        assert store.get_slot(slot.id).end_at == at(9, 30)

    def test_offset_aware_time_rejected(self, generator, service, store):
        slot = make_slot(store, service)
        with pytest.raises(InvalidInputError, match="offset"):
            generator.update_slot(slot.id, {"startAt": "2025-03-03T08:00:00+00:00"})

    def test_booked_slot_cannot_move(self, generator, machine, service, store):
        slot = make_slot(store, service)
        machine.claim(slot.id, client_id="client-1")
        with pytest.raises(SlotInUseError, match="booked"):
            generator.update_slot(slot.id, SlotUpdate(start_at=at(11), end_at=at(11, 30)))
        stored = store.get_slot(slot.id)
        assert stored.start_at == at(9)
        assert stored.status == SlotStatus.BOOKED

    def test_cancelled_slot_cannot_change(self, generator, machine, service, store):
        slot = make_slot(store, service)
        machine.retire(slot.id, actor_id="prov-1")
        with pytest.raises(InvalidStateError):
            generator.update_slot(slot.id, SlotUpdate(start_at=at(11), end_at=at(11, 30)))

    def test_status_cannot_be_set_to_booked(self, generator, service, store):
        slot = make_slot(store, service)
        with pytest.raises(InvalidStateError, match="claim"):
            generator.update_slot(slot.id, {"status": "booked"})
        assert store.get_slot(slot.id).status == SlotStatus.OPEN

    def test_matching_status_is_accepted(self, generator, service, store):
        slot = make_slot(store, service)
        updated = generator.update_slot(
            slot.id, {"status": "open", "startAt": "2025-03-03T12:00:00",
                      "endAt": "2025-03-03T12:30:00"},
        )
        assert updated.start_at == at(12)

    def test_unchanged_fields_are_a_no_op_even_when_booked(self, generator, machine, service, store):
        slot = make_slot(store, service)
        machine.claim(slot.id, client_id="client-1")
        updated = generator.update_slot(
            slot.id, SlotUpdate(start_at=slot.start_at, status=SlotStatus.BOOKED)
        )
        assert updated.start_at == slot.start_at
        assert updated.status == SlotStatus.BOOKED

    def test_requires_store(self, pure_generator):
        with pytest.raises(RuntimeError):
            pure_generator.update_slot("slot-1", {})
