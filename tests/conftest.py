"""Shared test fixtures and helpers."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from slotbook.notifications import Notifier
from slotbook.scheduling.booking_state_machine import BookingStateMachine
from slotbook.scheduling.slot_generator import SlotGenerator
from slotbook.schemas.booking_schema import Booking
from slotbook.schemas.slot_schema import AvailabilitySlot, Service, SlotCandidate
from slotbook.storage.base import SlotStore
from slotbook.storage.memory import InMemorySlotStore
from slotbook.storage.sql import SqlSlotStore, create_store_engine

# Monday 2025-03-03, 08:00 local wall-clock time.
NOW = datetime(2025, 3, 3, 8, 0)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingNotifier(Notifier):
    """Keeps every notification for assertions."""

    def __init__(self) -> None:
        self.confirmed: list[tuple[Booking, AvailabilitySlot, Optional[str]]] = []
        self.cancelled: list[tuple[Booking, AvailabilitySlot]] = []

    def booking_confirmed(self, booking, slot, cancel_url) -> None:
        self.confirmed.append((booking, slot, cancel_url))

    def booking_cancelled(self, booking, slot) -> None:
        self.cancelled.append((booking, slot))


class FailingNotifier(Notifier):
    def booking_confirmed(self, booking, slot, cancel_url) -> None:
        raise ConnectionError("smtp down")

    def booking_cancelled(self, booking, slot) -> None:
        raise ConnectionError("smtp down")


@pytest.fixture
def memory_store():
    store = InMemorySlotStore()
    yield store
    store.reset()


@pytest.fixture
def sql_store(tmp_path):
    engine = create_store_engine(f"sqlite:///{tmp_path / 'slotbook.db'}", echo=False)
    store = SqlSlotStore(engine)
    store.create_schema()
    yield store
    engine.dispose()


@pytest.fixture
def sqlite_memory_store():
    """SQL store on an in-memory SQLite database: one connection shared by all threads."""
    engine = create_store_engine("sqlite://", echo=False)
    store = SqlSlotStore(engine)
    store.create_schema()
    yield store
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request) -> SlotStore:
    """Runs a test once per store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store) -> Service:
    return store.add_service(
        Service(provider_id="prov-1", name="Haircut", duration_minutes=30, price=4500)
    )


@pytest.fixture
def generator(store):
    return SlotGenerator(store)


@pytest.fixture
def machine(store, notifier, clock):
    return BookingStateMachine(
        store, notifier=notifier, clock=clock, frontend_url="https://book.example.com"
    )


def make_slot(
    store: SlotStore,
    service: Service,
    start_at: datetime = datetime(2025, 3, 3, 9, 0),
    minutes: int = 30,
    staff_id: Optional[str] = None,
) -> AvailabilitySlot:
    """Insert one OPEN slot directly through the store."""
    report = store.insert_slots([SlotCandidate(
        service_id=service.id,
        staff_id=staff_id,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=minutes),
    )])
    assert report.created_count == 1, report.message
    return report.created[0]
