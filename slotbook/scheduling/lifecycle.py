"""
Declarative lifecycle tables for availability slots and bookings.

Every status change a store performs is looked up here. The in-memory store
applies a trigger to the status it reads under its lock; the SQL store turns
the same table into a conditional ``UPDATE ... WHERE status IN (sources)``.

Slot lifecycle:

    OPEN   --claim-->   BOOKED
    OPEN   --retire-->  CANCELLED
    BOOKED --release--> OPEN
    BOOKED --retire-->  CANCELLED

CANCELLED is terminal. Bookings are created CONFIRMED by a successful
claim; only a CONFIRMED booking can be cancelled.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from slotbook.errors import InvalidTransitionError
from slotbook.schemas.booking_schema import BookingStatus
from slotbook.schemas.slot_schema import SlotStatus

S = TypeVar("S", SlotStatus, BookingStatus)
T = TypeVar("T", bound=Enum)


class SlotTrigger(str, Enum):
    """Events that change a slot's status."""
    CLAIM = "claim"
    RELEASE = "release"
    RETIRE = "retire"


class BookingTrigger(str, Enum):
    """Events that change a booking's status."""
    CONFIRM = "confirm"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition(Generic[S, T]):
    """A single valid status transition."""
    from_status: S
    to_status: S
    trigger: T


class Lifecycle(Generic[S, T]):
    """Lookup helpers over a transition table."""

    def __init__(self, name: str, transitions: list[Transition[S, T]]) -> None:
        self.name = name
        self.transitions = transitions

    def apply(self, status: S, trigger: T) -> S:
        """
        Return the status reached by firing ``trigger`` from ``status``.

        Raises:
            InvalidTransitionError: If no transition exists.
        """
        for t in self.transitions:
            if t.from_status == status and t.trigger == trigger:
                return t.to_status
        valid = [t.value for t in self.valid_triggers(status)]
        raise InvalidTransitionError(
            f"No {self.name} transition from '{status.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def sources(self, trigger: T) -> list[S]:
        """Statuses from which ``trigger`` is allowed."""
        return [t.from_status for t in self.transitions if t.trigger == trigger]

    def target(self, trigger: T) -> S:
        """Status reached by ``trigger``. All tables map a trigger to one target."""
        targets = {t.to_status for t in self.transitions if t.trigger == trigger}
        if len(targets) != 1:
            raise ValueError(f"Trigger '{trigger.value}' has no single target in {self.name}")
        return targets.pop()

    def valid_triggers(self, status: S) -> list[T]:
        return [t.trigger for t in self.transitions if t.from_status == status]

    def is_terminal(self, status: S) -> bool:
        return not self.valid_triggers(status)


SLOT_LIFECYCLE: Lifecycle[SlotStatus, SlotTrigger] = Lifecycle(
    "slot",
    [
        Transition(SlotStatus.OPEN, SlotStatus.BOOKED, SlotTrigger.CLAIM),
        Transition(SlotStatus.OPEN, SlotStatus.CANCELLED, SlotTrigger.RETIRE),
        Transition(SlotStatus.BOOKED, SlotStatus.OPEN, SlotTrigger.RELEASE),
        Transition(SlotStatus.BOOKED, SlotStatus.CANCELLED, SlotTrigger.RETIRE),
    ],
)

BOOKING_LIFECYCLE: Lifecycle[BookingStatus, BookingTrigger] = Lifecycle(
    "booking",
    [
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingTrigger.CONFIRM),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingTrigger.CANCEL),
    ],
)
