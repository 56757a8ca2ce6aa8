"""
SQLAlchemy-backed slot store.

Status changes are conditional ``UPDATE`` statements whose ``WHERE`` clause
carries the allowed source statuses from the lifecycle tables. The affected
row count decides the outcome, so two concurrent claims can never both flip
the same slot. A partial unique index on active bookings per slot backs this
up at the schema level.

An in-memory SQLite database lives on a single shared connection
(``StaticPool``), so there every thread would share one transaction. For
such engines the store runs one session at a time under a lock.
"""

import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime
from typing import Iterator, Optional, Sequence, Union

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    and_,
    create_engine,
    delete,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from slotbook.config import settings
from slotbook.errors import (
    BookingNotFoundError,
    DuplicateServiceError,
    InvalidStateError,
    InvalidTransitionError,
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
from slotbook.schemas.booking_schema import Booking, BookingStatus
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

logger = get_request_logger(__name__)

Base = declarative_base()

_CANCELLED = SlotStatus.CANCELLED.value


class ServiceRow(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True)
    provider_id = Column(String(64), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False, default=0)  # minor currency units

    __table_args__ = (
        UniqueConstraint("provider_id", "name", name="uq_services_provider_name"),
        CheckConstraint("duration_minutes > 0", name="ck_services_duration_positive"),
        CheckConstraint("price >= 0", name="ck_services_price_non_negative"),
    )


class SlotRow(Base):
    __tablename__ = "availability_slots"

    id = Column(String(36), primary_key=True)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False, index=True)
    staff_id = Column(String(64), nullable=True, index=True)
    start_at = Column(DateTime, nullable=False, index=True)
    end_at = Column(DateTime, nullable=False)
    status = Column(String(16), nullable=False, default=SlotStatus.OPEN.value, index=True)

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_slots_end_after_start"),
    )


class BookingRow(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True)
    slot_id = Column(String(36), ForeignKey("availability_slots.id"), nullable=False, index=True)
    client_id = Column(String(64), nullable=False, index=True)
    status = Column(String(16), nullable=False, default=BookingStatus.CONFIRMED.value)
    created_at = Column(DateTime, nullable=False)
    cancel_token = Column(String(64), nullable=True, unique=True)
    cancel_token_expires_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    __table_args__ = (
        # At most one non-cancelled booking per slot.
        Index(
            "uq_bookings_active_slot",
            "slot_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )


def create_store_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine for the configured (or given) database URL."""
    cfg = settings.storage
    url = database_url or cfg.database_url
    kwargs: dict = {"echo": cfg.echo_sql if echo is None else echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": cfg.sqlite_busy_timeout_sec,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, or each checkout would see an empty database.
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    engine = create_engine(url, **kwargs)
    logger.info("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def _service_model(row: ServiceRow) -> Service:
    return Service(
        id=row.id,
        provider_id=row.provider_id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        price=row.price,
    )


def _slot_model(row: SlotRow) -> AvailabilitySlot:
    return AvailabilitySlot(
        id=row.id,
        service_id=row.service_id,
        staff_id=row.staff_id,
        start_at=row.start_at,
        end_at=row.end_at,
        status=SlotStatus(row.status),
    )


def _booking_model(row: BookingRow) -> Booking:
    return Booking(
        id=row.id,
        slot_id=row.slot_id,
        client_id=row.client_id,
        status=BookingStatus(row.status),
        created_at=row.created_at,
        cancel_token=row.cancel_token,
        cancel_token_expires_at=row.cancel_token_expires_at,
        cancelled_at=row.cancelled_at,
        cancelled_by=row.cancelled_by,
    )


def _values(statuses: list) -> list[str]:
    return [s.value for s in statuses]


class SqlSlotStore(SlotStore):
    """Relational store. Call ``create_schema()`` once before use."""

    def __init__(self, engine: Optional[Engine] = None) -> None:
        self._engine = engine or create_store_engine()
        self._session_factory = sessionmaker(
            bind=self._engine, autoflush=False, expire_on_commit=False
        )
        # One connection for all threads: sessions must not interleave.
        self._serial = (
            threading.RLock() if isinstance(self._engine.pool, StaticPool) else nullcontext()
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_schema(self) -> None:
        with self._serial:
            Base.metadata.create_all(self._engine)

    def drop_schema(self) -> None:
        with self._serial:
            Base.metadata.drop_all(self._engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """Session committed on success and rolled back on error."""
        with self._serial:
            with self._session_factory.begin() as session:
                yield session

    @contextmanager
    def _reader(self) -> Iterator[Session]:
        with self._serial:
            with self._session_factory() as session:
                yield session

    # --- Services ---

    def add_service(self, service: Service) -> Service:
        try:
            with self._transaction() as session:
                session.add(ServiceRow(
                    id=service.id,
                    provider_id=service.provider_id,
                    name=service.name,
                    duration_minutes=service.duration_minutes,
                    price=service.price,
                ))
        except IntegrityError as exc:
            raise DuplicateServiceError(
                f"Provider {service.provider_id} already offers '{service.name}'."
            ) from exc
        logger.info("Service added: %s (%s, %d min)", service.id, service.name,
                    service.duration_minutes)
        return service.model_copy()

    def get_service(self, service_id: str) -> Service:
        with self._reader() as session:
            row = session.get(ServiceRow, service_id)
            if row is None:
                raise ServiceNotFoundError(f"Service {service_id} not found.")
            return _service_model(row)

    def list_services(self, provider_id: Optional[str] = None) -> list[Service]:
        stmt = select(ServiceRow).order_by(ServiceRow.name)
        if provider_id is not None:
            stmt = stmt.where(ServiceRow.provider_id == provider_id)
        with self._reader() as session:
            return [_service_model(row) for row in session.scalars(stmt)]

    def delete_service(self, service_id: str) -> None:
        with self._transaction() as session:
            row = session.get(ServiceRow, service_id)
            if row is None:
                raise ServiceNotFoundError(f"Service {service_id} not found.")
            slot_ids = select(SlotRow.id).where(SlotRow.service_id == service_id)
            active = session.scalar(
                select(func.count(BookingRow.id)).where(
                    BookingRow.slot_id.in_(slot_ids),
                    BookingRow.status != BookingStatus.CANCELLED.value,
                )
            )
            if active:
                raise ServiceInUseError(
                    f"Service {service_id} has slots with active bookings."
                )
            session.execute(delete(BookingRow).where(BookingRow.slot_id.in_(slot_ids)))
            removed = session.execute(delete(SlotRow).where(SlotRow.service_id == service_id))
            session.delete(row)
        logger.info("Service deleted: %s (%d slots removed)", service_id, removed.rowcount)

    # --- Slots ---

    @staticmethod
    def _scope_clause(candidate: Union[SlotCandidate, AvailabilitySlot]):
        if candidate.staff_id:
            return SlotRow.staff_id == candidate.staff_id
        return and_(SlotRow.service_id == candidate.service_id, SlotRow.staff_id.is_(None))

    def _find_conflict(
        self,
        session: Session,
        item: Union[SlotCandidate, AvailabilitySlot],
        exclude_id: Optional[str] = None,
    ) -> Optional[str]:
        """Id of an active slot in the same scope overlapping ``item``, if any."""
        stmt = select(SlotRow.id).where(
            self._scope_clause(item),
            SlotRow.status != _CANCELLED,
            SlotRow.start_at < item.end_at,
            SlotRow.end_at > item.start_at,
        )
        if exclude_id is not None:
            stmt = stmt.where(SlotRow.id != exclude_id)
        return session.scalar(stmt.limit(1))

    def insert_slots(self, candidates: Sequence[SlotCandidate]) -> BulkCreationReport:
        report = BulkCreationReport()
        with self._transaction() as session:
            for candidate in candidates:
                conflict_id = self._find_conflict(session, candidate)
                if conflict_id is not None:
                    report.skipped.append(SkippedSlot(
                        start_at=candidate.start_at,
                        end_at=candidate.end_at,
                        conflicting_slot_id=conflict_id,
                    ))
                    continue
                slot = candidate.to_slot()
                session.add(SlotRow(
                    id=slot.id,
                    service_id=slot.service_id,
                    staff_id=slot.staff_id,
                    start_at=slot.start_at,
                    end_at=slot.end_at,
                    status=slot.status.value,
                ))
                # Later candidates in this batch must see this row.
                session.flush()
                report.created.append(slot)
        logger.info("Inserted %d slots, skipped %d", report.created_count, report.skipped_count)
        return report

    def get_slot(self, slot_id: str) -> AvailabilitySlot:
        with self._reader() as session:
            return _slot_model(self._get_slot_row(session, slot_id))

    @staticmethod
    def _get_slot_row(session: Session, slot_id: str) -> SlotRow:
        row = session.get(SlotRow, slot_id)
        if row is None:
            raise SlotNotFoundError(f"Slot {slot_id} not found.")
        return row

    def list_slots(self, query: Optional[SlotQuery] = None) -> list[AvailabilitySlot]:
        query = query or SlotQuery()
        stmt = select(SlotRow).order_by(SlotRow.start_at)
        if query.service_id is not None:
            stmt = stmt.where(SlotRow.service_id == query.service_id)
        if query.staff_id is not None:
            stmt = stmt.where(SlotRow.staff_id == query.staff_id)
        if query.status is not None:
            stmt = stmt.where(SlotRow.status == query.status.value)
        if query.start_from is not None:
            stmt = stmt.where(SlotRow.start_at >= query.start_from)
        if query.start_until is not None:
            stmt = stmt.where(SlotRow.start_at <= query.start_until)
        with self._reader() as session:
            return [_slot_model(row) for row in session.scalars(stmt)]

    def update_slot(self, slot_id: str, edit: SlotUpdate) -> AvailabilitySlot:
        with self._transaction() as session:
            slot = _slot_model(self._get_slot_row(session, slot_id))
            edited = edited_slot(slot, edit)
            if edited == slot:
                return edited
            if session.get(ServiceRow, edited.service_id) is None:
                raise ServiceNotFoundError(f"Service {edited.service_id} not found.")
            conflict_id = self._find_conflict(session, edited, exclude_id=slot_id)
            if conflict_id is not None:
                raise SlotOverlapError(
                    f"Slot {edited.start_at:%Y-%m-%d %H:%M}-{edited.end_at:%H:%M} "
                    f"overlaps slot {conflict_id}."
                )
            result = session.execute(
                update(SlotRow)
                .where(SlotRow.id == slot_id, SlotRow.status == slot.status.value)
                .values(
                    service_id=edited.service_id,
                    staff_id=edited.staff_id,
                    start_at=edited.start_at,
                    end_at=edited.end_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidStateError(f"Slot {slot_id} changed status during the update.")
        logger.info("Slot updated: %s (%s-%s)", slot_id, edited.start_at, edited.end_at)
        return edited

    def delete_slot(self, slot_id: str) -> None:
        with self._transaction() as session:
            row = self._get_slot_row(session, slot_id)
            active = session.scalar(
                select(func.count(BookingRow.id)).where(
                    BookingRow.slot_id == slot_id,
                    BookingRow.status != BookingStatus.CANCELLED.value,
                )
            )
            if active:
                raise SlotInUseError(
                    f"Slot {slot_id} has an active booking. Cancel the booking or retire the slot."
                )
            # Cancelled booking history goes with the slot.
            session.execute(delete(BookingRow).where(BookingRow.slot_id == slot_id))
            session.delete(row)
        logger.info("Slot deleted: %s", slot_id)

    # --- Bookings ---

    def claim_slot(self, slot_id: str, booking: Booking, now: datetime) -> Booking:
        try:
            with self._transaction() as session:
                # The UPDATE must be the first statement: it takes the write lock.
                result = session.execute(
                    update(SlotRow)
                    .where(
                        SlotRow.id == slot_id,
                        SlotRow.status.in_(_values(SLOT_LIFECYCLE.sources(SlotTrigger.CLAIM))),
                        SlotRow.start_at > now,
                    )
                    .values(status=SLOT_LIFECYCLE.target(SlotTrigger.CLAIM).value)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    row = self._get_slot_row(session, slot_id)
                    if row.start_at <= now:
                        raise SlotUnavailableError(f"Slot {slot_id} has already started.")
                    raise SlotUnavailableError(f"Slot {slot_id} is {row.status}.")
                session.add(BookingRow(
                    id=booking.id,
                    slot_id=slot_id,
                    client_id=booking.client_id,
                    status=booking.status.value,
                    created_at=booking.created_at,
                    cancel_token=booking.cancel_token,
                    cancel_token_expires_at=booking.cancel_token_expires_at,
                ))
        except IntegrityError as exc:
            logger.info("Active booking already exists for slot %s: %s", slot_id, exc.orig)
            raise SlotUnavailableError(f"Slot {slot_id} already has an active booking.") from exc
        return booking.model_copy()

    def cancel_booking(
        self, booking_id: str, actor_id: str, now: datetime
    ) -> tuple[Booking, AvailabilitySlot]:
        with self._transaction() as session:
            result = session.execute(
                update(BookingRow)
                .where(
                    BookingRow.id == booking_id,
                    BookingRow.status.in_(
                        _values(BOOKING_LIFECYCLE.sources(BookingTrigger.CANCEL))
                    ),
                )
                .values(
                    status=BOOKING_LIFECYCLE.target(BookingTrigger.CANCEL).value,
                    cancelled_at=now,
                    cancelled_by=actor_id,
                )
                .execution_options(synchronize_session=False)
            )
            booking_row = session.get(BookingRow, booking_id)
            if booking_row is None:
                raise BookingNotFoundError(f"Booking {booking_id} not found.")
            if result.rowcount != 1:
                raise InvalidTransitionError(
                    f"Booking {booking_id} is {booking_row.status}; "
                    "only confirmed bookings can be cancelled."
                )
            session.execute(
                update(SlotRow)
                .where(
                    SlotRow.id == booking_row.slot_id,
                    SlotRow.status.in_(_values(SLOT_LIFECYCLE.sources(SlotTrigger.RELEASE))),
                    SlotRow.start_at > now,
                )
                .values(status=SLOT_LIFECYCLE.target(SlotTrigger.RELEASE).value)
                .execution_options(synchronize_session=False)
            )
            slot_row = self._get_slot_row(session, booking_row.slot_id)
            return _booking_model(booking_row), _slot_model(slot_row)

    def retire_slot(
        self, slot_id: str, actor_id: Optional[str], now: datetime
    ) -> tuple[AvailabilitySlot, Optional[Booking]]:
        with self._transaction() as session:
            result = session.execute(
                update(SlotRow)
                .where(
                    SlotRow.id == slot_id,
                    SlotRow.status.in_(_values(SLOT_LIFECYCLE.sources(SlotTrigger.RETIRE))),
                )
                .values(status=SLOT_LIFECYCLE.target(SlotTrigger.RETIRE).value)
                .execution_options(synchronize_session=False)
            )
            slot_row = self._get_slot_row(session, slot_id)
            if result.rowcount != 1:
                raise InvalidTransitionError(f"Slot {slot_id} is already {slot_row.status}.")

            booking_row = session.scalar(
                select(BookingRow).where(
                    BookingRow.slot_id == slot_id,
                    BookingRow.status.in_(
                        _values(BOOKING_LIFECYCLE.sources(BookingTrigger.CANCEL))
                    ),
                )
            )
            cancelled: Optional[Booking] = None
            if booking_row is not None:
                booking_row.status = BOOKING_LIFECYCLE.target(BookingTrigger.CANCEL).value
                booking_row.cancelled_at = now
                booking_row.cancelled_by = actor_id
                session.flush()
                cancelled = _booking_model(booking_row)
            return _slot_model(slot_row), cancelled

    def get_booking(self, booking_id: str) -> Booking:
        with self._reader() as session:
            row = session.get(BookingRow, booking_id)
            if row is None:
                raise BookingNotFoundError(f"Booking {booking_id} not found.")
            return _booking_model(row)

    def find_booking_by_token(self, cancel_token: str) -> Booking:
        with self._reader() as session:
            row = session.scalar(select(BookingRow).where(BookingRow.cancel_token == cancel_token))
            if row is None:
                raise BookingNotFoundError("No booking matches this cancel token.")
            return _booking_model(row)

    def list_client_bookings(self, client_id: str) -> list[Booking]:
        stmt = (
            select(BookingRow)
            .join(SlotRow, SlotRow.id == BookingRow.slot_id)
            .where(BookingRow.client_id == client_id)
            .order_by(SlotRow.start_at.desc())
        )
        with self._reader() as session:
            return [_booking_model(row) for row in session.scalars(stmt)]
