import logging
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from djq.models.bookings import BookingStatus, SlotBooking
from djq.models.events import SLOT_DURATIONS, Event, EventStatus
from djq.models.slots import SlotStatus, TimeSlot
from djq.services.errors import EventNotFoundError, NotAuthorizedError
from djq.services.inventory import generate_time_slots
from djq.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


def create_event(
    db: Session,
    *,
    host_id: str,
    title: str,
    event_date: datetime,
    start_time: datetime,
    end_time: datetime,
    slot_duration_minutes: int = 20,
    description: str | None = None,
    allow_consecutive_slots: bool = False,
    max_consecutive_slots: int = 1,
    allow_b2b: bool = True,
) -> Event:
    """Create a draft event together with its time slots."""
    if slot_duration_minutes not in SLOT_DURATIONS:
        durations = ", ".join(str(d) for d in SLOT_DURATIONS)
        raise ValueError(f"Invalid slot duration. Must be one of: {durations}")
    if start_time >= end_time:
        raise ValueError("Start time must be before end time")
    if max_consecutive_slots < 1:
        raise ValueError("Max consecutive slots must be at least 1")

    def _create(db: Session) -> Event:
        event = Event(
            host_id=host_id,
            title=title,
            description=description,
            event_date=event_date,
            start_time=start_time,
            end_time=end_time,
            slot_duration_minutes=slot_duration_minutes,
            allow_consecutive_slots=allow_consecutive_slots,
            max_consecutive_slots=max_consecutive_slots,
            allow_b2b=allow_b2b,
            status=EventStatus.DRAFT.value,
        )
        db.add(event)
        db.flush()  # gets event.id

        slots = generate_time_slots(event.id, start_time, end_time, slot_duration_minutes)
        if not slots:
            raise ValueError("Event duration is too short for the configured slot duration")
        db.add_all(slots)
        db.flush()
        return event

    event = run_in_transaction(db, _create)
    logger.info("Created draft event %s for host %s", event.id, host_id)
    return event


def get_event_by_id(db: Session, event_id: str) -> Event | None:
    return db.get(Event, event_id)


def publish_event(db: Session, event_id: str, acting_user_id: str | None = None) -> Event:
    """
    Move an event from draft to published. Publishing an already published
    event is a no-op. Slot rows are not touched: they become bookable because
    their event is now published.
    """
    event, _ = publish_event_once(db, event_id, acting_user_id)
    return event


def publish_event_once(
    db: Session, event_id: str, acting_user_id: str | None = None
) -> tuple[Event, bool]:
    """Publish like ``publish_event`` and also report whether this call made the change."""

    def _publish(db: Session) -> bool:
        event = db.get(Event, event_id)
        if event is None:
            raise EventNotFoundError(event_id)
        if acting_user_id is not None and event.host_id != acting_user_id:
            raise NotAuthorizedError("Only the host can publish this event")

        stmt = (
            update(Event)
            .where(Event.id == event_id)
            .where(Event.status == EventStatus.DRAFT.value)
            .values(status=EventStatus.PUBLISHED.value)
            .execution_options(synchronize_session=False)
        )
        res = db.execute(stmt)
        db.expire(event)
        return res.rowcount == 1  # type: ignore

    changed = run_in_transaction(db, _publish)
    if changed:
        logger.info("Published event %s", event_id)
    else:
        logger.info("Event %s was already published", event_id)
    return db.get(Event, event_id), changed


def get_event_occupancy(db: Session, event_id: str) -> dict:
    event = db.get(Event, event_id)
    if not event:
        return {}

    counts = dict(
        db.execute(
            select(TimeSlot.status, func.count(TimeSlot.id))
            .where(TimeSlot.event_id == event_id)
            .group_by(TimeSlot.status)
        ).all()
    )
    b2b_slots = db.scalar(
        select(func.count(SlotBooking.id))
        .join(TimeSlot, SlotBooking.slot_id == TimeSlot.id)
        .where(
            TimeSlot.event_id == event_id,
            SlotBooking.status == BookingStatus.CONFIRMED.value,
            SlotBooking.partner_id.is_not(None),
        )
    )

    booked = int(counts.get(SlotStatus.BOOKED.value, 0))
    available = int(counts.get(SlotStatus.AVAILABLE.value, 0))
    return {
        "event_id": event.id,
        "status": event.status,
        "total_slots": booked + available,
        "booked_slots": booked,
        "available_slots": available,
        "b2b_slots": int(b2b_slots or 0),
    }
