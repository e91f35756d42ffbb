from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from djq.models.events import Event, EventStatus
from djq.models.slots import SlotStatus, TimeSlot


def bookable_condition():
    """SQL condition that holds for available slots of published events."""
    published_events = select(Event.id).where(Event.status == EventStatus.PUBLISHED.value)
    return (TimeSlot.status == SlotStatus.AVAILABLE.value) & TimeSlot.event_id.in_(published_events)


def is_bookable(db: Session, slot_id: str) -> bool:
    """True iff the slot is available and its event is published. Unknown ids are not bookable."""
    found = db.scalar(select(TimeSlot.id).where(TimeSlot.id == slot_id, bookable_condition()))
    return found is not None


def bookable_slot_ids(db: Session, slot_ids: Iterable[str]) -> set[str]:
    ids = list(slot_ids)
    if not ids:
        return set()
    rows = db.scalars(select(TimeSlot.id).where(TimeSlot.id.in_(ids), bookable_condition()))
    return set(rows)


def list_event_slots(db: Session, event_id: str) -> list[TimeSlot]:
    return list(
        db.scalars(select(TimeSlot).where(TimeSlot.event_id == event_id).order_by(TimeSlot.slot_index))
    )


def generate_time_slots(
    event_id: str, start_time: datetime, end_time: datetime, duration_minutes: int
) -> list[TimeSlot]:
    """Cut the event window into back-to-back slots of ``duration_minutes``.

    Only slots that end on or before ``end_time`` are produced, so a trailing
    remainder shorter than one slot is left unused.
    """
    duration = timedelta(minutes=duration_minutes)
    slots: list[TimeSlot] = []
    current = start_time
    while current + duration <= end_time:
        slots.append(
            TimeSlot(
                event_id=event_id,
                start_time=current,
                end_time=current + duration,
                slot_index=len(slots),
                status=SlotStatus.AVAILABLE.value,
            )
        )
        current += duration
    return slots
