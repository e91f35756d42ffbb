import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from djq.database.db import get_db
from djq.routes.deps import current_user_id, get_user_directory, to_http_exception
from djq.schemas.bookings import BookingOut, BookSlotsRequest
from djq.schemas.events import EventCreate, EventDetailOut, EventOccupancyOut, EventOut, TimeSlotOut
from djq.services.bookings import book_slots
from djq.services.errors import DomainError
from djq.services.events import create_event, get_event_by_id, get_event_occupancy, publish_event_once
from djq.services.inventory import list_event_slots
from djq.services.users import UserDirectory
from djq.tasks import sync_event_listing_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=EventOut, status_code=201)
def create_new_event(payload: EventCreate, db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    try:
        return create_event(db, host_id=user_id, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{event_id}", response_model=EventDetailOut)
def event_detail(event_id: str, db: Session = Depends(get_db)):
    event = get_event_by_id(db, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    data = EventOut.model_validate(event).model_dump()
    slots = [TimeSlotOut.model_validate(slot) for slot in list_event_slots(db, event_id)]
    return EventDetailOut(**data, slots=slots)


@router.post("/{event_id}/publish", response_model=EventOut)
def publish(event_id: str, db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    try:
        event, changed = publish_event_once(db, event_id, acting_user_id=user_id)
    except DomainError as e:
        raise to_http_exception(e)
    if not changed:
        return event

    # enqueue durable background work to list the event in the directory
    try:
        sync_event_listing_task.delay(event.id)
    except Exception:
        logger.warning("Could not enqueue listing sync for event %s", event.id, exc_info=True)

    return event


@router.get("/{event_id}/stats", response_model=EventOccupancyOut)
def event_stats(event_id: str, db: Session = Depends(get_db)):
    stats = get_event_occupancy(db, event_id)
    if not stats:
        raise HTTPException(status_code=404, detail="Event not found")
    return stats


@router.post("/{event_id}/book", response_model=list[BookingOut], status_code=201)
def book(
    event_id: str,
    payload: BookSlotsRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
    users: UserDirectory = Depends(get_user_directory),
):
    try:
        return book_slots(db, slot_ids=payload.slot_ids, dj_id=user_id, users=users, event_id=event_id)
    except DomainError as e:
        raise to_http_exception(e)
