"""Push published events to the external events directory."""

import logging

import requests
from sqlalchemy import update
from sqlalchemy.orm import Session

from djq.core.config import LISTING_SYNC_TIMEOUT, PUBLIC_BASE_URL, get_events_directory_url
from djq.models.events import Event, EventStatus
from djq.models.users import User
from djq.services.errors import EventNotFoundError, InvalidStateError

logger = logging.getLogger(__name__)

LISTING_TAGS = ["dj", "music", "open-decks"]


def build_listing_payload(event: Event, host: User | None) -> dict:
    host_name = (host.display_name or host.username) if host else None
    payload = {
        "name": event.title,
        "startTime": event.start_time.isoformat(),
        "endTime": event.end_time.isoformat(),
        "metadata": {
            "description": event.description or f"DJ event hosted by {host_name or 'Unknown Host'}",
            "djqEventId": event.id,
            "host": {"name": host_name or "Unknown Host", "username": host.username if host else None},
            "slotDurationMinutes": event.slot_duration_minutes,
            "allowB2B": event.allow_b2b,
            "status": event.status,
        },
        "tags": LISTING_TAGS,
        "source": "djq",
        "sourceId": event.id,
    }
    if PUBLIC_BASE_URL:
        payload["sourceUrl"] = f"{PUBLIC_BASE_URL.rstrip('/')}/events/{event.id}"
    return payload


def sync_event_listing(db: Session, event_id: str) -> int:
    """
    Create or update the directory listing for a published event and return
    the listing id. HTTP failures propagate as ``requests`` exceptions.
    """
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    if event.status != EventStatus.PUBLISHED.value:
        raise InvalidStateError("Only published events can be listed")

    payload = build_listing_payload(event, db.get(User, event.host_id))
    base_url = get_events_directory_url()
    if event.listing_id:
        response = requests.put(
            f"{base_url}/api/events/{event.listing_id}", json=payload, timeout=LISTING_SYNC_TIMEOUT
        )
    else:
        response = requests.post(f"{base_url}/api/events", json=payload, timeout=LISTING_SYNC_TIMEOUT)
    response.raise_for_status()
    listing_id = int(response.json()["id"])

    if event.listing_id != listing_id:
        db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(listing_id=listing_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.info("Listed event %s in the events directory as %s", event_id, listing_id)
    else:
        logger.info("Updated directory listing %s for event %s", listing_id, event_id)
    return listing_id
