import logging
from collections.abc import Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from djq.models.bookings import BookingStatus, SlotBooking
from djq.models.events import Event, EventStatus
from djq.models.slots import SlotStatus, TimeSlot
from djq.services.errors import (
    BookingNotFoundError,
    InvalidSlotSelectionError,
    SlotNotFoundError,
    SlotUnavailableError,
)
from djq.services.inventory import bookable_condition
from djq.services.transactions import run_in_transaction
from djq.services.users import UserDirectory, ensure_eligible

logger = logging.getLogger(__name__)

# one retry with fresh reads after a store-level conflict
MAX_BOOKING_ATTEMPTS = 2


def book_slots(
    db: Session,
    *,
    slot_ids: Sequence[str],
    dj_id: str,
    users: UserDirectory,
    event_id: str | None = None,
) -> list[SlotBooking]:
    """
    Book every slot in ``slot_ids`` for ``dj_id`` in a single transaction.

    The batch is all-or-nothing: if any slot is missing, already booked or
    belongs to an unpublished event, nothing is written. Each slot is claimed
    with a conditional update on its status, so when two callers race for the
    same slot exactly one of them wins and the other gets SlotUnavailableError.
    Bookings are returned in the order of ``slot_ids``. When ``event_id`` is
    given every slot must belong to that event.
    """
    slot_ids = list(slot_ids)
    if not slot_ids:
        raise InvalidSlotSelectionError("No slots provided")
    if len(set(slot_ids)) != len(slot_ids):
        raise InvalidSlotSelectionError("The same slot was requested more than once")

    ensure_eligible(users, dj_id)

    for attempt in range(1, MAX_BOOKING_ATTEMPTS + 1):
        try:
            bookings = run_in_transaction(
                db, lambda s: _book_slots_in_transaction(s, slot_ids, dj_id, event_id)
            )
        except (OperationalError, IntegrityError) as exc:
            logger.warning(
                "Store conflict booking slots %s for %s (attempt %d/%d): %s",
                slot_ids, dj_id, attempt, MAX_BOOKING_ATTEMPTS, exc.orig,
            )
            continue
        logger.info("Booked %d slot(s) for %s: %s", len(bookings), dj_id, [b.id for b in bookings])
        return bookings

    raise SlotUnavailableError("One or more slots are no longer available")


def _book_slots_in_transaction(
    db: Session, slot_ids: list[str], dj_id: str, expected_event_id: str | None
) -> list[SlotBooking]:
    """Internal function to claim the slots within a transaction."""
    stmt = select(TimeSlot).where(TimeSlot.id.in_(slot_ids)).execution_options(populate_existing=True)
    slots = {slot.id: slot for slot in db.scalars(stmt)}
    missing = [slot_id for slot_id in slot_ids if slot_id not in slots]
    if missing:
        raise SlotNotFoundError(missing)

    event_ids = {slot.event_id for slot in slots.values()}
    if len(event_ids) > 1:
        raise InvalidSlotSelectionError("All slots must belong to the same event")
    if expected_event_id is not None and event_ids != {expected_event_id}:
        raise InvalidSlotSelectionError("Slots do not belong to this event")
    event = db.get(Event, event_ids.pop(), populate_existing=True)
    if event is None or event.status != EventStatus.PUBLISHED.value:
        raise SlotUnavailableError("Event is not open for bookings")

    if any(slot.status != SlotStatus.AVAILABLE.value for slot in slots.values()):
        raise SlotUnavailableError("One or more slots are not available")
    _check_slot_run(event, list(slots.values()))

    bookings = []
    for slot_id in slot_ids:
        # Claim the slot only if it is still bookable
        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == slot_id, bookable_condition())
            .values(status=SlotStatus.BOOKED.value)
            .execution_options(synchronize_session=False)
        )
        res = db.execute(stmt)
        if res.rowcount != 1:  # type: ignore
            logger.warning("Slot %s was claimed concurrently; rejecting batch for %s", slot_id, dj_id)
            raise SlotUnavailableError("One or more slots are not available")
        db.expire(slots[slot_id])

        booking = SlotBooking(slot_id=slot_id, dj_id=dj_id, status=BookingStatus.CONFIRMED.value)
        db.add(booking)
        bookings.append(booking)

    db.flush()  # gets booking ids, trips the one-booking-per-slot index
    return bookings


def _check_slot_run(event: Event, slots: list[TimeSlot]) -> None:
    if len(slots) > 1 and not event.allow_consecutive_slots:
        raise InvalidSlotSelectionError("This event does not allow booking consecutive slots")
    if len(slots) > event.max_consecutive_slots:
        raise InvalidSlotSelectionError(f"Maximum {event.max_consecutive_slots} consecutive slot(s) allowed")

    indexes = sorted(slot.slot_index for slot in slots)
    if indexes != list(range(indexes[0], indexes[0] + len(indexes))):
        raise InvalidSlotSelectionError("Slots must be consecutive")


def get_booking_by_id(db: Session, booking_id: str) -> SlotBooking | None:
    return db.get(SlotBooking, booking_id)


def get_bookings_for_dj(db: Session, dj_id: str) -> list[SlotBooking]:
    """Confirmed bookings where the performer is the primary occupant or the B2B partner."""
    stmt = (
        select(SlotBooking)
        .where(
            SlotBooking.status == BookingStatus.CONFIRMED.value,
            or_(SlotBooking.dj_id == dj_id, SlotBooking.partner_id == dj_id),
        )
        .order_by(SlotBooking.created_at)
    )
    return list(db.scalars(stmt))


def get_booking_occupants(db: Session, booking_id: str) -> list[str]:
    """Primary occupant first, then the B2B partner if there is one."""
    booking = db.get(SlotBooking, booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    occupants = [booking.dj_id]
    if booking.partner_id:
        occupants.append(booking.partner_id)
    return occupants
