"""B2B partnership workflow.

A second performer attaches to an already booked slot through a two-party
consent flow. Request states move only along the transition table below;
``declined`` and ``left`` are terminal, and a new request can be created for
the booking once the previous one reached either of them.
"""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from djq.models.bookings import (
    ACTIVE_B2B_STATUSES,
    B2BInitiator,
    B2BRequest,
    B2BRequestStatus,
    BookingStatus,
    SlotBooking,
)
from djq.services.errors import (
    B2BRequestNotFoundError,
    BookingNotFoundError,
    DuplicateActiveRequestError,
    InvalidStateError,
    NotAuthorizedError,
)
from djq.services.locks import booking_lock
from djq.services.transactions import run_in_transaction
from djq.services.users import UserDirectory, ensure_eligible

logger = logging.getLogger(__name__)


class B2BAction(str, enum.Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    LEAVE = "leave"


@dataclass(frozen=True)
class Transition:
    source: B2BRequestStatus
    target: B2BRequestStatus
    # accept and decline belong to the invited party; either partner may leave
    requestee_only: bool
    # both parties must still be eligible performers when the action lands
    checks_eligibility: bool = False


TRANSITIONS: dict[B2BAction, Transition] = {
    B2BAction.ACCEPT: Transition(
        B2BRequestStatus.PENDING, B2BRequestStatus.ACCEPTED, requestee_only=True, checks_eligibility=True
    ),
    B2BAction.DECLINE: Transition(B2BRequestStatus.PENDING, B2BRequestStatus.DECLINED, requestee_only=True),
    B2BAction.LEAVE: Transition(B2BRequestStatus.ACCEPTED, B2BRequestStatus.LEFT, requestee_only=False),
}


def create_b2b_request(
    db: Session,
    *,
    booking_id: str,
    requester_id: str,
    initiated_by: B2BInitiator | str,
    users: UserDirectory,
    partner_id: str | None = None,
) -> B2BRequest:
    """
    Propose a B2B partnership on a booking.

    With ``initiated_by=requester`` the slot holder invites ``partner_id``.
    With ``initiated_by=requestee`` ``requester_id`` asks the slot holder to
    let them join; ``partner_id`` may be omitted or must name the holder.
    Both parties must be eligible performers.
    """
    initiated_by = B2BInitiator(initiated_by)
    ensure_eligible(users, requester_id)

    def _create(db: Session) -> B2BRequest:
        return _create_in_transaction(db, booking_id, requester_id, partner_id, initiated_by, users)

    try:
        with booking_lock(booking_id):
            request = run_in_transaction(db, _create)
    except IntegrityError:
        if _active_request(db, booking_id) is None:
            raise
        # lost a race against another request for the same booking
        logger.warning("Concurrent B2B request on booking %s rejected", booking_id)
        raise DuplicateActiveRequestError(booking_id) from None

    logger.info(
        "B2B request %s created on booking %s: %s -> %s",
        request.id, booking_id, request.requester_id, request.requestee_id,
    )
    return request


def _create_in_transaction(
    db: Session,
    booking_id: str,
    requester_id: str,
    partner_id: str | None,
    initiated_by: B2BInitiator,
    users: UserDirectory,
) -> B2BRequest:
    booking = db.get(SlotBooking, booking_id, populate_existing=True, with_for_update=True)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    if booking.status != BookingStatus.CONFIRMED.value:
        raise InvalidStateError("Cannot create a B2B request for a cancelled booking")
    if not booking.slot.event.allow_b2b:
        raise InvalidStateError("This event does not allow B2B bookings")

    if initiated_by is B2BInitiator.REQUESTER:
        if requester_id != booking.dj_id:
            raise NotAuthorizedError("Only the slot holder can invite a B2B partner")
        if partner_id is None:
            raise ValueError("partner_id is required when the slot holder sends the invite")
        requestee_id = partner_id
    else:
        if partner_id is not None and partner_id != booking.dj_id:
            raise NotAuthorizedError("B2B requests must be sent to the slot holder")
        requestee_id = booking.dj_id

    if requester_id == requestee_id:
        raise InvalidStateError("A performer cannot B2B with themselves")
    ensure_eligible(users, requestee_id)

    if _active_request(db, booking_id) is not None:
        raise DuplicateActiveRequestError(booking_id)

    request = B2BRequest(
        booking_id=booking_id,
        requester_id=requester_id,
        requestee_id=requestee_id,
        initiated_by=initiated_by.value,
        status=B2BRequestStatus.PENDING.value,
    )
    db.add(request)
    db.flush()
    return request


def get_b2b_request_by_id(db: Session, request_id: str) -> B2BRequest | None:
    return db.get(B2BRequest, request_id)


def get_active_b2b_request(db: Session, booking_id: str) -> B2BRequest | None:
    """The pending or accepted request on a booking, if any."""
    return _active_request(db, booking_id)


def _active_request(db: Session, booking_id: str) -> B2BRequest | None:
    stmt = select(B2BRequest).where(
        B2BRequest.booking_id == booking_id,
        B2BRequest.status.in_(ACTIVE_B2B_STATUSES),
    )
    return db.scalars(stmt).first()


def get_pending_b2b_requests_for_user(db: Session, user_id: str) -> list[B2BRequest]:
    """Pending requests waiting on ``user_id`` to accept or decline."""
    stmt = (
        select(B2BRequest)
        .where(
            B2BRequest.requestee_id == user_id,
            B2BRequest.status == B2BRequestStatus.PENDING.value,
        )
        .order_by(B2BRequest.created_at)
    )
    return list(db.scalars(stmt))


def accept_b2b_request(
    db: Session, request_id: str, acting_user_id: str, users: UserDirectory
) -> B2BRequest:
    return apply_b2b_action(db, request_id, B2BAction.ACCEPT, acting_user_id, users)


def decline_b2b_request(
    db: Session, request_id: str, acting_user_id: str, users: UserDirectory
) -> B2BRequest:
    return apply_b2b_action(db, request_id, B2BAction.DECLINE, acting_user_id, users)


def leave_b2b_partnership(
    db: Session, request_id: str, acting_user_id: str, users: UserDirectory
) -> B2BRequest:
    return apply_b2b_action(db, request_id, B2BAction.LEAVE, acting_user_id, users)


def apply_b2b_action(
    db: Session, request_id: str, action: B2BAction | str, acting_user_id: str, users: UserDirectory
) -> B2BRequest:
    """
    Move a request along the transition table on behalf of ``acting_user_id``.

    Raises:
        B2BRequestNotFoundError: If the request does not exist.
        NotAuthorizedError: If the actor may not perform this action.
        InvalidStateError: If the request is not in the action's source state.
        PerformerIneligibleError: If accepting would seat an ineligible performer.
    """
    action = B2BAction(action)
    transition = TRANSITIONS[action]

    request = db.get(B2BRequest, request_id)
    if request is None:
        raise B2BRequestNotFoundError(request_id)
    booking_id = request.booking_id

    def _apply(db: Session) -> None:
        _apply_in_transaction(db, request_id, action, transition, acting_user_id, users)

    with booking_lock(booking_id):
        run_in_transaction(db, _apply)

    logger.info(
        "B2B request %s on booking %s: %s by %s -> %s",
        request_id, booking_id, action.value, acting_user_id, transition.target.value,
    )
    return db.get(B2BRequest, request_id)


def _apply_in_transaction(
    db: Session,
    request_id: str,
    action: B2BAction,
    transition: Transition,
    acting_user_id: str,
    users: UserDirectory,
) -> None:
    request = db.get(B2BRequest, request_id, populate_existing=True, with_for_update=True)
    if request is None:
        raise B2BRequestNotFoundError(request_id)

    if transition.requestee_only:
        if acting_user_id != request.requestee_id:
            raise NotAuthorizedError(f"Only the requestee can {action.value} this B2B request")
    elif acting_user_id not in request.parties:
        raise NotAuthorizedError("Only participants can leave this B2B partnership")

    if request.status != transition.source.value:
        raise InvalidStateError(f"Cannot {action.value} a B2B request that is {request.status}")
    if transition.checks_eligibility:
        for user_id in request.parties:
            ensure_eligible(users, user_id)

    stmt = (
        update(B2BRequest)
        .where(B2BRequest.id == request_id)
        .where(B2BRequest.status == transition.source.value)
        .values(status=transition.target.value)
        .execution_options(synchronize_session=False)
    )
    res = db.execute(stmt)
    if res.rowcount != 1:  # type: ignore
        raise InvalidStateError("B2B request was changed by someone else, please reload")

    effect = _BOOKING_EFFECTS.get(action)
    if effect is not None:
        effect(db, request, acting_user_id)
    db.expire(request)


def _join_booking(db: Session, request: B2BRequest, acting_user_id: str) -> None:
    """Register the party who is not the slot holder as co-occupant."""
    booking = db.get(SlotBooking, request.booking_id, populate_existing=True)
    if booking is None or booking.status != BookingStatus.CONFIRMED.value:
        raise InvalidStateError("Booking is no longer confirmed")
    if booking.dj_id not in request.parties:
        raise InvalidStateError("The slot holder is not part of this B2B request")

    partner_id = request.requestee_id if request.requester_id == booking.dj_id else request.requester_id
    stmt = (
        update(SlotBooking)
        .where(SlotBooking.id == booking.id)
        .where(SlotBooking.dj_id == booking.dj_id)
        .where(SlotBooking.partner_id.is_(None))
        .values(partner_id=partner_id)
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount != 1:  # type: ignore
        raise InvalidStateError("Booking already has a B2B partner")
    db.expire(booking)


def _leave_booking(db: Session, request: B2BRequest, acting_user_id: str) -> None:
    """
    Dissolve the pairing. Whoever does not leave keeps the slot: if the
    partner leaves the holder stays alone, if the holder leaves the partner
    becomes the sole occupant.
    """
    booking = db.get(SlotBooking, request.booking_id, populate_existing=True)
    if booking is None or booking.partner_id is None:
        raise InvalidStateError("Booking has no B2B partner")

    stmt = update(SlotBooking).where(SlotBooking.id == booking.id)
    if acting_user_id == booking.dj_id:
        stmt = stmt.where(SlotBooking.dj_id == acting_user_id).values(dj_id=booking.partner_id, partner_id=None)
    else:
        stmt = stmt.where(SlotBooking.partner_id == acting_user_id).values(partner_id=None)

    res = db.execute(stmt.execution_options(synchronize_session=False))
    if res.rowcount != 1:  # type: ignore
        raise InvalidStateError("Only a current occupant can leave this B2B partnership")
    db.expire(booking)


_BOOKING_EFFECTS: dict[B2BAction, Callable[[Session, B2BRequest, str], None]] = {
    B2BAction.ACCEPT: _join_booking,
    B2BAction.LEAVE: _leave_booking,
}
