from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from djq.database.db import get_db
from djq.models.bookings import B2BInitiator
from djq.routes.deps import current_user_id, get_user_directory, to_http_exception
from djq.schemas.bookings import B2BCreateRequest, B2BRequestOut, BookingDetailOut, BookingOut
from djq.services.bookings import get_booking_by_id, get_booking_occupants, get_bookings_for_dj
from djq.services.errors import DomainError
from djq.services.partnerships import create_b2b_request, get_active_b2b_request
from djq.services.users import UserDirectory

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("", response_model=list[BookingOut])
def my_bookings(db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    return get_bookings_for_dj(db, user_id)


@router.get("/{booking_id}", response_model=BookingDetailOut)
def booking_detail(booking_id: str, db: Session = Depends(get_db)):
    booking = get_booking_by_id(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    active = get_active_b2b_request(db, booking_id)
    return BookingDetailOut(
        booking=BookingOut.model_validate(booking),
        occupants=get_booking_occupants(db, booking_id),
        active_b2b_request=B2BRequestOut.model_validate(active) if active else None,
    )


@router.post("/{booking_id}/b2b", response_model=B2BRequestOut, status_code=201)
def request_b2b(
    booking_id: str,
    payload: B2BCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
    users: UserDirectory = Depends(get_user_directory),
):
    booking = get_booking_by_id(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")

    # the holder invites; anyone else asks the holder
    initiated_by = B2BInitiator.REQUESTER if booking.dj_id == user_id else B2BInitiator.REQUESTEE
    try:
        return create_b2b_request(
            db,
            booking_id=booking_id,
            requester_id=user_id,
            partner_id=payload.target_user_id,
            initiated_by=initiated_by,
            users=users,
        )
    except DomainError as e:
        raise to_http_exception(e)
