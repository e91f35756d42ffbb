from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from djq.database.db import get_db
from djq.routes.deps import current_user_id, get_user_directory, to_http_exception
from djq.schemas.b2b import B2BActionRequest
from djq.schemas.bookings import B2BRequestOut
from djq.services.errors import DomainError
from djq.services.partnerships import (
    apply_b2b_action,
    get_b2b_request_by_id,
    get_pending_b2b_requests_for_user,
)
from djq.services.users import UserDirectory

router = APIRouter(prefix="/b2b", tags=["b2b"])


@router.get("/pending", response_model=list[B2BRequestOut])
def pending_requests(db: Session = Depends(get_db), user_id: str = Depends(current_user_id)):
    """B2B requests waiting on the current user."""
    return get_pending_b2b_requests_for_user(db, user_id)


@router.get("/{request_id}", response_model=B2BRequestOut)
def b2b_request_detail(request_id: str, db: Session = Depends(get_db)):
    request = get_b2b_request_by_id(db, request_id)
    if not request:
        raise HTTPException(status_code=404, detail="Request not found")
    return request


@router.patch("/{request_id}", response_model=B2BRequestOut)
def update_b2b_request(
    request_id: str,
    payload: B2BActionRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(current_user_id),
    users: UserDirectory = Depends(get_user_directory),
):
    try:
        return apply_b2b_action(db, request_id, payload.action, user_id, users)
    except DomainError as e:
        raise to_http_exception(e)
