from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from djq.database.db import get_db
from djq.services.errors import DomainError, ErrorCode
from djq.services.users import SqlUserDirectory, UserDirectory

STATUS_BY_CODE = {
    ErrorCode.EVENT_NOT_FOUND: 404,
    ErrorCode.SLOT_NOT_FOUND: 404,
    ErrorCode.BOOKING_NOT_FOUND: 404,
    ErrorCode.B2B_REQUEST_NOT_FOUND: 404,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.PERFORMER_INELIGIBLE: 403,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.SLOT_UNAVAILABLE: 409,
    ErrorCode.DUPLICATE_ACTIVE_REQUEST: 409,
    ErrorCode.BOOKING_BUSY: 409,
    ErrorCode.INVALID_SLOT_SELECTION: 400,
}


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # Session handling lives in the surrounding app; it forwards the user id
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


def get_user_directory(db: Session = Depends(get_db)) -> UserDirectory:
    return SqlUserDirectory(db)


def to_http_exception(e: DomainError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_CODE.get(e.code, 400),
        detail={"code": e.code.value, "message": e.message},
    )
