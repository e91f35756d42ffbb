from datetime import datetime

from pydantic import BaseModel, Field


class BookSlotsRequest(BaseModel):
    slot_ids: list[str] = Field(min_length=1)


class BookingOut(BaseModel):
    id: str
    slot_id: str
    dj_id: str
    partner_id: str | None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class B2BRequestOut(BaseModel):
    id: str
    booking_id: str
    requester_id: str
    requestee_id: str
    initiated_by: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class BookingDetailOut(BaseModel):
    booking: BookingOut
    occupants: list[str]
    active_b2b_request: B2BRequestOut | None


class B2BCreateRequest(BaseModel):
    target_user_id: str = Field(min_length=1)
