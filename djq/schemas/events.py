from datetime import datetime

from pydantic import BaseModel, Field, model_validator


# ---------- Event ----------
class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    event_date: datetime
    start_time: datetime
    end_time: datetime
    slot_duration_minutes: int = 20
    allow_consecutive_slots: bool = False
    max_consecutive_slots: int = Field(default=1, ge=1)
    allow_b2b: bool = True

    @model_validator(mode="after")
    def check_window(self):
        if self.start_time >= self.end_time:
            raise ValueError("Start time must be before end time")
        return self


class EventOut(BaseModel):
    id: str
    host_id: str
    title: str
    description: str | None
    event_date: datetime
    start_time: datetime
    end_time: datetime
    slot_duration_minutes: int
    allow_consecutive_slots: bool
    max_consecutive_slots: int
    allow_b2b: bool
    status: str
    listing_id: int | None

    class Config:
        from_attributes = True


class TimeSlotOut(BaseModel):
    id: str
    event_id: str
    start_time: datetime
    end_time: datetime
    slot_index: int
    status: str

    class Config:
        from_attributes = True


class EventDetailOut(EventOut):
    slots: list[TimeSlotOut]


class EventOccupancyOut(BaseModel):
    event_id: str
    status: str
    total_slots: int
    booked_slots: int
    available_slots: int
    b2b_slots: int
