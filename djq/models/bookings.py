import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from djq.database.db import Base, new_id


class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class B2BRequestStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    LEFT = "left"


ACTIVE_B2B_STATUSES = (B2BRequestStatus.PENDING.value, B2BRequestStatus.ACCEPTED.value)


class B2BInitiator(str, enum.Enum):
    """Which side of the request the booking holder is on.

    ``REQUESTER``: the holder invited a partner onto their slot.
    ``REQUESTEE``: another performer asked to join and the holder decides.
    """

    REQUESTER = "requester"
    REQUESTEE = "requestee"


class SlotBooking(Base):
    __tablename__ = "slot_bookings"
    __table_args__ = (
        # At most one confirmed booking per slot
        Index(
            "uq_slot_bookings_confirmed_slot",
            "slot_id",
            unique=True,
            sqlite_where=text("status = 'confirmed'"),
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    slot_id: Mapped[str] = mapped_column(ForeignKey("time_slots.id"), nullable=False, index=True)
    dj_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    # co-occupant while a B2B partnership is accepted
    partner_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BookingStatus.CONFIRMED.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    slot: Mapped["TimeSlot"] = relationship(back_populates="bookings")
    b2b_requests: Mapped[list["B2BRequest"]] = relationship(
        back_populates="booking", order_by="B2BRequest.created_at"
    )


class B2BRequest(Base):
    __tablename__ = "b2b_requests"
    __table_args__ = (
        # At most one pending or accepted request per booking
        Index(
            "uq_b2b_requests_active_booking",
            "booking_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'accepted')"),
            postgresql_where=text("status IN ('pending', 'accepted')"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    booking_id: Mapped[str] = mapped_column(ForeignKey("slot_bookings.id"), nullable=False, index=True)
    requester_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    requestee_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    initiated_by: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=B2BRequestStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    booking: Mapped["SlotBooking"] = relationship(back_populates="b2b_requests")

    @property
    def parties(self) -> tuple[str, str]:
        return (self.requester_id, self.requestee_id)
