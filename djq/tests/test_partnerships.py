"""
Test the B2B partnership workflow.
"""
from unittest.mock import patch

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from djq.models.bookings import B2BInitiator, B2BRequest, B2BRequestStatus, SlotBooking
from djq.models.users import User
from djq.services.bookings import book_slots, get_booking_occupants
from djq.services.errors import (
    B2BRequestNotFoundError,
    BookingBusyError,
    BookingNotFoundError,
    DuplicateActiveRequestError,
    InvalidStateError,
    NotAuthorizedError,
    PerformerIneligibleError,
)
from djq.services.inventory import list_event_slots
from djq.services.partnerships import (
    TRANSITIONS,
    B2BAction,
    _active_request,
    accept_b2b_request,
    apply_b2b_action,
    create_b2b_request,
    decline_b2b_request,
    get_active_b2b_request,
    get_b2b_request_by_id,
    get_pending_b2b_requests_for_user,
    leave_b2b_partnership,
)
from djq.services.users import SqlUserDirectory
from djq.tests.conftest import add_event, add_user


@pytest.fixture
def booking(db_session: Session, host, dj_a) -> SlotBooking:
    """A confirmed booking held by dj_a."""
    event = add_event(db_session, host)
    slot_id = list_event_slots(db_session, event.id)[0].id
    [booking] = book_slots(db_session, slot_ids=[slot_id], dj_id=dj_a.id, users=SqlUserDirectory(db_session))
    return booking


def _invite(db: Session, booking: SlotBooking, holder, partner):
    return create_b2b_request(
        db,
        users=SqlUserDirectory(db),
        booking_id=booking.id,
        requester_id=holder.id,
        partner_id=partner.id,
        initiated_by=B2BInitiator.REQUESTER,
    )


def _ask(db: Session, booking: SlotBooking, performer):
    return create_b2b_request(
        db,
        users=SqlUserDirectory(db),
        booking_id=booking.id,
        requester_id=performer.id,
        initiated_by=B2BInitiator.REQUESTEE,
    )


def _reload(db: Session, booking: SlotBooking) -> SlotBooking:
    db.expire_all()
    return db.get(SlotBooking, booking.id)


def _request_count(db: Session, booking: SlotBooking) -> int:
    stmt = select(func.count()).select_from(B2BRequest).where(B2BRequest.booking_id == booking.id)
    return db.scalar(stmt)


def _set_status(db: Session, user, status: str) -> None:
    db.execute(update(User).where(User.id == user.id).values(status=status))
    db.commit()


class TestTransitionTable:
    """Test the request state machine definition."""

    def test_only_pending_can_be_answered(self):
        assert TRANSITIONS[B2BAction.ACCEPT].source is B2BRequestStatus.PENDING
        assert TRANSITIONS[B2BAction.DECLINE].source is B2BRequestStatus.PENDING
        assert TRANSITIONS[B2BAction.LEAVE].source is B2BRequestStatus.ACCEPTED

    def test_terminal_states_have_no_way_out(self):
        sources = {t.source for t in TRANSITIONS.values()}
        assert B2BRequestStatus.DECLINED not in sources
        assert B2BRequestStatus.LEFT not in sources


class TestCreateB2BRequest:
    """Test proposing a partnership."""

    def test_holder_invites_partner(self, db_session: Session, booking, dj_a, dj_b):
        """Test the slot holder inviting another performer."""
        request = _invite(db_session, booking, dj_a, dj_b)

        assert request.id is not None
        assert request.requester_id == dj_a.id
        assert request.requestee_id == dj_b.id
        assert request.initiated_by == B2BInitiator.REQUESTER.value
        assert request.status == B2BRequestStatus.PENDING.value
        assert get_active_b2b_request(db_session, booking.id).id == request.id

    def test_performer_asks_holder(self, db_session: Session, booking, dj_a, dj_c):
        """Test a third performer asking to join; the holder becomes the requestee."""
        request = _ask(db_session, booking, dj_c)

        assert request.requester_id == dj_c.id
        assert request.requestee_id == dj_a.id
        assert request.initiated_by == B2BInitiator.REQUESTEE.value

    def test_ask_naming_the_holder(self, db_session: Session, booking, dj_a, dj_c):
        request = create_b2b_request(
            db_session,
            users=SqlUserDirectory(db_session),
            booking_id=booking.id,
            requester_id=dj_c.id,
            partner_id=dj_a.id,
            initiated_by="requestee",
        )
        assert request.requestee_id == dj_a.id

    def test_ask_must_target_holder(self, db_session: Session, booking, dj_b, dj_c):
        with pytest.raises(NotAuthorizedError, match="slot holder"):
            create_b2b_request(
                db_session,
                users=SqlUserDirectory(db_session),
                booking_id=booking.id,
                requester_id=dj_c.id,
                partner_id=dj_b.id,
                initiated_by="requestee",
            )

    def test_only_holder_can_invite(self, db_session: Session, booking, dj_b, dj_c):
        with pytest.raises(NotAuthorizedError, match="Only the slot holder"):
            _invite(db_session, booking, dj_b, dj_c)

    def test_invite_needs_partner(self, db_session: Session, booking, dj_a):
        with pytest.raises(ValueError):
            create_b2b_request(
                db_session,
                users=SqlUserDirectory(db_session),
                booking_id=booking.id, requester_id=dj_a.id, initiated_by="requester",
            )

    def test_cannot_partner_with_self(self, db_session: Session, booking, dj_a):
        with pytest.raises(InvalidStateError, match="themselves"):
            _invite(db_session, booking, dj_a, dj_a)
        with pytest.raises(InvalidStateError, match="themselves"):
            _ask(db_session, booking, dj_a)

    def test_unknown_booking(self, db_session: Session, dj_a):
        with pytest.raises(BookingNotFoundError):
            create_b2b_request(
                db_session,
                users=SqlUserDirectory(db_session),
                booking_id="no-such-booking", requester_id=dj_a.id, initiated_by="requestee",
            )

    def test_event_without_b2b(self, db_session: Session, host, dj_a, dj_b):
        event = add_event(db_session, host, allow_b2b=False)
        slot_id = list_event_slots(db_session, event.id)[0].id
        [booking] = book_slots(db_session, slot_ids=[slot_id], dj_id=dj_a.id, users=SqlUserDirectory(db_session))

        with pytest.raises(InvalidStateError, match="does not allow B2B"):
            _invite(db_session, booking, dj_a, dj_b)

    def test_ineligible_requester(self, db_session: Session, booking):
        banned = add_user(db_session, "dj_banned", status="banned")

        with pytest.raises(PerformerIneligibleError):
            create_b2b_request(
                db_session,
                users=SqlUserDirectory(db_session),
                booking_id=booking.id,
                requester_id=banned.id,
                initiated_by="requestee",
            )
        assert get_active_b2b_request(db_session, booking.id) is None

    def test_one_active_request_per_booking(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        _invite(db_session, booking, dj_a, dj_b)

        with pytest.raises(DuplicateActiveRequestError):
            _ask(db_session, booking, dj_c)

    def test_accepted_request_blocks_new_ones(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        with pytest.raises(DuplicateActiveRequestError):
            _ask(db_session, booking, dj_c)

    def test_new_request_after_decline(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)
        decline_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        again = _ask(db_session, booking, dj_c)

        assert again.status == B2BRequestStatus.PENDING.value
        assert get_b2b_request_by_id(db_session, request.id).status == B2BRequestStatus.DECLINED.value

    def test_new_request_after_leave(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))
        leave_b2b_partnership(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        again = _invite(db_session, booking, dj_a, dj_c)
        assert again.status == B2BRequestStatus.PENDING.value

    def test_busy_booking(self, db_session: Session, booking, dj_a, dj_b, fake_redis, monkeypatch):
        """Test that a held booking lock rejects the change instead of waiting forever."""
        monkeypatch.setattr("djq.services.locks.BOOKING_LOCK_WAIT", 0)
        held = fake_redis.lock(f"booking_lock:{booking.id}", timeout=10)
        assert held.acquire(blocking=False) is True

        with pytest.raises(BookingBusyError):
            _invite(db_session, booking, dj_a, dj_b)

        held.release()
        assert get_active_b2b_request(db_session, booking.id) is None


class TestAnswerB2BRequest:
    """Test accepting and declining."""

    def test_accept_adds_partner(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)

        accepted = accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert accepted.status == B2BRequestStatus.ACCEPTED.value
        booking = _reload(db_session, booking)
        assert booking.dj_id == dj_a.id
        assert booking.partner_id == dj_b.id
        assert get_booking_occupants(db_session, booking.id) == [dj_a.id, dj_b.id]

    def test_holder_accepts_asking_performer(self, db_session: Session, booking, dj_a, dj_c):
        request = _ask(db_session, booking, dj_c)

        accept_b2b_request(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

        booking = _reload(db_session, booking)
        assert booking.dj_id == dj_a.id
        assert booking.partner_id == dj_c.id

    def test_requester_cannot_accept(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)

        with pytest.raises(NotAuthorizedError, match="Only the requestee can accept"):
            accept_b2b_request(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

        assert get_b2b_request_by_id(db_session, request.id).status == B2BRequestStatus.PENDING.value
        assert _reload(db_session, booking).partner_id is None

    def test_outsider_cannot_decline(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)

        with pytest.raises(NotAuthorizedError, match="Only the requestee can decline"):
            decline_b2b_request(db_session, request.id, dj_c.id, SqlUserDirectory(db_session))

    def test_decline_leaves_booking_alone(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)

        declined = decline_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert declined.status == B2BRequestStatus.DECLINED.value
        assert _reload(db_session, booking).partner_id is None
        assert get_active_b2b_request(db_session, booking.id) is None

    def test_accept_twice(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        with pytest.raises(InvalidStateError, match="accepted"):
            accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

    def test_accept_after_decline(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        decline_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        with pytest.raises(InvalidStateError, match="declined"):
            accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))
        assert _reload(db_session, booking).partner_id is None

    def test_unknown_request(self, db_session: Session, dj_a):
        with pytest.raises(B2BRequestNotFoundError):
            accept_b2b_request(db_session, "no-such-request", dj_a.id, SqlUserDirectory(db_session))

    def test_apply_action_by_name(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)

        result = apply_b2b_action(db_session, request.id, "decline", dj_b.id, SqlUserDirectory(db_session))

        assert result.status == B2BRequestStatus.DECLINED.value

    def test_pending_requests_for_user(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)

        assert [r.id for r in get_pending_b2b_requests_for_user(db_session, dj_b.id)] == [request.id]
        assert get_pending_b2b_requests_for_user(db_session, dj_a.id) == []
        assert get_pending_b2b_requests_for_user(db_session, dj_c.id) == []

        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))
        assert get_pending_b2b_requests_for_user(db_session, dj_b.id) == []


class TestLeaveB2BPartnership:
    """Test dissolving a partnership; whoever stays keeps the slot."""

    def test_partner_leaves(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        left = leave_b2b_partnership(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert left.status == B2BRequestStatus.LEFT.value
        booking = _reload(db_session, booking)
        assert booking.dj_id == dj_a.id
        assert booking.partner_id is None

    def test_holder_leaves(self, db_session: Session, booking, dj_a, dj_c):
        """C asks to join A's slot, A accepts, then A leaves: C keeps the slot alone."""
        request = _ask(db_session, booking, dj_c)
        accept_b2b_request(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

        leave_b2b_partnership(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

        booking = _reload(db_session, booking)
        assert booking.dj_id == dj_c.id
        assert booking.partner_id is None
        assert get_booking_occupants(db_session, booking.id) == [dj_c.id]

    def test_outsider_cannot_leave(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        with pytest.raises(NotAuthorizedError, match="Only participants"):
            leave_b2b_partnership(db_session, request.id, dj_c.id, SqlUserDirectory(db_session))

        assert _reload(db_session, booking).partner_id == dj_b.id

    def test_cannot_leave_pending_request(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)

        with pytest.raises(InvalidStateError, match="pending"):
            leave_b2b_partnership(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

    def test_cannot_leave_twice(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))
        leave_b2b_partnership(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        with pytest.raises(InvalidStateError, match="left"):
            leave_b2b_partnership(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

    def test_lock_is_released_after_change(self, db_session: Session, booking, dj_a, dj_b, fake_redis):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert fake_redis.exists(f"booking_lock:{booking.id}") == 0


class TestPartnerEligibility:
    """Test that both parties of a partnership must be eligible performers."""

    def test_banned_invitee(self, db_session: Session, booking, dj_a):
        """The holder cannot invite a banned performer."""
        banned = add_user(db_session, "dj_banned", status="banned")

        with pytest.raises(PerformerIneligibleError, match="banned") as exc_info:
            _invite(db_session, booking, dj_a, banned)

        assert exc_info.value.user_id == banned.id
        assert _request_count(db_session, booking) == 0

    def test_unknown_invitee(self, db_session: Session, booking, dj_a):
        """An invite to a user id that does not exist is rejected."""
        with pytest.raises(PerformerIneligibleError, match="not found"):
            create_b2b_request(
                db_session,
                users=SqlUserDirectory(db_session),
                booking_id=booking.id,
                requester_id=dj_a.id,
                partner_id="no-such-user",
                initiated_by="requester",
            )

        assert _request_count(db_session, booking) == 0

    def test_ask_to_banned_holder(self, db_session: Session, booking, dj_a, dj_c):
        """A performer cannot ask to join the slot of a holder who has since been banned."""
        _set_status(db_session, dj_a, "banned")

        with pytest.raises(PerformerIneligibleError):
            _ask(db_session, booking, dj_c)

        assert _request_count(db_session, booking) == 0

    def test_requestee_banned_before_accepting(self, db_session: Session, booking, dj_a, dj_b):
        """An invite accepted after the invitee was banned seats nobody."""
        request = _invite(db_session, booking, dj_a, dj_b)
        _set_status(db_session, dj_b, "banned")

        with pytest.raises(PerformerIneligibleError):
            accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        db_session.expire_all()
        assert get_b2b_request_by_id(db_session, request.id).status == B2BRequestStatus.PENDING.value
        assert _reload(db_session, booking).partner_id is None

    def test_requester_deactivated_before_accept(self, db_session: Session, booking, dj_a, dj_c):
        """The holder accepting a performer who went inactive is rejected too."""
        request = _ask(db_session, booking, dj_c)
        _set_status(db_session, dj_c, "inactive")

        with pytest.raises(PerformerIneligibleError, match="inactive"):
            accept_b2b_request(db_session, request.id, dj_a.id, SqlUserDirectory(db_session))

        assert _reload(db_session, booking).partner_id is None

    def test_banned_requestee_can_still_decline(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        _set_status(db_session, dj_b, "banned")

        declined = decline_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert declined.status == B2BRequestStatus.DECLINED.value

    def test_banned_partner_can_still_leave(self, db_session: Session, booking, dj_a, dj_b):
        request = _invite(db_session, booking, dj_a, dj_b)
        accept_b2b_request(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))
        _set_status(db_session, dj_b, "banned")

        leave_b2b_partnership(db_session, request.id, dj_b.id, SqlUserDirectory(db_session))

        assert _reload(db_session, booking).partner_id is None


class TestConcurrentRequestCreation:
    """Test the store-level guard on one active request per booking."""

    def test_concurrent_insert_reports_duplicate(self, db_session: Session, booking, dj_a, dj_b, dj_c):
        """Both creators pass the active-request check; the unique index rejects the second insert."""
        _invite(db_session, booking, dj_a, dj_b)
        calls = []

        def miss_first_check(db: Session, booking_id: str):
            calls.append(booking_id)
            if len(calls) == 1:
                return None
            return _active_request(db, booking_id)

        with patch("djq.services.partnerships._active_request", side_effect=miss_first_check):
            with pytest.raises(DuplicateActiveRequestError):
                _ask(db_session, booking, dj_c)

        assert len(calls) == 2
        db_session.expire_all()
        assert _request_count(db_session, booking) == 1
        assert get_active_b2b_request(db_session, booking.id).requestee_id == dj_b.id

    def test_other_integrity_errors_propagate(self, db_session: Session, booking, dj_a, dj_b):
        """An integrity failure with no active request behind it is not reported as a duplicate."""
        broken = IntegrityError("INSERT INTO b2b_requests", {}, Exception("FOREIGN KEY constraint failed"))

        with patch("djq.services.partnerships._create_in_transaction", side_effect=broken):
            with pytest.raises(IntegrityError):
                _invite(db_session, booking, dj_a, dj_b)

        assert get_active_b2b_request(db_session, booking.id) is None
        assert _request_count(db_session, booking) == 0
