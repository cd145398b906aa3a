from __future__ import annotations

import itertools

import pytest

from pilgrim_booking.db.enums import BookingStatus
from pilgrim_booking.db.repositories.bookings import BookingRepository, _normalize_booking_status
from pilgrim_booking.services.lifecycle import BOOKING_TRANSITIONS, validate_booking_transition
from pilgrim_booking.utils.errors import InvalidTransitionError, ValidationError

ALLOWED = {
    ("pending", "confirmed"),
    ("pending", "cancelled"),
    ("confirmed", "completed"),
    ("confirmed", "cancelled"),
}


@pytest.mark.unit
def test_normalize_booking_status_accepts_enum_and_string():
    assert _normalize_booking_status(BookingStatus.CONFIRMED) == "confirmed"
    assert _normalize_booking_status("cancelled") == "cancelled"


@pytest.mark.unit
def test_normalize_booking_status_rejects_typos():
    with pytest.raises(ValueError):
        _normalize_booking_status("Confirmed")


@pytest.mark.unit
@pytest.mark.parametrize(
    "current,target", list(itertools.product([s.value for s in BookingStatus], repeat=2))
)
def test_transition_table_reachability(current, target):
    if (current, target) in ALLOWED:
        validate_booking_transition(current, target)
    else:
        with pytest.raises(InvalidTransitionError):
            validate_booking_transition(current, target)


@pytest.mark.unit
def test_terminal_statuses_have_no_exits():
    assert BOOKING_TRANSITIONS["cancelled"] == frozenset()
    assert BOOKING_TRANSITIONS["completed"] == frozenset()


@pytest.mark.unit
def test_set_booking_status_walks_forward(session, lifecycle, pending_booking):
    lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="confirmed")
    booking = lifecycle.set_booking_status(
        session=session, booking_id=pending_booking.id, new_status=BookingStatus.COMPLETED
    )
    assert booking.status == "completed"


@pytest.mark.unit
def test_cancelled_booking_cannot_complete(session, lifecycle, pending_booking):
    lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="cancelled")

    with pytest.raises(InvalidTransitionError) as exc:
        lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="completed")

    assert exc.value.current == "cancelled"
    assert exc.value.target == "completed"
    assert BookingRepository(session).get(pending_booking.id).status == "cancelled"


@pytest.mark.unit
def test_unknown_status_is_a_validation_error(session, lifecycle, pending_booking):
    with pytest.raises(ValidationError):
        lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="archived")
