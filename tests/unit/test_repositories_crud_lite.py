from __future__ import annotations

from decimal import Decimal

import pytest

from pilgrim_booking.db.enums import BookingStatus, PaymentStatus
from pilgrim_booking.db.repositories.agents import AgentRepository
from pilgrim_booking.db.repositories.amendments import AmendmentRepository
from pilgrim_booking.db.repositories.bookings import BookingRepository
from pilgrim_booking.db.repositories.documents import DocumentRepository
from pilgrim_booking.db.repositories.packages import PackageRepository
from pilgrim_booking.db.repositories.payments import PaymentRepository
from pilgrim_booking.utils.errors import NotFoundError


@pytest.mark.unit
def test_packages_create_list_and_dates(session, package, package_date):
    repo = PackageRepository(session)

    loaded = repo.get(package.id, include_dates=True)

    assert [d.id for d in loaded.dates] == [package_date.id]
    assert any(p.id == package.id for p in repo.list_active())
    assert repo.get_date(package_date.id).package_id == package.id
    with pytest.raises(NotFoundError):
        repo.get("missing")


@pytest.mark.unit
def test_bookings_create_with_reference_and_list(session, package):
    bookings = BookingRepository(session)

    first = bookings.create(user_id="user-1", package_id=package.id, full_name="Musa")
    second = bookings.create(user_id="user-2", package_id=package.id, reference_prefix="HAJ")

    assert first.status == BookingStatus.PENDING.value
    assert first.reference.startswith("UMR-")
    assert second.reference.startswith("HAJ-")
    assert first.reference != second.reference
    assert bookings.get_by_reference(first.reference).id == first.id
    assert [b.id for b in bookings.list_by_user("user-1")] == [first.id]
    assert {b.id for b in bookings.list_by_status("pending")} == {first.id, second.id}


@pytest.mark.unit
def test_bookings_reject_unknown_status(session, package):
    with pytest.raises(ValueError):
        BookingRepository(session).create(user_id="user-1", package_id=package.id, status="booked")


@pytest.mark.unit
def test_bookings_update_ignores_unknown_columns(session, package):
    bookings = BookingRepository(session)
    booking = bookings.create(user_id="user-1", package_id=package.id)

    updated = bookings.update(booking.id, departure_city="Abuja", not_a_column="x")

    assert updated.departure_city == "Abuja"
    assert updated.updated_at is not None
    assert not hasattr(updated, "not_a_column")


@pytest.mark.unit
def test_payments_pending_lookup_by_method(session, pending_booking):
    payments = PaymentRepository(session)
    cash = payments.create(booking_id=pending_booking.id, amount=Decimal("10.00"), method="cash")
    gateway = payments.create(booking_id=pending_booking.id, amount=Decimal("10.00"), method="paystack")

    assert payments.get_pending_for_booking(pending_booking.id, method="paystack").id == gateway.id
    assert payments.get_pending_for_booking(pending_booking.id, method="cash").id == cash.id

    payments.update(gateway.id, status=PaymentStatus.VERIFIED)
    assert payments.get_pending_for_booking(pending_booking.id, method="paystack") is None
    assert [p.id for p in payments.list_by_status("verified")] == [gateway.id]


@pytest.mark.unit
def test_payments_reject_unknown_method(session, pending_booking):
    with pytest.raises(ValueError):
        PaymentRepository(session).create(booking_id=pending_booking.id, amount=Decimal("1"), method="cheque")


@pytest.mark.unit
def test_agent_clients_are_scoped_to_their_agent(session, agent, agent_client):
    agents = AgentRepository(session)
    other = agents.create(user_id="agent-user-2", business_name="Safa Tours")

    assert agents.get_by_user_id("agent-user-1").id == agent.id
    assert agents.find_for_user(agent.id, "agent-user-1") is not None
    assert agents.find_for_user(agent.id, "agent-user-2") is None
    assert agents.find_client_of_agent(agent_client.id, agent.id) is not None
    assert agents.find_client_of_agent(agent_client.id, other.id) is None
    assert [c.id for c in agents.list_clients(agent.id)] == [agent_client.id]
    with pytest.raises(NotFoundError):
        agents.get_client("missing")


@pytest.mark.unit
def test_amendment_requests_need_changes(session, pending_booking):
    amendments = AmendmentRepository(session)

    with pytest.raises(ValueError):
        amendments.create(booking_id=pending_booking.id, user_id="user-1", requested_changes={})

    request = amendments.create(
        booking_id=pending_booking.id, user_id="user-1", requested_changes={"phone": "+2348000000009"}
    )
    assert request.status == "pending"
    assert amendments.count_by_booking(pending_booking.id) == 1
    assert [r.id for r in amendments.list_by_status()] == [request.id]


@pytest.mark.unit
def test_documents_by_path_and_user(session, pending_booking):
    documents = DocumentRepository(session)
    doc = documents.create(
        user_id="user-1",
        booking_id=pending_booking.id,
        storage_path="user-1/1_visa.pdf",
        file_name="visa.pdf",
        doc_type="visa",
    )

    assert documents.find_by_path("user-1/1_visa.pdf").id == doc.id
    assert [d.id for d in documents.list_by_user("user-1")] == [doc.id]

    documents.delete(doc.id)
    assert documents.list_by_booking(pending_booking.id) == []
