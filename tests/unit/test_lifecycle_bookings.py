from __future__ import annotations

from datetime import date

import pytest

from pilgrim_booking.db.enums import UserRole
from pilgrim_booking.db.repositories.agents import AgentRepository
from pilgrim_booking.db.repositories.bookings import BookingRepository
from pilgrim_booking.db.repositories.documents import DocumentRepository
from pilgrim_booking.db.repositories.packages import PackageRepository
from pilgrim_booking.services.collaborators import ActorContext
from pilgrim_booking.services.lifecycle import BookingLifecycleService
from pilgrim_booking.utils.errors import (
    AuthorizationError,
    BookingNotEditableError,
    NotFoundError,
    ValidationError,
)


@pytest.mark.unit
def test_new_booking_starts_pending_with_reference(pending_booking, user_actor):
    assert pending_booking.status == "pending"
    assert pending_booking.visa_status == "pending"
    assert pending_booking.user_id == user_actor.user_id
    assert pending_booking.reference.startswith("UMR-")
    assert len(pending_booking.reference) == len("UMR-") + 6
    assert pending_booking.passport_expiry == date(2028, 1, 31)


@pytest.mark.unit
def test_reference_prefix_is_configurable(session, receipts, user_actor, package):
    service = BookingLifecycleService(receipts=receipts, reference_prefix="HAJ")
    booking_id = service.create_or_update_draft_booking(
        session=session, fields={"package_id": package.id}, actor=user_actor
    )
    assert BookingRepository(session).get(booking_id).reference.startswith("HAJ-")


@pytest.mark.unit
def test_client_chosen_id_makes_create_idempotent(session, lifecycle, user_actor, package):
    first = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"package_id": package.id, "full_name": "Musa"},
        actor=user_actor,
        booking_id="11111111-1111-1111-1111-111111111111",
    )
    second = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"full_name": "Musa Ibrahim"},
        actor=user_actor,
        booking_id="11111111-1111-1111-1111-111111111111",
    )

    assert first == second
    rows = BookingRepository(session).list_by_user(user_actor.user_id)
    assert len(rows) == 1
    assert rows[0].full_name == "Musa Ibrahim"


@pytest.mark.unit
def test_status_is_not_writable_through_fields(session, lifecycle, pending_booking, user_actor):
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"status": "confirmed"},
            actor=user_actor,
            booking_id=pending_booking.id,
        )
    assert "status" in exc.value.errors
    assert BookingRepository(session).get(pending_booking.id).status == "pending"


@pytest.mark.unit
def test_package_is_required_on_create(session, lifecycle, user_actor):
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_or_update_draft_booking(
            session=session, fields={"full_name": "No Package"}, actor=user_actor
        )
    assert "package_id" in exc.value.errors


@pytest.mark.unit
def test_unknown_package_is_not_found(session, lifecycle, user_actor):
    with pytest.raises(NotFoundError):
        lifecycle.create_or_update_draft_booking(
            session=session, fields={"package_id": "missing"}, actor=user_actor
        )


@pytest.mark.unit
def test_travel_date_must_belong_to_package(session, lifecycle, user_actor, package, other_package):
    foreign_date = PackageRepository(session).add_date(other_package.id, outbound=date(2027, 4, 20))

    with pytest.raises(ValidationError) as exc:
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id, "package_date_id": foreign_date.id},
            actor=user_actor,
        )
    assert "package_date_id" in exc.value.errors
    assert BookingRepository(session).list_by_user(user_actor.user_id) == []


@pytest.mark.unit
def test_invalid_passport_format_is_rejected_before_write(session, lifecycle, user_actor, package):
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id, "passport_number": "a12"},
            actor=user_actor,
        )
    assert "passport_number" in exc.value.errors
    assert BookingRepository(session).list_by_user(user_actor.user_id) == []


@pytest.mark.unit
def test_other_user_cannot_touch_booking(session, lifecycle, pending_booking, other_user_actor):
    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"phone": "+2348999999999"},
            actor=other_user_actor,
            booking_id=pending_booking.id,
        )
    assert BookingRepository(session).get(pending_booking.id).phone == "+2348000000001"


@pytest.mark.unit
def test_owner_cannot_write_confirmed_booking_directly(session, lifecycle, pending_booking, user_actor):
    lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="confirmed")

    with pytest.raises(BookingNotEditableError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"phone": "+2348999999999"},
            actor=user_actor,
            booking_id=pending_booking.id,
        )


@pytest.mark.unit
def test_admin_can_write_confirmed_booking(session, lifecycle, pending_booking, admin_actor):
    lifecycle.set_booking_status(session=session, booking_id=pending_booking.id, new_status="confirmed")

    lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"full_name": "Musa A. Ibrahim"},
        actor=admin_actor,
        booking_id=pending_booking.id,
    )

    booking = BookingRepository(session).get(pending_booking.id)
    assert booking.full_name == "Musa A. Ibrahim"
    assert booking.status == "confirmed"


@pytest.mark.unit
def test_admin_registers_booking_for_another_user(session, lifecycle, admin_actor, package):
    booking_id = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"package_id": package.id, "full_name": "Walk-in Pilgrim"},
        actor=admin_actor,
        owner_user_id="user-77",
    )
    assert BookingRepository(session).get(booking_id).user_id == "user-77"


@pytest.mark.unit
def test_user_cannot_register_for_another_user(session, lifecycle, user_actor, package):
    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id},
            actor=user_actor,
            owner_user_id="user-77",
        )


@pytest.mark.unit
def test_custom_data_is_merged_on_update(session, lifecycle, user_actor, package):
    booking_id = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"package_id": package.id, "custom_data": {"blood_group": "O+"}},
        actor=user_actor,
    )
    lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"custom_data": {"shirt_size": "L", "empty": "  "}},
        actor=user_actor,
        booking_id=booking_id,
    )
    assert BookingRepository(session).get(booking_id).custom_data == {
        "blood_group": "O+",
        "shirt_size": "L",
    }


# --- Agent-assisted bookings ------------------------------------------------------


@pytest.mark.unit
def test_agent_books_for_own_client(session, lifecycle, agent_actor, agent, agent_client, package):
    booking_id = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={"package_id": package.id, "agent_client_id": agent_client.id, "full_name": "Halima Sani"},
        actor=agent_actor,
    )

    booking = BookingRepository(session).get(booking_id)
    assert booking.agent_id == agent.id
    assert booking.agent_client_id == agent_client.id
    assert BookingRepository(session).list_by_agent(agent.id)[0].id == booking_id


@pytest.mark.unit
def test_agent_needs_a_client(session, lifecycle, agent_actor, package):
    with pytest.raises(ValidationError) as exc:
        lifecycle.create_or_update_draft_booking(
            session=session, fields={"package_id": package.id}, actor=agent_actor
        )
    assert "agent_client_id" in exc.value.errors


@pytest.mark.unit
def test_agent_cannot_book_another_agents_client(session, lifecycle, agent_actor, package):
    agents = AgentRepository(session)
    rival = agents.create(user_id="agent-user-2", business_name="Rival Tours")
    rival_client = agents.create_client(agent_id=rival.id, full_name="Someone Else")

    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id, "agent_client_id": rival_client.id},
            actor=agent_actor,
        )
    assert BookingRepository(session).list_by_agent(agent_actor.agent_id) == []


@pytest.mark.unit
def test_forged_agent_id_fails_verification(session, lifecycle, agent, agent_client, package):
    # The user id does not own the agent row named in the context.
    forged = ActorContext(user_id="user-1", role=UserRole.AGENT, agent_id=agent.id)

    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id, "agent_client_id": agent_client.id},
            actor=forged,
        )


@pytest.mark.unit
def test_plain_user_cannot_name_an_agent_client(session, lifecycle, user_actor, agent_client, package):
    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"package_id": package.id, "agent_client_id": agent_client.id},
            actor=user_actor,
        )


@pytest.mark.unit
def test_agent_cannot_edit_users_own_booking(session, lifecycle, pending_booking, agent_actor):
    with pytest.raises(AuthorizationError):
        lifecycle.create_or_update_draft_booking(
            session=session,
            fields={"phone": "+2348111111111"},
            actor=agent_actor,
            booking_id=pending_booking.id,
        )


@pytest.mark.unit
def test_visa_status_is_admin_only_and_independent(session, lifecycle, pending_booking, user_actor, admin_actor):
    with pytest.raises(AuthorizationError):
        lifecycle.set_visa_status(
            session=session, booking_id=pending_booking.id, visa_status="approved", actor=user_actor
        )

    booking = lifecycle.set_visa_status(
        session=session,
        booking_id=pending_booking.id,
        visa_status="approved",
        actor=admin_actor,
        expiry_date="2027-06-30",
        notes="Issued by embassy",
    )

    assert booking.visa_status == "approved"
    assert booking.visa_expiry_date == date(2027, 6, 30)
    assert booking.visa_notes == "Issued by embassy"
    assert booking.status == "pending"


@pytest.mark.unit
def test_record_document_needs_existing_booking(session, lifecycle, user_actor):
    with pytest.raises(NotFoundError):
        lifecycle.record_document(
            session=session,
            booking_id="missing",
            storage_path="user-1/1_passport.jpg",
            file_name="passport.jpg",
            doc_type="passport",
            actor=user_actor,
        )


@pytest.mark.unit
def test_record_document_is_idempotent_per_path(session, lifecycle, pending_booking, user_actor):
    kwargs = dict(
        session=session,
        booking_id=pending_booking.id,
        storage_path="user-1/1_passport.jpg",
        file_name="passport.jpg",
        doc_type="passport",
        actor=user_actor,
    )
    first = lifecycle.record_document(**kwargs)
    second = lifecycle.record_document(**kwargs)

    assert first == second
    docs = DocumentRepository(session).list_by_booking(pending_booking.id)
    assert [d.doc_type for d in docs] == ["passport"]


@pytest.mark.unit
@pytest.mark.parametrize(
    "storage_path",
    ["someone-else/1700000000000_passport.jpg", "user-1/../someone-else/1_passport.jpg", "user-10/1_passport.jpg"],
)
def test_record_document_refuses_objects_outside_owner_prefix(
    session, lifecycle, pending_booking, user_actor, storage_path
):
    with pytest.raises(AuthorizationError):
        lifecycle.record_document(
            session=session,
            booking_id=pending_booking.id,
            storage_path=storage_path,
            file_name="passport.jpg",
            doc_type="passport",
            actor=user_actor,
        )

    assert DocumentRepository(session).list_by_booking(pending_booking.id) == []


@pytest.mark.unit
def test_admin_may_record_own_upload_for_a_pilgrim(session, lifecycle, pending_booking, admin_actor):
    document_id = lifecycle.record_document(
        session=session,
        booking_id=pending_booking.id,
        storage_path="admin-1/1_passport.jpg",
        file_name="passport.jpg",
        doc_type="passport",
        actor=admin_actor,
    )

    (doc,) = DocumentRepository(session).list_by_booking(pending_booking.id)
    assert doc.id == document_id
    assert doc.user_id == pending_booking.user_id
