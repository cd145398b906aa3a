from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum

from pilgrim_booking.db.enums import AmendmentStatus, BookingStatus
from pilgrim_booking.db.repositories.amendments import AmendmentRepository
from pilgrim_booking.db.repositories.base import utcnow
from pilgrim_booking.db.repositories.bookings import BookingRepository
from pilgrim_booking.db.repositories.documents import _normalize_document_type
from pilgrim_booking.services.collaborators import ActorContext
from pilgrim_booking.services.field_governance import FieldGovernanceSnapshot
from pilgrim_booking.services.lifecycle import BookingLifecycleService
from pilgrim_booking.services.validation import sanitize_booking_values, to_json_safe
from pilgrim_booking.utils.errors import (
    AmendmentEmptyError,
    AuthorizationError,
    BookingNotEditableError,
    InvalidTransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DOCUMENTS_KEY = "documents"

# What a pilgrim may still change on a confirmed booking, via an amendment request.
CONFIRMED_AMENDABLE_FIELDS = frozenset(
    {
        "phone",
        "address",
        "emergency_contact_name",
        "emergency_contact_phone",
        "emergency_contact_relationship",
        "package_id",
        "package_date_id",
        "departure_city",
        "visa_expiry_date",
        "visa_notes",
        "special_requests",
        DOCUMENTS_KEY,
    }
)

REVIEW_DECISIONS = frozenset({AmendmentStatus.APPROVED.value, AmendmentStatus.REJECTED.value})


def is_field_editable(field_key: str, booking_status: str, actor_is_privileged: bool) -> bool:
    if actor_is_privileged:
        return True
    if booking_status == BookingStatus.PENDING:
        return True
    if booking_status == BookingStatus.CONFIRMED:
        return field_key in CONFIRMED_AMENDABLE_FIELDS
    return False


class EditabilityPolicy:
    """Status rules plus the governance gate: a disabled field is closed to non-privileged actors."""

    def __init__(self, fields: FieldGovernanceSnapshot) -> None:
        self.fields = fields

    def is_editable(self, field_key: str, booking_status: str, actor_is_privileged: bool) -> bool:
        if not is_field_editable(field_key, booking_status, actor_is_privileged):
            return False
        if actor_is_privileged or field_key == DOCUMENTS_KEY:
            return True
        return self.fields.is_enabled(field_key)

    def filter_keys(
        self, keys: Iterable[str], booking_status: str, actor_is_privileged: bool
    ) -> list[str]:
        return [k for k in keys if self.is_editable(k, booking_status, actor_is_privileged)]


class EditKind(StrEnum):
    APPLIED = "applied"
    AMENDMENT_REQUESTED = "amendment_requested"


@dataclass(frozen=True)
class EditOutcome:
    kind: EditKind
    booking_id: str
    keys: tuple[str, ...]
    amendment_id: str | None = None


def _clean_documents(raw: object) -> list[dict[str, str]]:
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("documents must be a list", {DOCUMENTS_KEY: "Invalid value"})
    clean = []
    for item in raw:
        if not isinstance(item, Mapping) or not item.get("storage_path"):
            raise ValidationError("Each document needs a storage_path", {DOCUMENTS_KEY: "Invalid value"})
        try:
            doc_type = _normalize_document_type(item.get("doc_type") or "other")
        except ValueError as e:
            raise ValidationError(str(e), {DOCUMENTS_KEY: "Unknown document type"}) from e
        path = str(item["storage_path"])
        clean.append(
            {
                "storage_path": path,
                "file_name": str(item.get("file_name") or path.rsplit("/", 1)[-1]),
                "doc_type": doc_type,
            }
        )
    return clean


class BookingEditService:
    """
    What it does:
    - Routes an edit of an existing booking either to a direct write or to an amendment request.

    Why it matters:
    - Once a booking is confirmed the agency has committed travel arrangements;
      pilgrims may only ask for a small set of changes and an admin decides.

    Behavior:
    - privileged actor, or pending booking -> sanitized direct write of the dirty keys.
    - confirmed booking -> dirty keys filtered to the amendable set (and governance);
      empty -> AmendmentEmptyError with nothing written; else one AmendmentRequest.
    - any other status -> BookingNotEditableError.
    """

    def __init__(
        self,
        lifecycle: BookingLifecycleService,
        policy: EditabilityPolicy,
    ) -> None:
        self.lifecycle = lifecycle
        self.policy = policy

    def submit_change(
        self,
        *,
        session,
        booking_id: str,
        form_values: Mapping[str, object],
        dirty_keys: Iterable[str],
        actor: ActorContext,
    ) -> EditOutcome:
        booking = BookingRepository(session).get(booking_id)
        self.lifecycle.authorize_booking(session, booking, actor)

        dirty = [k for k in dict.fromkeys(dirty_keys) if k in form_values]
        privileged = actor.is_privileged

        if privileged or booking.status == BookingStatus.PENDING:
            keys = self.policy.filter_keys(dirty, booking.status, privileged)
            dropped = sorted(set(dirty) - set(keys))
            if dropped:
                logger.info("Ignoring non-editable fields booking=%s keys=%s", booking_id, dropped)
            self._apply(session, booking_id, {k: form_values[k] for k in keys}, actor)
            return EditOutcome(kind=EditKind.APPLIED, booking_id=booking_id, keys=tuple(keys))

        if booking.status != BookingStatus.CONFIRMED:
            raise BookingNotEditableError(f"Booking {booking_id} is {booking.status} and cannot be changed")

        keys = self.policy.filter_keys(dirty, booking.status, privileged)
        if not keys:
            raise AmendmentEmptyError(
                "None of the changed fields can be amended on a confirmed booking"
            )

        changes = {k: form_values[k] for k in keys}
        documents = changes.pop(DOCUMENTS_KEY, None)
        requested = to_json_safe(sanitize_booking_values(changes))
        if documents is not None:
            requested[DOCUMENTS_KEY] = self._owned_documents(documents, booking, actor)

        amendment = AmendmentRepository(session).create(
            booking_id=booking_id, user_id=actor.user_id, requested_changes=requested
        )
        logger.info(
            "Amendment requested id=%s booking=%s keys=%s", amendment.id, booking_id, sorted(requested)
        )
        return EditOutcome(
            kind=EditKind.AMENDMENT_REQUESTED,
            booking_id=booking_id,
            keys=tuple(sorted(requested)),
            amendment_id=amendment.id,
        )

    def _owned_documents(self, raw: object, booking, actor: ActorContext) -> list[dict[str, str]]:
        documents = _clean_documents(raw)
        for doc in documents:
            self.lifecycle.authorize_document_path(booking, doc["storage_path"], actor)
        return documents

    def _apply(self, session, booking_id: str, changes: Mapping[str, object], actor: ActorContext) -> None:
        changes = dict(changes)
        documents = changes.pop(DOCUMENTS_KEY, None)
        cleaned_docs = _clean_documents(documents) if documents is not None else []

        if changes:
            self.lifecycle.create_or_update_draft_booking(
                session=session, fields=changes, actor=actor, booking_id=booking_id
            )
        for doc in cleaned_docs:
            self.lifecycle.record_document(session=session, booking_id=booking_id, actor=actor, **doc)

    def review_amendment(
        self,
        *,
        session,
        amendment_id: str,
        decision: AmendmentStatus | str,
        actor: ActorContext,
        notes: str | None = None,
    ):
        """
        What it does:
        - Records an admin decision on a pending amendment request.

        Behavior:
        - approved: the stored changes are written to the booking, documents become Document rows.
        - rejected: the booking is untouched.
        - Only pending requests can be reviewed; the booking must still be pending or confirmed.
        """
        if not actor.is_privileged:
            raise AuthorizationError("Only administrators may review amendment requests")
        decision_value = str(decision)
        if decision_value not in REVIEW_DECISIONS:
            raise ValidationError(
                f"Decision must be one of {sorted(REVIEW_DECISIONS)}", {"decision": "Invalid decision"}
            )

        amendments = AmendmentRepository(session)
        request = amendments.get(amendment_id)
        if request.status != AmendmentStatus.PENDING:
            raise InvalidTransitionError("amendment", request.status, decision_value)

        if decision_value == AmendmentStatus.APPROVED:
            booking = BookingRepository(session).get(request.booking_id)
            if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
                raise BookingNotEditableError(f"Booking {booking.id} is {booking.status}")
            self._apply(session, booking.id, request.requested_changes or {}, actor)

        request = amendments.update(
            amendment_id,
            status=decision_value,
            admin_notes=notes,
            reviewed_by=actor.user_id,
            reviewed_at=utcnow(),
        )
        logger.info("Amendment %s id=%s by=%s", decision_value, amendment_id, actor.user_id)
        return request
