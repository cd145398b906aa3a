from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from pilgrim_booking.db.enums import BookingStatus, VisaStatus
from pilgrim_booking.db.models import Booking, new_id
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value, utcnow
from pilgrim_booking.utils.errors import ConflictError, NotFoundError

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def _normalize_booking_status(status: BookingStatus | str) -> str:
    return normalize_enum_value(BookingStatus, status, "booking status")


def _normalize_visa_status(status: VisaStatus | str) -> str:
    return normalize_enum_value(VisaStatus, status, "visa status")


def make_booking_reference(prefix: str = "UMR") -> str:
    return f"{prefix}-" + "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(6))


class BookingRepository(BaseRepository):
    def create(
        self,
        *,
        user_id: str,
        package_id: str,
        booking_id: str | None = None,
        status: BookingStatus | str = BookingStatus.PENDING,
        reference_prefix: str = "UMR",
        **fields,
    ) -> Booking:
        """
        What it does:
        - Inserts a Booking row with a unique human-readable reference.

        Why it matters:
        - Callers may choose the id, which lets a partially failed submission be
          retried with the same id instead of creating a duplicate.

        Behavior:
        - Validates status before writing.
        - Allocates a reference, retrying on collision a bounded number of times.
        - Ignores unknown field names (hasattr guard), flushes so defaults are populated.
        """
        reference = self._allocate_reference(reference_prefix)

        booking = Booking(
            id=booking_id or new_id(),
            user_id=user_id,
            package_id=package_id,
            status=_normalize_booking_status(status),
            visa_status=VisaStatus.PENDING.value,
            reference=reference,
        )
        for k, v in fields.items():
            if hasattr(booking, k):
                setattr(booking, k, v)

        self.session.add(booking)
        self.session.flush()
        return booking

    def _allocate_reference(self, prefix: str) -> str:
        for _ in range(10):
            candidate = make_booking_reference(prefix)
            if self.get_by_reference(candidate) is None:
                return candidate
        raise ConflictError("Could not allocate a unique booking reference")

    def get(
        self,
        booking_id: str,
        *,
        include_payments: bool = False,
        include_documents: bool = False,
    ) -> Booking:
        """
        What it does:
        - Fetches one Booking by id.

        Behavior:
        - Optional eager loads to avoid lazy-load queries after the session closes.
        - Raises NotFoundError if missing.
        """
        if not include_payments and not include_documents:
            booking = self.session.get(Booking, booking_id)
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            return booking

        opts = []
        if include_payments:
            opts.append(selectinload(Booking.payments))
        if include_documents:
            opts.append(selectinload(Booking.documents))

        stmt = select(Booking).where(Booking.id == booking_id).options(*opts)
        booking = self.session.scalars(stmt).first()
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    def find(self, booking_id: str) -> Booking | None:
        return self.session.get(Booking, booking_id)

    def get_by_reference(self, reference: str) -> Booking | None:
        stmt = select(Booking).where(Booking.reference == reference)
        return self.session.scalars(stmt).first()

    def list(self, *, limit: int = 100, offset: int = 0) -> list[Booking]:
        stmt = select(Booking).order_by(Booking.created_at.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt).all())

    def list_by_user(self, user_id: str, *, limit: int = 100, offset: int = 0) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def list_by_agent(self, agent_id: str, *, limit: int = 100, offset: int = 0) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.agent_id == agent_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def list_by_status(
        self, status: BookingStatus | str, *, limit: int = 100, offset: int = 0
    ) -> list[Booking]:
        """
        What it does:
        - Lists bookings filtered by status.

        Behavior:
        - Normalizes/validates status before building the query.
        """
        status_value = _normalize_booking_status(status)
        stmt = (
            select(Booking)
            .where(Booking.status == status_value)
            .order_by(Booking.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt).all())

    def update(self, booking_id: str, **fields) -> Booking:
        """
        What it does:
        - Updates fields on a booking and stamps updated_at.

        Behavior:
        - 'status' and 'visa_status' are validated/normalized when provided.
        - Transition rules live in the lifecycle service, not here.
        - Ignores unknown field names safely (hasattr guard).
        """
        booking = self.get(booking_id)

        if "status" in fields and fields["status"] is not None:
            fields["status"] = _normalize_booking_status(fields["status"])
        if "visa_status" in fields and fields["visa_status"] is not None:
            fields["visa_status"] = _normalize_visa_status(fields["visa_status"])

        for k, v in fields.items():
            if hasattr(booking, k):
                setattr(booking, k, v)
        booking.updated_at = utcnow()

        self.session.flush()
        return booking

    def delete(self, booking_id: str) -> None:
        booking = self.get(booking_id)
        self.session.delete(booking)
        self.session.flush()
