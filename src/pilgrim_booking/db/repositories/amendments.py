from __future__ import annotations

from sqlalchemy import select

from pilgrim_booking.db.enums import AmendmentStatus
from pilgrim_booking.db.models import AmendmentRequest
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value
from pilgrim_booking.utils.errors import NotFoundError


def _normalize_amendment_status(status: AmendmentStatus | str) -> str:
    return normalize_enum_value(AmendmentStatus, status, "amendment status")


class AmendmentRepository(BaseRepository):
    def create(self, *, booking_id: str, user_id: str, requested_changes: dict) -> AmendmentRequest:
        """
        What it does:
        - Inserts a pending amendment request for a booking.

        Behavior:
        - Refuses an empty change map with ValueError; the service is expected
          to raise its own domain error first, this is the last line.
        """
        if not requested_changes:
            raise ValueError("An amendment request needs at least one changed field")

        request = AmendmentRequest(
            booking_id=booking_id,
            user_id=user_id,
            requested_changes=dict(requested_changes),
            status=AmendmentStatus.PENDING.value,
        )
        self.session.add(request)
        self.session.flush()
        return request

    def get(self, amendment_id: str) -> AmendmentRequest:
        request = self.session.get(AmendmentRequest, amendment_id)
        if not request:
            raise NotFoundError(f"Amendment request {amendment_id} not found")
        return request

    def list_by_booking(self, booking_id: str) -> list[AmendmentRequest]:
        stmt = (
            select(AmendmentRequest)
            .where(AmendmentRequest.booking_id == booking_id)
            .order_by(AmendmentRequest.created_at.desc())
        )
        return list(self.session.scalars(stmt).all())

    def list_by_status(
        self, status: AmendmentStatus | str = AmendmentStatus.PENDING, *, limit: int = 200
    ) -> list[AmendmentRequest]:
        status_value = _normalize_amendment_status(status)
        stmt = (
            select(AmendmentRequest)
            .where(AmendmentRequest.status == status_value)
            .order_by(AmendmentRequest.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def count_by_booking(self, booking_id: str) -> int:
        return len(self.list_by_booking(booking_id))

    def update(self, amendment_id: str, **fields) -> AmendmentRequest:
        request = self.get(amendment_id)

        if "status" in fields and fields["status"] is not None:
            fields["status"] = _normalize_amendment_status(fields["status"])

        for k, v in fields.items():
            if hasattr(request, k):
                setattr(request, k, v)

        self.session.flush()
        return request
