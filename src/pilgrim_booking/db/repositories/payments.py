from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select

from pilgrim_booking.db.enums import PaymentMethod, PaymentStatus
from pilgrim_booking.db.models import Payment, new_id
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value, utcnow
from pilgrim_booking.utils.errors import NotFoundError

# Older clients send "card" for the hosted gateway checkout.
_METHOD_ALIASES = {"card": PaymentMethod.PAYSTACK.value}


def _normalize_payment_status(status: PaymentStatus | str) -> str:
    return normalize_enum_value(PaymentStatus, status, "payment status")


def _normalize_payment_method(method: PaymentMethod | str) -> str:
    if isinstance(method, str) and not isinstance(method, PaymentMethod):
        method = _METHOD_ALIASES.get(method, method)
    return normalize_enum_value(PaymentMethod, method, "payment method")


class PaymentRepository(BaseRepository):
    def create(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        method: PaymentMethod | str,
        payment_id: str | None = None,
        status: PaymentStatus | str = PaymentStatus.PENDING,
        proof_of_payment_url: str | None = None,
    ) -> Payment:
        """
        What it does:
        - Inserts a Payment row for a booking.

        Behavior:
        - Validates method and status before writing.
        - Accepts a caller-chosen id so retries reuse the same row.
        """
        payment = Payment(
            id=payment_id or new_id(),
            booking_id=booking_id,
            amount=amount,
            method=_normalize_payment_method(method),
            status=_normalize_payment_status(status),
            proof_of_payment_url=proof_of_payment_url,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def get(self, payment_id: str) -> Payment:
        payment = self.session.get(Payment, payment_id)
        if not payment:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def find(self, payment_id: str) -> Payment | None:
        return self.session.get(Payment, payment_id)

    def list_by_booking(self, booking_id: str) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def get_pending_for_booking(
        self, booking_id: str, *, method: PaymentMethod | str | None = None
    ) -> Payment | None:
        """
        What it does:
        - Returns the most recent pending payment for a booking, optionally by method.

        Why it matters:
        - Gateway callbacks only know the booking id; this finds the row to settle.
        """
        stmt = select(Payment).where(
            Payment.booking_id == booking_id,
            Payment.status == PaymentStatus.PENDING.value,
        )
        if method is not None:
            stmt = stmt.where(Payment.method == _normalize_payment_method(method))
        stmt = stmt.order_by(Payment.created_at.desc())
        return self.session.scalars(stmt).first()

    def list_by_status(self, status: PaymentStatus | str, *, limit: int = 200) -> list[Payment]:
        status_value = _normalize_payment_status(status)
        stmt = (
            select(Payment)
            .where(Payment.status == status_value)
            .order_by(Payment.created_at.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def update(self, payment_id: str, **fields) -> Payment:
        """
        What it does:
        - Updates fields on a payment and stamps updated_at.

        Behavior:
        - 'status' and 'method' are validated/normalized when provided.
        - Terminal-status rules live in the lifecycle service.
        """
        payment = self.get(payment_id)

        if "status" in fields and fields["status"] is not None:
            fields["status"] = _normalize_payment_status(fields["status"])
        if "method" in fields and fields["method"] is not None:
            fields["method"] = _normalize_payment_method(fields["method"])

        for k, v in fields.items():
            if hasattr(payment, k):
                setattr(payment, k, v)
        payment.updated_at = utcnow()

        self.session.flush()
        return payment
