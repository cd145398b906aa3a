from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation

from pilgrim_booking.db.enums import (
    BookingStatus,
    DocumentType,
    PaymentMethod,
    PaymentStatus,
    UserRole,
    VisaStatus,
)
from pilgrim_booking.db.models import Agent, Booking, Payment
from pilgrim_booking.db.repositories.agents import AgentRepository
from pilgrim_booking.db.repositories.base import utcnow
from pilgrim_booking.db.repositories.bookings import (
    BookingRepository,
    _normalize_booking_status,
    _normalize_visa_status,
)
from pilgrim_booking.db.repositories.documents import DocumentRepository, _normalize_document_type
from pilgrim_booking.db.repositories.packages import PackageRepository
from pilgrim_booking.db.repositories.payments import PaymentRepository, _normalize_payment_method
from pilgrim_booking.services.collaborators import (
    ActorContext,
    LoggingReceiptDispatcher,
    PaymentGateway,
    ReceiptDispatcher,
)
from pilgrim_booking.services.pricing import coerce_amount, wholesale_price
from pilgrim_booking.services.validation import (
    gender_error,
    passport_number_error,
    sanitize_booking_values,
)
from pilgrim_booking.utils.errors import (
    AuthorizationError,
    BookingNotEditableError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

BOOKING_TRANSITIONS: Mapping[str, frozenset[str]] = {
    BookingStatus.PENDING.value: frozenset({BookingStatus.CONFIRMED.value, BookingStatus.CANCELLED.value}),
    BookingStatus.CONFIRMED.value: frozenset({BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value}),
    BookingStatus.CANCELLED.value: frozenset(),
    BookingStatus.COMPLETED.value: frozenset(),
}

TERMINAL_PAYMENT_STATUSES = frozenset(
    {PaymentStatus.VERIFIED.value, PaymentStatus.REJECTED.value, PaymentStatus.REFUNDED.value}
)

VERIFICATION_OUTCOMES = frozenset({PaymentStatus.VERIFIED.value, PaymentStatus.REJECTED.value})

GATEWAY_VERIFIER = "gateway"


def validate_booking_transition(current: str, target: str) -> None:
    """Raises InvalidTransitionError unless current -> target is in BOOKING_TRANSITIONS."""
    if target not in BOOKING_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError("booking", current, target)


def _parse_client_amount(value: object) -> Decimal:
    """Client-asserted amounts are rejected, not coerced, when they are not a finite number >= 0."""
    if isinstance(value, bool):
        raise ValidationError("Amount must be a number", {"amount": "Must be a number"})
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number", {"amount": "Must be a number"}) from None
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Amount must be zero or more", {"amount": "Must be zero or more"})
    return amount.quantize(Decimal("0.01"))


class BookingLifecycleService:
    """
    What it does:
    - Owns every write to Booking, Payment and Document rows and the status rules between them.

    Why it matters:
    - Ownership checks, the booking transition table and the payment -> booking
      cascade live in one place, whichever entry point (wizard, agent, admin) calls in.

    Behavior:
    - All checks run before the first attribute is written, so a failed call changes nothing.
    - Ids are idempotency keys: re-invoking with the same booking/payment id resumes
      a partially completed flow instead of duplicating rows.
    - Flushes only; commit/rollback are handled by the caller's session context manager.
    """

    def __init__(
        self,
        *,
        receipts: ReceiptDispatcher | None = None,
        reference_prefix: str = "UMR",
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self.receipts = receipts or LoggingReceiptDispatcher()
        self.reference_prefix = reference_prefix
        self.now = now

    # --- Authorization -----------------------------------------------------------

    def _verified_agent(self, session, actor: ActorContext) -> Agent:
        if not actor.agent_id:
            raise AuthorizationError("Agent profile verification failed")
        agent = AgentRepository(session).find_for_user(actor.agent_id, actor.user_id)
        if agent is None:
            raise AuthorizationError("Agent profile verification failed")
        return agent

    def authorize_booking(self, session, booking: Booking, actor: ActorContext) -> None:
        """
        What it does:
        - Confirms the actor may act on an existing booking.

        Behavior:
        - Admins always pass.
        - Agents pass only for bookings recorded against their re-verified agent row.
        - Users pass only for bookings they own.
        """
        if actor.is_privileged:
            return
        if actor.role == UserRole.AGENT:
            agent = self._verified_agent(session, actor)
            if booking.agent_id != agent.id:
                raise AuthorizationError("Booking is not managed by this agent")
            return
        if booking.user_id != actor.user_id:
            raise AuthorizationError("Booking does not belong to this user")

    def authorize_document_path(self, booking: Booking, storage_path: str, actor: ActorContext) -> None:
        """
        What it does:
        - Confirms an uploaded object belongs to the booking being documented.

        Behavior:
        - The path must sit under the booking owner's prefix, or under the actor's
          own prefix for files an agent or admin uploaded on the owner's behalf.
        - ".." segments are refused so a prefix cannot be escaped.
        """
        parts = storage_path.split("/")
        if ".." in parts:
            raise AuthorizationError("Document path is not allowed")
        allowed = {f"{booking.user_id}/", f"{actor.user_id}/"}
        if not any(storage_path.startswith(prefix) for prefix in allowed):
            logger.warning(
                "Refused document path=%s booking=%s actor=%s", storage_path, booking.id, actor.user_id
            )
            raise AuthorizationError("Document was not uploaded for this booking")

    # --- Bookings ----------------------------------------------------------------

    def create_or_update_draft_booking(
        self,
        *,
        session,
        fields: Mapping[str, object],
        actor: ActorContext,
        booking_id: str | None = None,
        owner_user_id: str | None = None,
    ) -> str:
        """
        What it does:
        - Upserts a Booking; new rows start as pending, existing rows keep their status.

        Behavior:
        - `fields` are sanitized; status/ownership columns are not writable here.
        - Non-admin writes to a booking that is no longer pending raise
          BookingNotEditableError (confirmed bookings go through amendments).
        - Agents must name an agent_client_id that belongs to their verified agent row.
        - `owner_user_id` (admin direct registration) is only honored for admins.
        """
        clean = sanitize_booking_values(fields)
        self._check_formats(clean)

        bookings = BookingRepository(session)
        existing = bookings.find(booking_id) if booking_id else None

        if owner_user_id is not None and owner_user_id != actor.user_id and not actor.is_privileged:
            raise AuthorizationError("Only administrators may register bookings for another user")

        ownership: dict[str, object] = {}
        if existing is not None:
            self.authorize_booking(session, existing, actor)
            if existing.status != BookingStatus.PENDING.value and not actor.is_privileged:
                raise BookingNotEditableError(
                    f"Booking {existing.id} is {existing.status}; submit an amendment request instead"
                )

        if actor.role == UserRole.AGENT and not actor.is_privileged:
            agent = self._verified_agent(session, actor)
            client_id = clean.get("agent_client_id") or (existing.agent_client_id if existing else None)
            if not client_id:
                raise ValidationError("Agent bookings need a client", {"agent_client_id": "Required"})
            if AgentRepository(session).find_client_of_agent(str(client_id), agent.id) is None:
                raise AuthorizationError("Client does not belong to this agent")
            ownership["agent_id"] = agent.id
        elif clean.get("agent_client_id"):
            if not actor.is_privileged:
                raise AuthorizationError("Only agents may book on behalf of a client")
            client = AgentRepository(session).get_client(str(clean["agent_client_id"]))
            ownership["agent_id"] = client.agent_id

        package_id = clean.get("package_id") or (existing.package_id if existing else None)
        if not package_id:
            raise ValidationError("A package is required", {"package_id": "Required"})
        self._check_package(session, str(package_id), clean.get("package_date_id"))

        if existing is not None and "custom_data" in clean:
            merged = dict(existing.custom_data or {})
            merged.update(clean["custom_data"] or {})
            clean["custom_data"] = merged

        if existing is None:
            booking = bookings.create(
                booking_id=booking_id,
                user_id=owner_user_id or actor.user_id,
                reference_prefix=self.reference_prefix,
                **{**clean, **ownership, "package_id": package_id},
            )
            logger.info(
                "Booking created id=%s reference=%s actor=%s role=%s",
                booking.id,
                booking.reference,
                actor.user_id,
                actor.role,
            )
        else:
            booking = bookings.update(existing.id, **clean, **ownership)
            logger.info(
                "Booking updated id=%s fields=%s actor=%s", booking.id, sorted(clean), actor.user_id
            )
        return booking.id

    def _check_formats(self, clean: Mapping[str, object]) -> None:
        errors = {}
        if clean.get("passport_number") is not None:
            msg = passport_number_error(clean["passport_number"])
            if msg:
                errors["passport_number"] = msg
        if clean.get("gender") is not None:
            msg = gender_error(clean["gender"])
            if msg:
                errors["gender"] = msg
        if errors:
            raise ValidationError("Invalid booking values", errors)

    def _check_package(self, session, package_id: str, package_date_id: object) -> None:
        packages = PackageRepository(session)
        packages.get(package_id)
        if package_date_id:
            package_date = packages.get_date(str(package_date_id))
            if package_date.package_id != package_id:
                raise ValidationError(
                    "Travel date does not belong to the selected package",
                    {"package_date_id": "Not offered for this package"},
                )

    def set_booking_status(self, *, session, booking_id: str, new_status: BookingStatus | str) -> Booking:
        """
        What it does:
        - Moves a booking along the transition table.

        Behavior:
        - pending -> confirmed|cancelled, confirmed -> completed|cancelled.
        - cancelled and completed are terminal; anything else raises InvalidTransitionError.
        """
        try:
            target = _normalize_booking_status(new_status)
        except ValueError as e:
            raise ValidationError(str(e), {"status": "Unknown status"}) from e

        bookings = BookingRepository(session)
        booking = bookings.get(booking_id)
        validate_booking_transition(booking.status, target)

        previous = booking.status
        booking = bookings.update(booking_id, status=target)
        logger.info("Booking status id=%s %s -> %s", booking_id, previous, target)
        return booking

    def set_visa_status(
        self,
        *,
        session,
        booking_id: str,
        visa_status: VisaStatus | str,
        actor: ActorContext,
        expiry_date=None,
        notes: str | None = None,
    ) -> Booking:
        """Admin-only; the visa sub-status moves independently of the booking status."""
        if not actor.is_privileged:
            raise AuthorizationError("Only administrators may update visa status")
        try:
            value = _normalize_visa_status(visa_status)
        except ValueError as e:
            raise ValidationError(str(e), {"visa_status": "Unknown status"}) from e

        changes: dict[str, object] = {"visa_status": value}
        if expiry_date is not None:
            changes.update(sanitize_booking_values({"visa_expiry_date": expiry_date}))
        if notes is not None:
            changes["visa_notes"] = notes.strip() or None

        booking = BookingRepository(session).update(booking_id, **changes)
        logger.info("Visa status id=%s -> %s by=%s", booking_id, value, actor.user_id)
        return booking

    # --- Payments ----------------------------------------------------------------

    def quote_booking_amount(self, session, booking: Booking) -> Decimal:
        """
        What it does:
        - Returns the amount a booking must be charged.

        Behavior:
        - Agent bookings: wholesale price from the agent's commission config,
          falling back to the package's flat agent discount.
        - Everyone else: the package retail price.
        """
        package = PackageRepository(session).get(booking.package_id)
        if booking.agent_id:
            agent = AgentRepository(session).get(booking.agent_id)
            return wholesale_price(
                package.price,
                commission_type=agent.commission_type,
                rate=agent.commission_rate,
                package_agent_discount=package.agent_discount,
            )
        return coerce_amount(package.price).quantize(Decimal("0.01"))

    def attach_payment(
        self,
        *,
        session,
        booking_id: str,
        method: PaymentMethod | str,
        actor: ActorContext,
        amount: object = None,
        proof_ref: str | None = None,
        payment_id: str | None = None,
    ) -> str:
        """
        What it does:
        - Upserts a pending Payment for a booking.

        Behavior:
        - Gateway payments always carry the server-computed amount; any client amount is ignored.
        - Cash/bank-transfer payments accept a client-asserted amount, else the computed one.
        - Re-using a payment id updates that row, but only while it is still pending.
        """
        try:
            method_value = _normalize_payment_method(method)
        except ValueError as e:
            raise ValidationError(str(e), {"method": "Unknown payment method"}) from e

        bookings = BookingRepository(session)
        payments = PaymentRepository(session)

        booking = bookings.get(booking_id)
        self.authorize_booking(session, booking, actor)
        if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value):
            raise BookingNotEditableError(f"Booking {booking_id} is {booking.status}")

        authoritative = self.quote_booking_amount(session, booking)
        if method_value == PaymentMethod.PAYSTACK.value or amount is None:
            final_amount = authoritative
        else:
            final_amount = _parse_client_amount(amount)

        existing = payments.find(payment_id) if payment_id else None
        if existing is not None:
            if existing.booking_id != booking.id:
                raise ConflictError(f"Payment {payment_id} belongs to another booking")
            if existing.status != PaymentStatus.PENDING.value:
                raise InvalidTransitionError("payment", existing.status, PaymentStatus.PENDING.value)
            payment = payments.update(
                existing.id,
                amount=final_amount,
                method=method_value,
                proof_of_payment_url=proof_ref or existing.proof_of_payment_url,
            )
        else:
            payment = payments.create(
                payment_id=payment_id,
                booking_id=booking.id,
                amount=final_amount,
                method=method_value,
                proof_of_payment_url=proof_ref,
            )

        logger.info(
            "Payment upserted id=%s booking=%s method=%s amount=%s",
            payment.id,
            booking.id,
            method_value,
            final_amount,
        )
        return payment.id

    def verify_payment(
        self,
        *,
        session,
        payment_id: str,
        outcome: PaymentStatus | str,
        actor: ActorContext,
    ) -> Payment:
        """
        What it does:
        - Records an admin's verdict on a pending payment.

        Behavior:
        - verified: booking moves pending -> confirmed, then a receipt is sent best-effort.
        - rejected: booking is left as it is so the pilgrim can pay again.
        - Terminal payments and payments of cancelled bookings are refused before any write.
        """
        if not actor.is_privileged:
            raise AuthorizationError("Only administrators may verify payments")

        outcome_value = str(outcome)
        if outcome_value not in VERIFICATION_OUTCOMES:
            raise ValidationError(
                f"Outcome must be one of {sorted(VERIFICATION_OUTCOMES)}",
                {"outcome": "Invalid outcome"},
            )

        payment = PaymentRepository(session).get(payment_id)
        booking = BookingRepository(session).get(payment.booking_id)
        return self._settle(
            session, payment=payment, booking=booking, outcome=outcome_value, verifier=actor.user_id
        )

    def confirm_gateway_payment(
        self,
        *,
        session,
        booking_id: str,
        gateway_reference: str,
        gateway: PaymentGateway,
        actor: ActorContext | None = None,
    ) -> Payment:
        """
        What it does:
        - Settles the pending gateway payment once the gateway itself confirms the reference.

        Why it matters:
        - The payer's browser only says "done"; the money is real only when
          gateway.verify() reports it.

        Behavior:
        - When an actor is given, it must be allowed to see the booking.
        - The verification must report success, belong to this booking and cover
          the stored amount. Otherwise ValidationError and the payment stays pending.
        - A repeated callback for an already verified reference returns that payment.
        """
        payments = PaymentRepository(session)
        booking = BookingRepository(session).get(booking_id)
        if actor is not None:
            self.authorize_booking(session, booking, actor)

        payment = payments.get_pending_for_booking(booking_id, method=PaymentMethod.PAYSTACK)
        if payment is None:
            for candidate in payments.list_by_booking(booking_id):
                if (
                    candidate.gateway_reference == gateway_reference
                    and candidate.status == PaymentStatus.VERIFIED.value
                ):
                    return candidate
            raise NotFoundError(f"No pending gateway payment for booking {booking_id}")

        result = gateway.verify(gateway_reference)
        if not result.succeeded:
            logger.warning(
                "Gateway did not confirm reference=%s booking=%s status=%s",
                gateway_reference,
                booking_id,
                result.status,
            )
            raise ValidationError(
                "The payment gateway has not confirmed this payment",
                {"gateway_reference": f"Gateway status: {result.status}"},
            )
        if result.booking_id != booking_id:
            logger.warning(
                "Gateway reference=%s belongs to booking=%s, not %s",
                gateway_reference,
                result.booking_id,
                booking_id,
            )
            raise ValidationError(
                "Gateway reference does not belong to this booking",
                {"gateway_reference": "Reference was issued for another booking"},
            )

        paid = coerce_amount(result.amount)
        if paid < payment.amount:
            logger.warning(
                "Gateway amount mismatch booking=%s expected=%s paid=%s",
                booking_id,
                payment.amount,
                paid,
            )
            raise ValidationError(
                "Paid amount does not cover the booking amount",
                {"amount": f"Expected {payment.amount}, received {paid}"},
            )

        return self._settle(
            session,
            payment=payment,
            booking=booking,
            outcome=PaymentStatus.VERIFIED.value,
            verifier=GATEWAY_VERIFIER,
            gateway_reference=gateway_reference,
        )

    def _settle(
        self,
        session,
        *,
        payment: Payment,
        booking: Booking,
        outcome: str,
        verifier: str,
        gateway_reference: str | None = None,
    ) -> Payment:
        if payment.status in TERMINAL_PAYMENT_STATUSES:
            raise InvalidTransitionError("payment", payment.status, outcome)
        if outcome == PaymentStatus.VERIFIED.value:
            if booking.status == BookingStatus.CANCELLED.value:
                raise InvalidTransitionError("booking", booking.status, BookingStatus.CONFIRMED.value)

        changes: dict[str, object] = {
            "status": outcome,
            "verified_by": verifier,
            "verified_at": self.now(),
        }
        if gateway_reference:
            changes["gateway_reference"] = gateway_reference
        payment = PaymentRepository(session).update(payment.id, **changes)
        logger.info("Payment %s id=%s by=%s", outcome, payment.id, verifier)

        if outcome == PaymentStatus.VERIFIED.value:
            if booking.status == BookingStatus.PENDING.value:
                self.set_booking_status(
                    session=session, booking_id=booking.id, new_status=BookingStatus.CONFIRMED
                )
            self._dispatch_receipt(payment)
        return payment

    def _dispatch_receipt(self, payment: Payment) -> None:
        try:
            self.receipts.send_payment_receipt(
                booking_id=payment.booking_id, payment_id=payment.id, amount=payment.amount
            )
        except Exception:
            # Receipt delivery is best-effort; the verification stands.
            logger.exception("Failed to send payment receipt payment_id=%s", payment.id)

    # --- Documents ---------------------------------------------------------------

    def record_document(
        self,
        *,
        session,
        booking_id: str,
        storage_path: str,
        file_name: str,
        doc_type: DocumentType | str,
        actor: ActorContext,
    ) -> str:
        """
        What it does:
        - Creates the Document row for an already uploaded file, once its booking exists.

        Behavior:
        - The booking must exist and be accessible to the actor.
        - The file must have been uploaded under the owner's (or the actor's) prefix.
        - Re-recording the same storage path for the same booking returns the existing row.
        """
        try:
            doc_type_value = _normalize_document_type(doc_type)
        except ValueError as e:
            raise ValidationError(str(e), {"doc_type": "Unknown document type"}) from e

        booking = BookingRepository(session).get(booking_id)
        self.authorize_booking(session, booking, actor)
        self.authorize_document_path(booking, storage_path, actor)

        documents = DocumentRepository(session)
        existing = documents.find_by_path(storage_path)
        if existing is not None and existing.booking_id == booking.id:
            return existing.id

        document = documents.create(
            user_id=booking.user_id,
            booking_id=booking.id,
            storage_path=storage_path,
            file_name=file_name,
            doc_type=doc_type_value,
        )
        logger.info("Document recorded id=%s booking=%s type=%s", document.id, booking.id, doc_type_value)
        return document.id
