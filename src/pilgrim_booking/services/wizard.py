from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import StrEnum

from pilgrim_booking.db.enums import DocumentType, FieldScope, FieldSection, Gender, PaymentMethod, UserRole
from pilgrim_booking.db.models import new_id
from pilgrim_booking.db.repositories.payments import PaymentRepository, _normalize_payment_method
from pilgrim_booking.services.collaborators import ActorContext, GatewayCheckout, PaymentGateway
from pilgrim_booking.services.documents import DocumentService, StagedDocument
from pilgrim_booking.services.drafts import DraftAutosaver, DraftKey, DraftSnapshot, DraftStore
from pilgrim_booking.services.field_governance import FieldConfig, FieldGovernanceSnapshot
from pilgrim_booking.services.lifecycle import BookingLifecycleService
from pilgrim_booking.services.validation import (
    BOOKING_FORM_FIELDS,
    date_error,
    gender_error,
    is_blank,
    parse_bool,
    passport_expiry_error,
    passport_number_error,
    pilgrimage_year_error,
)
from pilgrim_booking.utils.errors import (
    AuthorizationError,
    InvalidTransitionError,
    UpstreamError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PAYMENT_METHOD_KEY = "payment_method"
PROOF_OF_PAYMENT_KEY = "proof_of_payment"


class WizardStep(StrEnum):
    PACKAGE = "package"
    IDENTITY = "identity"
    VISA_HEALTH = "visa_health"
    TRAVEL = "travel"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


STEP_ORDER: tuple[WizardStep, ...] = tuple(WizardStep)

Predicate = Callable[[Mapping[str, object]], bool]
FormatCheck = Callable[[object, date], "str | None"]


def _is_female(values: Mapping[str, object]) -> bool:
    return str(values.get("gender") or "").strip() == Gender.FEMALE


def _has_previous_umrah(values: Mapping[str, object]) -> bool:
    try:
        return bool(parse_bool(values.get("previous_umrah")))
    except ValueError:
        return False


def _check_date(value: object, today: date) -> str | None:
    return date_error(value)


def _check_gender(value: object, today: date) -> str | None:
    return gender_error(value)


def _check_passport_number(value: object, today: date) -> str | None:
    return passport_number_error(value)


def _check_passport_expiry(value: object, today: date) -> str | None:
    return passport_expiry_error(value, today=today)


def _check_previous_year(value: object, today: date) -> str | None:
    return pilgrimage_year_error(value, today=today)


def _check_payment_method(value: object, today: date) -> str | None:
    try:
        _normalize_payment_method(str(value))
    except ValueError:
        return "Choose a payment method"
    return None


@dataclass(frozen=True)
class FieldSpec:
    key: str
    # Hard-coded minimum; governance cannot hide or un-require these.
    always_required: bool = False
    visible_when: Predicate | None = None
    check: FormatCheck | None = None
    agents_only: bool = False


@dataclass(frozen=True)
class StepDefinition:
    step: WizardStep
    fields: tuple[FieldSpec, ...] = ()
    custom_sections: tuple[str, ...] = ()


STEPS: Mapping[WizardStep, StepDefinition] = {
    WizardStep.PACKAGE: StepDefinition(
        WizardStep.PACKAGE,
        (
            FieldSpec("package_id", always_required=True),
            FieldSpec("package_date_id", always_required=True),
            FieldSpec("agent_client_id", always_required=True, agents_only=True),
        ),
    ),
    WizardStep.IDENTITY: StepDefinition(
        WizardStep.IDENTITY,
        (
            FieldSpec("full_name", always_required=True),
            FieldSpec("gender", always_required=True, check=_check_gender),
            FieldSpec("date_of_birth", check=_check_date),
            FieldSpec("nationality"),
            FieldSpec("place_of_birth"),
            FieldSpec("marital_status"),
            FieldSpec("occupation"),
            FieldSpec("phone"),
            FieldSpec("address"),
            FieldSpec("fathers_name"),
            FieldSpec("mothers_name"),
        ),
        (FieldSection.PILGRIM_INFO.value,),
    ),
    WizardStep.VISA_HEALTH: StepDefinition(
        WizardStep.VISA_HEALTH,
        (
            FieldSpec("passport_number", always_required=True, check=_check_passport_number),
            FieldSpec("passport_expiry", always_required=True, check=_check_passport_expiry),
            FieldSpec("mahram_name", visible_when=_is_female),
            FieldSpec("mahram_relationship", visible_when=_is_female),
            FieldSpec("mahram_passport", visible_when=_is_female),
            FieldSpec("meningitis_vaccine_date", check=_check_date),
            FieldSpec("previous_umrah"),
            FieldSpec("previous_umrah_year", visible_when=_has_previous_umrah, check=_check_previous_year),
        ),
        (FieldSection.VISA_DETAILS.value,),
    ),
    WizardStep.TRAVEL: StepDefinition(
        WizardStep.TRAVEL,
        (
            FieldSpec("departure_city"),
            FieldSpec("room_preference"),
            FieldSpec("special_requests"),
            FieldSpec("emergency_contact_name"),
            FieldSpec("emergency_contact_phone"),
            FieldSpec("emergency_contact_relationship"),
        ),
        (FieldSection.TRAVEL.value, FieldSection.ADDITIONAL.value),
    ),
    WizardStep.PAYMENT: StepDefinition(
        WizardStep.PAYMENT,
        (FieldSpec(PAYMENT_METHOD_KEY, always_required=True, check=_check_payment_method),),
    ),
    WizardStep.CONFIRMATION: StepDefinition(WizardStep.CONFIRMATION),
}

CAPTURE_STEPS = STEP_ORDER[: STEP_ORDER.index(WizardStep.PAYMENT) + 1]


@dataclass(frozen=True)
class SubmissionResult:
    booking_id: str
    payment_id: str
    method: str
    amount: Decimal
    awaiting_gateway: bool = False
    access_code: str | None = None


class BookingWizard:
    """
    What it does:
    - Walks one actor through capturing a booking for one package, step by step.

    Why it matters:
    - Every entry point (self-service, agent-assisted, admin registration) shares the
      same visibility/requiredness rules, so a field an admin disabled never blocks
      anyone and the legal minimum is always collected.

    Behavior:
    - State is restored from the draft store on construction; a draft already marked
      submitted is cleared instead.
    - Every change schedules a debounced draft save.
    - Disabled and hidden fields are neither shown nor validated.
    - submit() reuses booking/payment ids kept in the draft, so a retry after an
      upstream failure never duplicates records.
    - A gateway payment suspends navigation until complete_gateway() is called.
    - An admin may pass owner_user_id to register a booking for another user; the
      same governance rules apply and the draft is kept per (admin, owner, package).
    """

    def __init__(
        self,
        *,
        actor: ActorContext,
        package_id: str,
        fields: FieldGovernanceSnapshot,
        drafts: DraftStore,
        lifecycle: BookingLifecycleService,
        documents: DocumentService,
        autosave_seconds: float = 1.5,
        timer_factory=None,
        today: Callable[[], date] = date.today,
        owner_user_id: str | None = None,
    ) -> None:
        if owner_user_id is not None and owner_user_id != actor.user_id and not actor.is_privileged:
            raise AuthorizationError("Only administrators may register bookings for another user")
        self.actor = actor
        self.owner_user_id = owner_user_id or actor.user_id
        self.fields = fields
        self.drafts = drafts
        self.lifecycle = lifecycle
        self.documents = documents
        self.today = today
        self.key = DraftKey(
            user_id=actor.user_id,
            package_id=package_id,
            on_behalf_of=self.owner_user_id if self.owner_user_id != actor.user_id else None,
        )

        autosaver_kwargs = {"delay": autosave_seconds}
        if timer_factory is not None:
            autosaver_kwargs["timer_factory"] = timer_factory
        self.autosaver = DraftAutosaver(self._save_draft, **autosaver_kwargs)

        self.checkout: GatewayCheckout | None = None
        self.gateway: PaymentGateway | None = None
        self.state = self._restore(package_id)

    # --- Draft state --------------------------------------------------------------

    def _restore(self, package_id: str) -> DraftSnapshot:
        draft = self.drafts.load(self.key)
        if draft is not None and draft.submitted:
            logger.info("Clearing submitted draft user=%s package=%s", self.key.user_id, package_id)
            self.drafts.clear(self.key)
            draft = None
        if draft is None:
            return DraftSnapshot(values={"package_id": package_id})
        logger.info("Resumed draft user=%s package=%s step=%s", self.key.user_id, package_id, draft.step)
        values = dict(draft.values)
        values["package_id"] = package_id
        return draft.model_copy(update={"values": values})

    def _save_draft(self) -> None:
        self.drafts.save(self.key, self.state)

    def _changed(self, **update) -> None:
        self.state = self.state.model_copy(update=update)
        self.autosaver.schedule()

    @property
    def step(self) -> WizardStep:
        return WizardStep(self.state.step)

    @property
    def values(self) -> Mapping[str, object]:
        return self.state.values

    @property
    def suspended(self) -> bool:
        return self.checkout is not None

    @property
    def submitted(self) -> bool:
        return self.state.submitted

    @property
    def scope(self) -> FieldScope:
        return FieldScope.AGENT if self.actor.role == UserRole.AGENT else FieldScope.USER

    def _ensure_open(self) -> None:
        if self.state.submitted:
            raise InvalidTransitionError("wizard", self.state.step, "edit")
        if self.suspended:
            raise InvalidTransitionError("wizard", self.state.step, "edit")

    def set_value(self, key: str, value: object) -> None:
        self._ensure_open()
        if key not in BOOKING_FORM_FIELDS and key != PAYMENT_METHOD_KEY:
            raise ValidationError(f"Unknown booking field: {key}", {key: "Unknown field"})
        if key in ("package_id", "custom_data"):
            raise ValidationError(f"{key} cannot be set directly", {key: "Not settable"})
        values = dict(self.state.values)
        values[key] = value
        self._changed(values=values)

    def set_values(self, values: Mapping[str, object]) -> None:
        for key, value in values.items():
            self.set_value(key, value)

    def set_custom_value(self, key: str, value: object) -> None:
        self._ensure_open()
        values = dict(self.state.values)
        custom = dict(values.get("custom_data") or {})
        custom[key] = value
        values["custom_data"] = custom
        self._changed(values=values)

    def select_date(self, package_date_id: str) -> None:
        self._ensure_open()
        values = dict(self.state.values)
        values["package_date_id"] = package_date_id
        self._changed(values=values, selected_date_id=package_date_id)

    def stage_document(
        self, file_name: str, content: bytes, doc_type: DocumentType | str = DocumentType.OTHER
    ) -> StagedDocument:
        """Uploads immediately; only the storage reference is kept until the booking exists."""
        self._ensure_open()
        staged = self.documents.upload_for_user(self.owner_user_id, file_name, content, doc_type)
        self._changed(staged_documents=[*self.state.staged_documents, staged])
        return staged

    def remove_staged_document(self, storage_path: str) -> None:
        self._ensure_open()
        remaining = [d for d in self.state.staged_documents if d.storage_path != storage_path]
        self._changed(staged_documents=remaining)

    def discard(self) -> None:
        self.autosaver.cancel()
        self.drafts.clear(self.key)
        self.checkout = None
        self.gateway = None
        self.state = DraftSnapshot(values={"package_id": self.key.package_id})
        logger.info("Draft discarded user=%s package=%s", self.key.user_id, self.key.package_id)

    # --- Field rules --------------------------------------------------------------

    def _field_visible(self, spec: FieldSpec) -> bool:
        if spec.agents_only and self.actor.role != UserRole.AGENT:
            return False
        if spec.visible_when is not None and not spec.visible_when(self.state.values):
            return False
        return spec.always_required or self.fields.is_enabled(spec.key)

    def _field_required(self, spec: FieldSpec) -> bool:
        return spec.always_required or self.fields.is_required(spec.key)

    def visible_fields(self, step: WizardStep | None = None) -> list[str]:
        definition = STEPS[step or self.step]
        return [s.key for s in definition.fields if self._field_visible(s)]

    def required_fields(self, step: WizardStep | None = None) -> list[str]:
        definition = STEPS[step or self.step]
        return [s.key for s in definition.fields if self._field_visible(s) and self._field_required(s)]

    def field_config(self, key: str) -> FieldConfig:
        return self.fields.get(key)

    def custom_fields(self, step: WizardStep | None = None) -> list[FieldConfig]:
        definition = STEPS[step or self.step]
        return [c for c in self.fields.custom_fields(self.scope) if c.section in definition.custom_sections]

    def validate_step(self, step: WizardStep | None = None) -> dict[str, str]:
        """Returns field -> message for everything blocking the step; empty means it may advance."""
        step = step or self.step
        today = self.today()
        values = self.state.values
        errors: dict[str, str] = {}

        for spec in STEPS[step].fields:
            if not self._field_visible(spec):
                continue
            value = values.get(spec.key)
            if is_blank(value):
                if self._field_required(spec):
                    errors[spec.key] = f"{self.fields.get(spec.key).label} is required"
                continue
            if spec.check is not None:
                message = spec.check(value, today)
                if message:
                    errors[spec.key] = message

        custom = values.get("custom_data") or {}
        for config in self.custom_fields(step):
            if config.is_required and is_blank(custom.get(config.key)):
                errors[config.key] = f"{config.label} is required"

        if step == WizardStep.PAYMENT and self._payment_method() == PaymentMethod.BANK_TRANSFER:
            if self._proof_of_payment() is None:
                errors[PROOF_OF_PAYMENT_KEY] = "Upload proof of payment for a bank transfer"

        return errors

    def _payment_method(self) -> str | None:
        raw = self.state.values.get(PAYMENT_METHOD_KEY)
        if is_blank(raw):
            return None
        try:
            return _normalize_payment_method(str(raw))
        except ValueError:
            return None

    def _proof_of_payment(self) -> StagedDocument | None:
        for doc in reversed(self.state.staged_documents):
            if doc.doc_type == DocumentType.PROOF_OF_PAYMENT:
                return doc
        return None

    # --- Navigation ---------------------------------------------------------------

    def advance(self) -> WizardStep:
        self._ensure_open()
        index = STEP_ORDER.index(self.step)
        if self.step == WizardStep.PAYMENT or self.step == WizardStep.CONFIRMATION:
            raise InvalidTransitionError("wizard", self.step, STEP_ORDER[min(index + 1, len(STEP_ORDER) - 1)])
        errors = self.validate_step()
        if errors:
            raise ValidationError(f"Step {self.step} is incomplete", errors)
        target = STEP_ORDER[index + 1]
        self._changed(step=target.value)
        return target

    def back(self) -> WizardStep:
        self._ensure_open()
        index = STEP_ORDER.index(self.step)
        if index == 0:
            return self.step
        target = STEP_ORDER[index - 1]
        self._changed(step=target.value)
        return target

    def can_submit(self) -> bool:
        if self.state.submitted or self.suspended or self.step != WizardStep.PAYMENT:
            return False
        return all(not self.validate_step(step) for step in CAPTURE_STEPS)

    # --- Submission ---------------------------------------------------------------

    def _booking_fields(self) -> dict[str, object]:
        values = self.state.values
        fields: dict[str, object] = {}
        for step in CAPTURE_STEPS:
            for spec in STEPS[step].fields:
                if spec.key in BOOKING_FORM_FIELDS and spec.key in values and self._field_visible(spec):
                    fields[spec.key] = values[spec.key]
        allowed_custom = {c.key for c in self.fields.custom_fields(self.scope)}
        custom = {k: v for k, v in (values.get("custom_data") or {}).items() if k in allowed_custom}
        if custom:
            fields["custom_data"] = custom
        return fields

    def submit(
        self,
        session,
        *,
        gateway: PaymentGateway | None = None,
        email: str | None = None,
    ) -> SubmissionResult:
        """
        What it does:
        - Persists booking, staged documents and payment, in that order.

        Behavior:
        - Ids are chosen and saved to the draft before each write, so a retry reuses them.
        - Gateway payments: the gateway's amount is authoritative; the wizard is suspended
          until complete_gateway().
        - Other methods: the wizard moves to confirmation and the draft is destroyed.
        """
        if not self.can_submit():
            errors = {}
            for step in CAPTURE_STEPS:
                errors.update(self.validate_step(step))
            raise ValidationError("Booking is not ready to submit", errors)

        method = self._payment_method()
        if method == PaymentMethod.PAYSTACK and (gateway is None or not email):
            raise ValidationError("Gateway payments need a gateway and an email", {"email": "Required"})

        booking_id = self.state.booking_id or new_id()
        payment_id = self.state.payment_id or new_id()
        self.state = self.state.model_copy(update={"booking_id": booking_id, "payment_id": payment_id})
        self.autosaver.flush()

        try:
            self.lifecycle.create_or_update_draft_booking(
                session=session,
                fields=self._booking_fields(),
                actor=self.actor,
                booking_id=booking_id,
                owner_user_id=self.owner_user_id,
            )
            for doc in self.state.staged_documents:
                self.lifecycle.record_document(
                    session=session,
                    booking_id=booking_id,
                    storage_path=doc.storage_path,
                    file_name=doc.file_name,
                    doc_type=doc.doc_type,
                    actor=self.actor,
                )
            proof = self._proof_of_payment()
            self.lifecycle.attach_payment(
                session=session,
                booking_id=booking_id,
                method=method,
                actor=self.actor,
                proof_ref=proof.storage_path if proof else None,
                payment_id=payment_id,
            )
            amount = PaymentRepository(session).get(payment_id).amount

            if method == PaymentMethod.PAYSTACK:
                checkout = gateway.initialize(email=email, booking_id=booking_id)
                self.checkout = checkout
                self.gateway = gateway
                logger.info("Awaiting gateway booking=%s amount=%s", booking_id, checkout.amount)
                return SubmissionResult(
                    booking_id=booking_id,
                    payment_id=payment_id,
                    method=method,
                    amount=checkout.amount,
                    awaiting_gateway=True,
                    access_code=checkout.access_code,
                )
        except UpstreamError:
            logger.warning("Submission interrupted booking=%s; ids kept for retry", booking_id)
            self.autosaver.flush()
            raise

        self._finish()
        return SubmissionResult(booking_id=booking_id, payment_id=payment_id, method=method, amount=amount)

    def complete_gateway(self, session, *, success: bool, gateway_reference: str | None = None) -> bool:
        """
        What it does:
        - Resumes the wizard after the hosted checkout closes.

        Behavior:
        - success: the gateway is asked to verify the reference (the checkout's own
          reference unless one is given); only a verified, fully paid transaction
          confirms the booking and finishes the wizard.
        - A reference the gateway does not confirm raises ValidationError; the payment
          stays pending and the wizard stays suspended so it can be retried or cancelled.
        - cancelled/failed: back to the payment step, nothing changes status.
        """
        if self.checkout is None:
            raise InvalidTransitionError("wizard", self.state.step, WizardStep.CONFIRMATION)

        if not success:
            logger.info("Gateway checkout cancelled booking=%s", self.state.booking_id)
            self.checkout = None
            self._changed(step=WizardStep.PAYMENT.value)
            return False

        self.lifecycle.confirm_gateway_payment(
            session=session,
            booking_id=self.state.booking_id,
            gateway_reference=gateway_reference or self.checkout.reference,
            gateway=self.gateway,
            actor=self.actor,
        )
        self.checkout = None
        self._finish()
        return True

    def _finish(self) -> None:
        self.state = self.state.model_copy(
            update={"submitted": True, "step": WizardStep.CONFIRMATION.value}
        )
        self.autosaver.flush()
        self.drafts.clear(self.key)
        logger.info(
            "Booking submitted booking=%s user=%s owner=%s",
            self.state.booking_id,
            self.actor.user_id,
            self.owner_user_id,
        )
