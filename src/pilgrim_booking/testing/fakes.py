from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from pilgrim_booking.services.collaborators import GatewayCheckout, GatewayVerification
from pilgrim_booking.services.drafts import DraftKey, DraftSnapshot
from pilgrim_booking.utils.errors import UpstreamError


@dataclass
class FakeObjectStore:
    """
    What it does:
    - In-memory object store for service and wizard tests.

    Behavior:
    - upload() keeps the bytes under the given path; fail_uploads makes it raise UpstreamError.
    - signed_url() returns a fake https URL embedding the ttl.
    """

    objects: dict[str, bytes] = field(default_factory=dict)
    fail_uploads: bool = False

    def upload(self, path: str, content: bytes) -> str:
        if self.fail_uploads:
            raise UpstreamError("object store unavailable")
        self.objects[path] = content
        return path

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        if path not in self.objects:
            raise UpstreamError(f"No stored object at {path}")
        return f"https://storage.test/{path}?ttl={ttl_seconds}"


@dataclass
class FakePaymentGateway:
    """
    What it does:
    - Fake hosted-checkout gateway (no network).

    Behavior:
    - initialize() records the call and returns a fixed access code with `amount`.
    - verify() only reports success for references registered with mark_paid();
      anything else comes back as "not_found".
    - fail=True makes both calls raise UpstreamError like an unreachable gateway.
    """

    amount: Decimal = Decimal("0")
    access_code: str = "FAKE-ACCESS-123"
    reference: str = "FAKE-REF-123"
    fail: bool = False
    calls: list[dict] = field(default_factory=list)
    verified: list[str] = field(default_factory=list)
    transactions: dict[str, GatewayVerification] = field(default_factory=dict)

    def initialize(self, *, email: str, booking_id: str) -> GatewayCheckout:
        self.calls.append({"email": email, "booking_id": booking_id})
        if self.fail:
            raise UpstreamError("payment gateway unavailable")
        return GatewayCheckout(access_code=self.access_code, amount=self.amount, reference=self.reference)

    def mark_paid(self, reference: str, *, booking_id: str, amount, status: str = "success") -> None:
        self.transactions[reference] = GatewayVerification(
            status=status, amount=Decimal(str(amount)), booking_id=booking_id
        )

    def verify(self, reference: str) -> GatewayVerification:
        self.verified.append(reference)
        if self.fail:
            raise UpstreamError("payment gateway unavailable")
        return self.transactions.get(reference, GatewayVerification(status="not_found", amount=Decimal("0")))


@dataclass
class FakeReceiptDispatcher:
    fail: bool = False
    sent: list[dict] = field(default_factory=list)

    def send_payment_receipt(self, *, booking_id: str, payment_id: str, amount: Decimal) -> None:
        if self.fail:
            raise RuntimeError("mail relay down")
        self.sent.append({"booking_id": booking_id, "payment_id": payment_id, "amount": amount})


@dataclass
class InMemoryDraftStore:
    drafts: dict[DraftKey, DraftSnapshot] = field(default_factory=dict)
    saves: int = 0

    def load(self, key: DraftKey) -> DraftSnapshot | None:
        return self.drafts.get(key)

    def save(self, key: DraftKey, snapshot: DraftSnapshot) -> None:
        self.saves += 1
        self.drafts[key] = snapshot

    def clear(self, key: DraftKey) -> None:
        self.drafts.pop(key, None)


class ManualTimer:
    """
    Timer double for DraftAutosaver: nothing fires until the test calls fire().

    Every created timer is kept on the class-level `created` list of the factory
    returned by ManualTimer.factory().
    """

    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.callback()

    @classmethod
    def factory(cls):
        created: list[ManualTimer] = []

        def make(delay: float, callback) -> ManualTimer:
            timer = cls(delay, callback)
            created.append(timer)
            return timer

        make.created = created
        return make
