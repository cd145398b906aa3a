from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from pilgrim_booking.db.enums import UserRole
from pilgrim_booking.utils.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """
    What it does:
    - Identifies who is calling a lifecycle operation.

    Why it matters:
    - Supplied by the authorization layer; every ownership decision is made
      against the store using these ids, never against ids found in form data.
    """

    user_id: str
    role: UserRole = UserRole.USER
    agent_id: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class GatewayCheckout:
    access_code: str
    # Authoritative amount computed by the gateway side; this is what gets displayed and charged.
    amount: Decimal
    # Transaction reference to look up with verify() once the payer returns.
    reference: str = ""


@dataclass(frozen=True)
class GatewayVerification:
    """What the gateway itself reports for a transaction reference."""

    status: str
    amount: Decimal
    booking_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class ObjectStore(Protocol):
    """
    What it does:
    - Stores uploaded files and hands out time-limited download links.

    Behavior:
    - upload() returns the stored path (may differ from the requested one).
    - signed_url() returns a URL valid for `ttl_seconds`.
    """

    def upload(self, path: str, content: bytes) -> str: ...

    def signed_url(self, path: str, ttl_seconds: int) -> str: ...


class PaymentGateway(Protocol):
    """
    What it does:
    - Initializes a hosted checkout for a booking and reports what was paid.

    Behavior:
    - The caller never sends an amount; the gateway side prices the booking
      and returns the authoritative amount with the access code.
    - verify() asks the gateway for the status of a reference. The client's own
      "payment succeeded" signal is never trusted on its own.
    - Amounts are in major currency units.
    """

    def initialize(self, *, email: str, booking_id: str) -> GatewayCheckout: ...

    def verify(self, reference: str) -> GatewayVerification: ...


class ReceiptDispatcher(Protocol):
    """Sends a payment receipt after verification. Failures must not undo the verification."""

    def send_payment_receipt(self, *, booking_id: str, payment_id: str, amount: Decimal) -> None: ...


class LocalObjectStore:
    """
    What it does:
    - ObjectStore backed by a local directory (dev and single-host deployments).

    Behavior:
    - Paths are relative to `root`; '..' segments are rejected.
    - signed_url() returns a file:// URL carrying an `expires` query parameter.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        parts = Path(path).parts
        if not parts or ".." in parts or Path(path).is_absolute():
            raise UpstreamError(f"Refusing to store outside the upload root: {path!r}")
        return self.root.joinpath(*parts)

    def upload(self, path: str, content: bytes) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            raise UpstreamError(f"Upload failed for {path}: {e}") from e
        logger.info("Stored upload %s (%d bytes)", path, len(content))
        return path

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        target = self._resolve(path)
        if not target.exists():
            raise UpstreamError(f"No stored object at {path}")
        expires = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        return f"{target.resolve().as_uri()}?expires={quote(expires.isoformat())}"


class LoggingReceiptDispatcher:
    """Default dispatcher: records the receipt request in the log only."""

    def send_payment_receipt(self, *, booking_id: str, payment_id: str, amount: Decimal) -> None:
        logger.info(
            "Payment receipt requested booking_id=%s payment_id=%s amount=%s",
            booking_id,
            payment_id,
            amount,
        )
