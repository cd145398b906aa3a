from __future__ import annotations


class NotFoundError(Exception):
    """Raised when an expected DB record does not exist."""


class ConflictError(Exception):
    """Raised when an operation violates a uniqueness or business constraint."""


class ValidationError(Exception):
    """
    Raised when submitted values fail format or requiredness checks.

    `errors` maps field key -> human readable message so callers can re-prompt
    for exactly the fields that failed.
    """

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors: dict[str, str] = dict(errors or {})


class AuthorizationError(Exception):
    """Raised when the actor does not own or may not act on the target record."""


class InvalidTransitionError(Exception):
    """Raised when a booking or payment status change is not allowed."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"Invalid {entity} status transition: {current} -> {target}")
        self.entity = entity
        self.current = current
        self.target = target


class AmendmentEmptyError(Exception):
    """Raised when none of the changed fields may be amended on a confirmed booking."""


class BookingNotEditableError(Exception):
    """Raised when a booking's status does not allow the requested edit."""


class UpstreamError(Exception):
    """Raised when object storage or the payment gateway fails; the operation is retryable."""
