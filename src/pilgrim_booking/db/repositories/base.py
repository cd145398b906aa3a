from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum

from sqlalchemy.orm import Session


def normalize_enum_value(enum_cls: type[StrEnum], value: StrEnum | str, label: str) -> str:
    """
    What it does:
    - Converts enum-or-string input into the exact string stored in the DB.

    Why it matters:
    - Status columns are plain text; a typo would otherwise be persisted silently.

    Behavior:
    - Enum members return their value.
    - Strings must match one of the allowed values exactly, else ValueError.
    """
    if isinstance(value, enum_cls):
        return value.value

    allowed = {m.value for m in enum_cls}
    if value not in allowed:
        raise ValueError(f"Invalid {label} '{value}'. Allowed: {sorted(allowed)}")
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session
