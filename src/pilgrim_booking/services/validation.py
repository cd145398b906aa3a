from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from pilgrim_booking.db.enums import Gender
from pilgrim_booking.utils.errors import ValidationError

PASSPORT_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{6,9}$")

EARLIEST_PILGRIMAGE_YEAR = 1950

BOOLEAN_FIELDS = frozenset({"previous_umrah"})
INTEGER_FIELDS = frozenset({"previous_umrah_year"})
DATE_FIELDS = frozenset(
    {"date_of_birth", "passport_expiry", "meningitis_vaccine_date", "visa_expiry_date"}
)

# Booking columns a form may write. Ownership, status and bookkeeping columns
# (id, user_id, agent_id, status, reference, timestamps) are deliberately absent.
BOOKING_FORM_FIELDS = frozenset(
    {
        "package_id",
        "package_date_id",
        "agent_client_id",
        "full_name",
        "gender",
        "date_of_birth",
        "nationality",
        "place_of_birth",
        "marital_status",
        "occupation",
        "phone",
        "address",
        "fathers_name",
        "mothers_name",
        "passport_number",
        "passport_expiry",
        "mahram_name",
        "mahram_relationship",
        "mahram_passport",
        "meningitis_vaccine_date",
        "previous_umrah",
        "previous_umrah_year",
        "departure_city",
        "room_preference",
        "special_requests",
        "emergency_contact_name",
        "emergency_contact_phone",
        "emergency_contact_relationship",
        "visa_expiry_date",
        "visa_notes",
        "custom_data",
    }
)

_TRUE_STRINGS = {"true", "1", "yes", "y", "on"}
_FALSE_STRINGS = {"false", "0", "no", "n", "off"}


def parse_bool(value: object) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "":
        return None
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


def parse_int(value: object) -> int | None:
    """Numeric-like input -> int; blanks and non-numeric text -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite() or number != number.to_integral_value():
        return None
    return int(number)


def parse_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text == "":
        return None
    # Accept full ISO timestamps from clients that send them for date inputs.
    return date.fromisoformat(text[:10])


def sanitize_booking_values(values: Mapping[str, object]) -> dict[str, object]:
    """
    What it does:
    - Normalizes raw form values into column-typed values.

    Behavior:
    - Strings are stripped; an empty string becomes None.
    - previous_umrah: boolean-like strings -> bool.
    - previous_umrah_year: numeric-like strings -> int, anything else -> None.
    - Date fields: ISO strings -> date; unparseable -> ValidationError.
    - custom_data: kept as a str -> str map, blank values dropped.
    - Unknown keys raise ValidationError so a typo never disappears silently.
    """
    unknown = sorted(k for k in values if k not in BOOKING_FORM_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown booking field(s): {', '.join(unknown)}",
            {k: "Unknown field" for k in unknown},
        )

    errors: dict[str, str] = {}
    clean: dict[str, object] = {}
    for key, raw in values.items():
        if key == "custom_data":
            clean[key] = _sanitize_custom_data(raw)
            continue

        value = raw.strip() if isinstance(raw, str) else raw
        if value == "":
            value = None

        try:
            if key in BOOLEAN_FIELDS:
                value = parse_bool(value)
            elif key in INTEGER_FIELDS:
                value = parse_int(value)
            elif key in DATE_FIELDS:
                value = parse_date(value)
        except ValueError:
            errors[key] = "Invalid value"
            continue

        clean[key] = value

    if errors:
        raise ValidationError("Invalid booking values", errors)
    return clean


def _sanitize_custom_data(raw: object) -> dict[str, str] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValidationError("custom_data must be a mapping", {"custom_data": "Invalid value"})
    clean = {}
    for k, v in raw.items():
        if v is None:
            continue
        text = str(v).strip()
        if text:
            clean[str(k)] = text
    return clean


def to_json_safe(values: Mapping[str, object]) -> dict[str, object]:
    """Dates become ISO strings so the map can be stored in a JSON column."""
    return {k: (v.isoformat() if isinstance(v, date) else v) for k, v in values.items()}


# --- Format checks --------------------------------------------------------------


def passport_number_error(value: object) -> str | None:
    if value is None or str(value).strip() == "":
        return "Passport number is required"
    if not PASSPORT_NUMBER_PATTERN.match(str(value).strip()):
        return "Passport number must be 6-9 uppercase letters or digits"
    return None


def passport_expiry_error(value: object, *, today: date) -> str | None:
    try:
        expiry = parse_date(value)
    except ValueError:
        return "Passport expiry must be a valid date"
    if expiry is None:
        return "Passport expiry is required"
    if expiry <= today:
        return "Passport must still be valid"
    return None


def gender_error(value: object) -> str | None:
    if value is None or str(value).strip() == "":
        return "Gender is required"
    if str(value).strip() not in {g.value for g in Gender}:
        return "Gender must be male or female"
    return None


def date_error(value: object) -> str | None:
    try:
        parse_date(value)
    except ValueError:
        return "Must be a valid date"
    return None


def pilgrimage_year_error(value: object, *, today: date) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    year = parse_int(value)
    if year is None or not (EARLIEST_PILGRIMAGE_YEAR <= year <= today.year):
        return f"Year must be between {EARLIEST_PILGRIMAGE_YEAR} and {today.year}"
    return None


def is_blank(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) == 0
    return False


def missing_keys(values: Mapping[str, object], keys: Iterable[str]) -> list[str]:
    return [k for k in keys if is_blank(values.get(k))]
