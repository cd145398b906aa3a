from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from pilgrim_booking.db.enums import FieldScope, FieldSection, FieldType
from pilgrim_booking.db.models import FieldGovernanceEntry
from pilgrim_booking.db.repositories.field_governance import FieldGovernanceRepository
from pilgrim_booking.utils.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldConfig:
    key: str
    label: str
    enabled: bool = True
    required: bool = False
    placeholder: str | None = None
    is_system: bool = True
    field_type: str = FieldType.TEXT.value
    applies_to: str = FieldScope.BOTH.value
    section: str = FieldSection.ADDITIONAL.value
    sort_order: int = 0
    options: tuple[str, ...] | None = None

    @property
    def is_required(self) -> bool:
        # A disabled field is never required, whatever its stored flag says.
        return self.enabled and self.required


def _default(
    key: str,
    label: str,
    section: FieldSection,
    sort_order: int,
    *,
    required: bool = False,
    placeholder: str | None = None,
    field_type: FieldType = FieldType.TEXT,
    options: tuple[str, ...] | None = None,
) -> tuple[str, FieldConfig]:
    return key, FieldConfig(
        key=key,
        label=label,
        required=required,
        placeholder=placeholder,
        section=section.value,
        sort_order=sort_order,
        field_type=field_type.value,
        options=options,
    )


# Visibility and requiredness of these are a legal/booking minimum; overrides may
# relabel them but never disable or un-require them.
LOCKED_FIELDS: Mapping[str, FieldConfig] = MappingProxyType(
    dict(
        [
            _default("package_id", "Package", FieldSection.TRAVEL, 0, required=True),
            _default("package_date_id", "Travel date", FieldSection.TRAVEL, 1, required=True),
            _default("full_name", "Full name (as on passport)", FieldSection.PILGRIM_INFO, 0, required=True),
            _default(
                "gender",
                "Gender",
                FieldSection.PILGRIM_INFO,
                1,
                required=True,
                field_type=FieldType.SELECT,
                options=("male", "female"),
            ),
            _default(
                "passport_number",
                "Passport number",
                FieldSection.VISA_DETAILS,
                0,
                required=True,
                placeholder="A12345678",
            ),
            _default("passport_expiry", "Passport expiry", FieldSection.VISA_DETAILS, 1, required=True),
        ]
    )
)

DEFAULT_FIELD_CONFIG: Mapping[str, FieldConfig] = MappingProxyType(
    dict(
        [
            _default("date_of_birth", "Date of birth", FieldSection.PILGRIM_INFO, 2, required=True),
            _default("nationality", "Nationality", FieldSection.PILGRIM_INFO, 3, required=True),
            _default("place_of_birth", "Place of birth", FieldSection.PILGRIM_INFO, 4),
            _default(
                "marital_status",
                "Marital status",
                FieldSection.PILGRIM_INFO,
                5,
                field_type=FieldType.SELECT,
                options=("single", "married", "divorced", "widowed"),
            ),
            _default("occupation", "Occupation", FieldSection.PILGRIM_INFO, 6),
            _default("phone", "Phone", FieldSection.PILGRIM_INFO, 7, required=True, placeholder="+234..."),
            _default("address", "Address", FieldSection.PILGRIM_INFO, 8, field_type=FieldType.TEXTAREA),
            _default("fathers_name", "Father's name", FieldSection.PILGRIM_INFO, 9),
            _default("mothers_name", "Mother's name", FieldSection.PILGRIM_INFO, 10),
            _default("mahram_name", "Mahram name", FieldSection.VISA_DETAILS, 2, required=True),
            _default("mahram_relationship", "Mahram relationship", FieldSection.VISA_DETAILS, 3, required=True),
            _default("mahram_passport", "Mahram passport number", FieldSection.VISA_DETAILS, 4),
            _default("meningitis_vaccine_date", "Meningitis vaccine date", FieldSection.VISA_DETAILS, 5),
            _default(
                "previous_umrah",
                "Performed Umrah before?",
                FieldSection.VISA_DETAILS,
                6,
                field_type=FieldType.SELECT,
                options=("true", "false"),
            ),
            _default(
                "previous_umrah_year",
                "Year of previous Umrah",
                FieldSection.VISA_DETAILS,
                7,
                required=True,
                field_type=FieldType.NUMBER,
            ),
            _default("departure_city", "Departure city", FieldSection.TRAVEL, 2, required=True),
            _default(
                "room_preference",
                "Room preference",
                FieldSection.TRAVEL,
                3,
                field_type=FieldType.SELECT,
                options=("quad", "triple", "double"),
            ),
            _default("special_requests", "Special requests", FieldSection.TRAVEL, 4, field_type=FieldType.TEXTAREA),
            _default("emergency_contact_name", "Emergency contact name", FieldSection.TRAVEL, 5, required=True),
            _default("emergency_contact_phone", "Emergency contact phone", FieldSection.TRAVEL, 6, required=True),
            _default("emergency_contact_relationship", "Emergency contact relationship", FieldSection.TRAVEL, 7),
        ]
    )
)


def _entry_to_config(entry: FieldGovernanceEntry, base: FieldConfig | None) -> FieldConfig:
    options = tuple(entry.options) if entry.options else (base.options if base else None)
    return FieldConfig(
        key=entry.key,
        label=entry.label or (base.label if base else entry.key),
        enabled=bool(entry.enabled),
        required=bool(entry.required),
        placeholder=entry.placeholder if entry.placeholder is not None else (base.placeholder if base else None),
        is_system=bool(entry.is_system),
        field_type=entry.field_type or FieldType.TEXT.value,
        applies_to=entry.applies_to or FieldScope.BOTH.value,
        section=entry.section or (base.section if base else FieldSection.ADDITIONAL.value),
        sort_order=entry.sort_order if entry.sort_order is not None else 0,
        options=options,
    )


@dataclass(frozen=True)
class FieldGovernanceSnapshot:
    """
    What it does:
    - Immutable view of every field's enabled/required/label/placeholder settings.

    Why it matters:
    - The wizard and the editability policy receive one of these at construction
      time instead of querying admin configuration ad hoc.

    Behavior:
    - Locked fields are always enabled and required (overrides may relabel them).
    - Known system fields fall back to DEFAULT_FIELD_CONFIG.
    - Unknown keys resolve to enabled, optional, labelled with the key.
    """

    overrides: Mapping[str, FieldConfig] = field(default_factory=dict)

    def get(self, key: str) -> FieldConfig:
        override = self.overrides.get(key)
        locked = LOCKED_FIELDS.get(key)
        if locked is not None:
            if override is None:
                return locked
            return replace(
                locked,
                label=override.label or locked.label,
                placeholder=override.placeholder or locked.placeholder,
            )
        if override is not None:
            return override
        return DEFAULT_FIELD_CONFIG.get(key) or FieldConfig(key=key, label=key, is_system=False)

    def is_enabled(self, key: str) -> bool:
        return self.get(key).enabled

    def is_required(self, key: str) -> bool:
        return self.get(key).is_required

    def custom_fields(self, scope: FieldScope | str) -> list[FieldConfig]:
        """Enabled admin-defined (non-system) fields for a booking scope, in display order."""
        scopes = {str(scope), FieldScope.BOTH.value}
        fields = [
            c
            for c in self.overrides.values()
            if not c.is_system and c.enabled and c.applies_to in scopes
        ]
        return sorted(fields, key=lambda c: (c.sort_order, c.key))


class FieldGovernanceRegistry:
    """
    What it does:
    - Reads and writes the per-field governance overrides.

    Behavior:
    - get() resolves through a fresh snapshot, so defaults apply when no row exists.
    - set() is an idempotent last-write-wins upsert.
    - Flushes only; commit/rollback belong to the caller's session boundary.
    """

    def __init__(self, session) -> None:
        self.repo = FieldGovernanceRepository(session)

    def get(self, key: str) -> FieldConfig:
        return self.snapshot().get(key)

    def snapshot(self) -> FieldGovernanceSnapshot:
        overrides = {}
        for entry in self.repo.list_all():
            base = LOCKED_FIELDS.get(entry.key) or DEFAULT_FIELD_CONFIG.get(entry.key)
            overrides[entry.key] = _entry_to_config(entry, base)
        return FieldGovernanceSnapshot(overrides=MappingProxyType(overrides))

    def set(self, key: str, **patch) -> FieldConfig:
        key = key.strip()
        if not key:
            raise ValidationError("Field key is required", {"key": "Required"})

        if key in LOCKED_FIELDS and ({"enabled", "required"} & patch.keys()):
            raise ValidationError(
                f"'{key}' is always shown and required; only its label and placeholder can change",
                {key: "Locked field"},
            )

        existing = self.repo.get(key)
        if existing is None:
            base = LOCKED_FIELDS.get(key) or DEFAULT_FIELD_CONFIG.get(key)
            if base is not None:
                defaults = {
                    "label": base.label,
                    "placeholder": base.placeholder,
                    "enabled": base.enabled,
                    "required": base.required,
                    "is_system": True,
                    "field_type": base.field_type,
                    "section": base.section,
                    "sort_order": base.sort_order,
                    "options": list(base.options) if base.options else None,
                }
            else:
                defaults = {"is_system": False}
            patch = {**defaults, **patch}

        if "options" in patch and patch["options"] is not None:
            patch["options"] = [str(o) for o in patch["options"]]

        self.repo.upsert(key, **patch)
        logger.info("Field governance updated key=%s patch=%s", key, sorted(patch))
        return self.get(key)

    def seed_defaults(self) -> int:
        """Writes a row for every default field lacking one. Returns the number created."""
        created = 0
        for key in (*LOCKED_FIELDS, *DEFAULT_FIELD_CONFIG):
            if self.repo.get(key) is None:
                self.set(key)
                created += 1
        return created


class FieldGovernanceCache:
    """
    What it does:
    - Holds the current snapshot and reloads it once `ttl_seconds` have passed.

    Why it matters:
    - Long-lived consumers get admin changes on a predictable cadence without
      each call site querying configuration.
    """

    def __init__(
        self,
        loader: Callable[[], FieldGovernanceSnapshot],
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: FieldGovernanceSnapshot | None = None
        self._loaded_at = 0.0

    def current(self) -> FieldGovernanceSnapshot:
        now = self._clock()
        if self._snapshot is None or now - self._loaded_at >= self._ttl:
            self._snapshot = self._loader()
            self._loaded_at = now
        return self._snapshot

    def invalidate(self) -> None:
        self._snapshot = None
