from __future__ import annotations

from sqlalchemy import select

from pilgrim_booking.db.enums import FieldScope, FieldSection, FieldType
from pilgrim_booking.db.models import FieldGovernanceEntry
from pilgrim_booking.db.repositories.base import BaseRepository, normalize_enum_value, utcnow

_ENUM_COLUMNS = {
    "section": (FieldSection, "field section"),
    "applies_to": (FieldScope, "field scope"),
    "field_type": (FieldType, "field type"),
}


class FieldGovernanceRepository(BaseRepository):
    def get(self, key: str) -> FieldGovernanceEntry | None:
        return self.session.get(FieldGovernanceEntry, key)

    def list_all(self) -> list[FieldGovernanceEntry]:
        stmt = select(FieldGovernanceEntry).order_by(
            FieldGovernanceEntry.section.asc(), FieldGovernanceEntry.sort_order.asc()
        )
        return list(self.session.scalars(stmt).all())

    def upsert(self, key: str, *, label: str | None = None, **fields) -> FieldGovernanceEntry:
        """
        What it does:
        - Creates or updates the override row for one field key.

        Why it matters:
        - Admin edits are last-write-wins; repeating the same patch is a no-op.

        Behavior:
        - New rows fall back to the key as label when none is given.
        - Enum-valued columns are validated before the write.
        - Ignores unknown field names safely (hasattr guard).
        """
        for name, (enum_cls, enum_label) in _ENUM_COLUMNS.items():
            if name in fields and fields[name] is not None:
                fields[name] = normalize_enum_value(enum_cls, fields[name], enum_label)

        entry = self.get(key)
        if entry is None:
            entry = FieldGovernanceEntry(key=key, label=label or key)
            self.session.add(entry)
        elif label is not None:
            entry.label = label

        for k, v in fields.items():
            if hasattr(entry, k) and k != "key":
                setattr(entry, k, v)
        entry.updated_at = utcnow()

        self.session.flush()
        return entry

    def delete(self, key: str) -> None:
        entry = self.get(key)
        if entry is not None:
            self.session.delete(entry)
            self.session.flush()
