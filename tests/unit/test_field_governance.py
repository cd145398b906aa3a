from __future__ import annotations

import pytest

from pilgrim_booking.db.repositories.field_governance import FieldGovernanceRepository
from pilgrim_booking.services.field_governance import (
    DEFAULT_FIELD_CONFIG,
    LOCKED_FIELDS,
    FieldConfig,
    FieldGovernanceCache,
    FieldGovernanceRegistry,
    FieldGovernanceSnapshot,
)
from pilgrim_booking.utils.errors import ValidationError


@pytest.mark.unit
def test_defaults_apply_without_override_rows(session):
    registry = FieldGovernanceRegistry(session)

    occupation = registry.get("occupation")
    phone = registry.get("phone")

    assert occupation.enabled and not occupation.required
    assert phone.is_required
    assert registry.get("passport_number").is_required


@pytest.mark.unit
def test_disabled_field_is_never_required(session):
    registry = FieldGovernanceRegistry(session)

    config = registry.set("occupation", enabled=False, required=True)

    assert config.required is True
    assert config.is_required is False
    assert registry.snapshot().is_required("occupation") is False
    assert registry.snapshot().is_enabled("occupation") is False


@pytest.mark.unit
def test_set_is_last_write_wins_and_idempotent(session):
    registry = FieldGovernanceRegistry(session)

    registry.set("nationality", required=False, label="Citizenship")
    registry.set("nationality", required=False, label="Citizenship")
    config = registry.set("nationality", placeholder="e.g. Nigerian")

    assert config.label == "Citizenship"
    assert config.placeholder == "e.g. Nigerian"
    assert config.required is False
    assert [e.key for e in FieldGovernanceRepository(session).list_all()] == ["nationality"]


@pytest.mark.unit
@pytest.mark.parametrize("key", sorted(LOCKED_FIELDS))
def test_locked_fields_cannot_be_disabled(session, key):
    with pytest.raises(ValidationError):
        FieldGovernanceRegistry(session).set(key, enabled=False)


@pytest.mark.unit
def test_locked_field_can_be_relabelled(session):
    config = FieldGovernanceRegistry(session).set("passport_number", label="Passport No.")

    assert config.label == "Passport No."
    assert config.is_required


@pytest.mark.unit
def test_locked_field_ignores_stored_disable():
    # A row written outside the registry still cannot hide a locked field.
    snapshot = FieldGovernanceSnapshot(
        overrides={"passport_expiry": FieldConfig(key="passport_expiry", label="Expiry", enabled=False)}
    )
    assert snapshot.is_required("passport_expiry")
    assert snapshot.get("passport_expiry").label == "Expiry"


@pytest.mark.unit
def test_custom_fields_follow_scope_and_order(session):
    registry = FieldGovernanceRegistry(session)
    registry.set("blood_group", label="Blood group", applies_to="both", section="additional", sort_order=2)
    registry.set("agency_code", label="Agency code", applies_to="agent", section="additional", sort_order=1)
    registry.set("shirt_size", label="Shirt size", applies_to="user", enabled=False)

    snapshot = registry.snapshot()

    assert [c.key for c in snapshot.custom_fields("agent")] == ["agency_code", "blood_group"]
    assert [c.key for c in snapshot.custom_fields("user")] == ["blood_group"]
    assert snapshot.get("blood_group").is_system is False


@pytest.mark.unit
def test_invalid_section_is_rejected(session):
    with pytest.raises(ValueError):
        FieldGovernanceRegistry(session).set("blood_group", section="sidebar")


@pytest.mark.unit
def test_seed_defaults_writes_missing_rows_once(session):
    registry = FieldGovernanceRegistry(session)
    registry.set("occupation", enabled=False)

    created = registry.seed_defaults()

    assert created == len(LOCKED_FIELDS) + len(DEFAULT_FIELD_CONFIG) - 1
    assert registry.seed_defaults() == 0
    assert registry.get("occupation").enabled is False
    assert registry.get("mahram_name").is_required


@pytest.mark.unit
def test_snapshot_is_read_only(session):
    snapshot = FieldGovernanceRegistry(session).snapshot()
    with pytest.raises(TypeError):
        snapshot.overrides["occupation"] = FieldConfig(key="occupation", label="x")


@pytest.mark.unit
def test_cache_reloads_after_ttl():
    now = [0.0]
    loads = []

    def loader():
        loads.append(now[0])
        return FieldGovernanceSnapshot()

    cache = FieldGovernanceCache(loader, ttl_seconds=60, clock=lambda: now[0])

    first = cache.current()
    now[0] = 59.0
    assert cache.current() is first
    now[0] = 60.0
    assert cache.current() is not first
    assert loads == [0.0, 60.0]

    cache.invalidate()
    cache.current()
    assert len(loads) == 3
