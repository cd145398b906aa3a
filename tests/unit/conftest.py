from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pilgrim_booking.db.base import Base
from pilgrim_booking.db.enums import CommissionType, UserRole
from pilgrim_booking.db.models import SCHEMA
from pilgrim_booking.db.repositories.agents import AgentRepository
from pilgrim_booking.db.repositories.bookings import BookingRepository
from pilgrim_booking.db.repositories.packages import PackageRepository
from pilgrim_booking.services.collaborators import ActorContext
from pilgrim_booking.services.lifecycle import BookingLifecycleService
from pilgrim_booking.testing.fakes import FakeReceiptDispatcher


@pytest.fixture()
def today():
    return date(2026, 10, 19)


@pytest.fixture()
def engine():
    # Models live in the Postgres schema "pilgrim_booking".
    # SQLite has no schemas, so we translate that schema to None.
    schema_map = {SCHEMA: None}

    eng = create_engine("sqlite+pysqlite:///:memory:", future=True)

    # Apply schema translation for all operations using this engine
    eng = eng.execution_options(schema_translate_map=schema_map)

    return eng


@pytest.fixture()
def session(engine):
    # Create all tables in SQLite, with schema translated away
    Base.metadata.create_all(bind=engine)

    SessionLocal = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# --- Reference data -----------------------------------------------------------


@pytest.fixture()
def package(session):
    return PackageRepository(session).create(
        name="Ramadan Umrah",
        price=Decimal("1000000.00"),
        agent_discount=Decimal("50000.00"),
    )


@pytest.fixture()
def package_date(session, package):
    return PackageRepository(session).add_date(
        package.id,
        outbound=date(2027, 3, 1),
        return_date=date(2027, 3, 15),
        islamic_date="12 Ramadan 1448",
    )


@pytest.fixture()
def other_package(session):
    return PackageRepository(session).create(name="Shawwal Umrah", price=Decimal("850000.00"))


@pytest.fixture()
def agent(session):
    return AgentRepository(session).create(
        user_id="agent-user-1",
        business_name="Barakah Travels",
        commission_type=CommissionType.PERCENTAGE,
        commission_rate=Decimal("10"),
    )


@pytest.fixture()
def agent_client(session, agent):
    return AgentRepository(session).create_client(
        agent_id=agent.id,
        full_name="Halima Sani",
        gender="female",
        passport_number="B7654321",
    )


# --- Actors and services ------------------------------------------------------


@pytest.fixture()
def user_actor():
    return ActorContext(user_id="user-1")


@pytest.fixture()
def other_user_actor():
    return ActorContext(user_id="user-2")


@pytest.fixture()
def admin_actor():
    return ActorContext(user_id="admin-1", role=UserRole.ADMIN)


@pytest.fixture()
def agent_actor(agent):
    return ActorContext(user_id=agent.user_id, role=UserRole.AGENT, agent_id=agent.id)


@pytest.fixture()
def receipts():
    return FakeReceiptDispatcher()


@pytest.fixture()
def lifecycle(receipts):
    return BookingLifecycleService(receipts=receipts)


@pytest.fixture()
def pending_booking(session, lifecycle, user_actor, package, package_date):
    booking_id = lifecycle.create_or_update_draft_booking(
        session=session,
        fields={
            "package_id": package.id,
            "package_date_id": package_date.id,
            "full_name": "Musa Ibrahim",
            "gender": "male",
            "passport_number": "A1234567",
            "passport_expiry": "2028-01-31",
            "phone": "+2348000000001",
        },
        actor=user_actor,
    )
    return BookingRepository(session).get(booking_id)
