from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pilgrim_booking.db.base import Base

SCHEMA = "pilgrim_booking"


def new_id() -> str:
    return str(uuid.uuid4())


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    # Flat discount for agents without an agent-specific commission rate.
    agent_discount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    minimum_deposit: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    dates: Mapped[list[PackageDate]] = relationship(back_populates="package")


class PackageDate(Base):
    __tablename__ = "package_dates"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    package_id: Mapped[str] = mapped_column(
        ForeignKey(f"{SCHEMA}.packages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    outbound: Mapped[date] = mapped_column(Date, nullable=False)
    return_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    islamic_date: Mapped[str | None] = mapped_column(Text, nullable=True)

    package: Mapped[Package] = relationship(back_populates="dates")


class Agent(Base):
    __tablename__ = "agents"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    business_name: Mapped[str] = mapped_column(Text, nullable=False)
    commission_type: Mapped[str] = mapped_column(Text, nullable=False, default="percentage")
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    clients: Mapped[list[AgentClient]] = relationship(back_populates="agent")


class AgentClient(Base):
    __tablename__ = "agent_clients"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    agent_id: Mapped[str] = mapped_column(
        ForeignKey(f"{SCHEMA}.agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    gender: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    passport_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    passport_expiry: Mapped[date | None] = mapped_column(Date, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )

    agent: Mapped[Agent] = relationship(back_populates="clients")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    reference: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)

    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    agent_id: Mapped[str | None] = mapped_column(
        ForeignKey(f"{SCHEMA}.agents.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    agent_client_id: Mapped[str | None] = mapped_column(
        ForeignKey(f"{SCHEMA}.agent_clients.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    package_id: Mapped[str] = mapped_column(
        ForeignKey(f"{SCHEMA}.packages.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    package_date_id: Mapped[str | None] = mapped_column(
        ForeignKey(f"{SCHEMA}.package_dates.id", ondelete="RESTRICT"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")

    # Identity
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    gender: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    nationality: Mapped[str | None] = mapped_column(Text, nullable=True)
    place_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    marital_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    occupation: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    fathers_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    mothers_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Passport
    passport_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    passport_expiry: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Mahram
    mahram_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    mahram_relationship: Mapped[str | None] = mapped_column(Text, nullable=True)
    mahram_passport: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Health / history
    meningitis_vaccine_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    previous_umrah: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    previous_umrah_year: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)

    # Travel preferences
    departure_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    room_preference: Mapped[str | None] = mapped_column(Text, nullable=True)
    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Emergency contact
    emergency_contact_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_relationship: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Visa sub-status, independent of `status`
    visa_status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")
    visa_expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    visa_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    custom_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    package: Mapped[Package] = relationship()
    payments: Mapped[list[Payment]] = relationship(back_populates="booking")
    documents: Mapped[list[Document]] = relationship(back_populates="booking")
    amendment_requests: Mapped[list[AmendmentRequest]] = relationship(back_populates="booking")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    booking_id: Mapped[str] = mapped_column(
        ForeignKey(f"{SCHEMA}.bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    method: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")

    verified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    proof_of_payment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_reference: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    booking: Mapped[Booking] = relationship(back_populates="payments")


class AmendmentRequest(Base):
    __tablename__ = "booking_amendment_requests"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    booking_id: Mapped[str] = mapped_column(
        ForeignKey(f"{SCHEMA}.bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    requested_changes: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="pending")

    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )

    booking: Mapped[Booking] = relationship(back_populates="amendment_requests")


class FieldGovernanceEntry(Base):
    __tablename__ = "booking_form_fields"
    __table_args__ = {"schema": SCHEMA}

    key: Mapped[str] = mapped_column(Text, primary_key=True)

    label: Mapped[str] = mapped_column(Text, nullable=False)
    placeholder: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # System fields map to a bookings column; custom fields live in bookings.custom_data.
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    field_type: Mapped[str] = mapped_column(Text, nullable=False, default="text")
    applies_to: Mapped[str] = mapped_column(Text, nullable=False, default="both")
    section: Mapped[str] = mapped_column(Text, nullable=False, default="additional")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    options: Mapped[list | None] = mapped_column(JSON, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = {"schema": SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    booking_id: Mapped[str | None] = mapped_column(
        ForeignKey(f"{SCHEMA}.bookings.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    doc_type: Mapped[str] = mapped_column(Text, nullable=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )

    booking: Mapped[Booking | None] = relationship(back_populates="documents")
