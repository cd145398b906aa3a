from __future__ import annotations

from enum import StrEnum


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class VisaStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class PaymentMethod(StrEnum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    PAYSTACK = "paystack"


class AmendmentStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentType(StrEnum):
    PASSPORT = "passport"
    VISA = "visa"
    VACCINE_CERTIFICATE = "vaccine_certificate"
    FLIGHT_TICKET = "flight_ticket"
    PHOTO = "photo"
    PROOF_OF_PAYMENT = "proof_of_payment"
    OTHER = "other"


class Gender(StrEnum):
    MALE = "male"
    FEMALE = "female"


class CommissionType(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class UserRole(StrEnum):
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


class FieldSection(StrEnum):
    PILGRIM_INFO = "pilgrim_info"
    VISA_DETAILS = "visa_details"
    TRAVEL = "travel"
    ADDITIONAL = "additional"


class FieldScope(StrEnum):
    USER = "user"
    AGENT = "agent"
    BOTH = "both"


class FieldType(StrEnum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    SELECT = "select"
    FILE = "file"
