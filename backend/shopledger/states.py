# Overview: Enumerated lifecycle states shared by models and services.

from __future__ import annotations

from enum import Enum


class DocumentType(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    CANCELLED = "cancelled"


class ItemType(str, Enum):
    PHONE = "phone"
    ACCESSORY = "accessory"


class PhoneStatus(str, Enum):
    AVAILABLE = "available"
    SOLD = "sold"
    RETURNED = "returned"
    DAMAGED = "damaged"
    RESERVED = "reserved"


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    CAPTURED = "captured"
    VOIDED = "voided"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    OTHER = "other"


class CashDirection(str, Enum):
    IN = "in"
    OUT = "out"


class CashTransactionType(str, Enum):
    SALE = "sale"
    PURCHASE = "purchase"
    EXPENSE = "expense"
    REFUND = "refund"


class MovementType(str, Enum):
    IN = "in"
    OUT = "out"
    RETURN = "return"
    ADJUSTMENT = "adjustment"


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    SELLER = "seller"
    TECHNICIAN = "technician"


def values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
