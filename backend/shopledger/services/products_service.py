# Overview: Phone and accessory master data with store-scoped code uniqueness.

from __future__ import annotations

import re

from ..extensions import db
from ..models import Phone, Accessory
from ..errors import DuplicateCodeError, NotFoundError, ValidationError
from ..states import MovementType, PhoneStatus
from .concurrency import run_with_retry
from .inventory_service import apply_quantity_delta, record_phone_intake

IMEI_PATTERN = re.compile(r"^\d{15,17}$")

# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


def normalize_imei(imei) -> str:
    value = str(imei or "").strip()
    if not IMEI_PATTERN.match(value):
        raise ValidationError("IMEI must be 15-17 digits", details={"imei": value})
    return value


def normalize_sku(sku) -> str:
    value = str(sku or "").strip()
    if not value:
        raise ValidationError("SKU is required")
    if len(value) > 64:
        raise ValidationError("SKU must be at most 64 characters")
    return value


def validate_price(name: str, value) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer number of cents")
    if value < 0 or value > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} must be between 0 and {MAX_PRICE_CENTS}")
    return value


def validate_count(name: str, value) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer")
    return value


def ensure_imei_available(store_id: int, imei: str, *, exclude_id: int | None = None) -> Phone | None:
    """
    Raise DuplicateCodeError if an active phone in the store already has this IMEI.

    Returns the inactive row holding the IMEI, if any, so purchase posting
    can reactivate it instead of inserting a duplicate.
    """
    existing = db.session.query(Phone).filter_by(store_id=store_id, imei=imei).first()
    if existing is None or existing.id == exclude_id:
        return None
    if existing.is_active:
        raise DuplicateCodeError(
            f"IMEI {imei} already exists in this store",
            details={"imei": imei, "phone_id": existing.id},
        )
    return existing


def ensure_sku_available(store_id: int, sku: str, *, exclude_id: int | None = None) -> None:
    existing = db.session.query(Accessory).filter_by(store_id=store_id, sku=sku).first()
    if existing is not None and existing.id != exclude_id:
        raise DuplicateCodeError(
            f"SKU {sku} already exists in this store",
            details={"sku": sku, "accessory_id": existing.id},
        )


# =============================================================================
# PHONES
# =============================================================================

def create_phone(
    store_id: int,
    *,
    imei: str,
    name: str,
    buy_price_cents: int = 0,
    sell_price_cents: int = 0,
    user_id: int | None = None,
) -> Phone:
    """Register a handset already on hand (opening stock). Purchases create phones on posting."""
    imei = normalize_imei(imei)
    if not name:
        raise ValidationError("name is required")
    validate_price("buy_price_cents", buy_price_cents)
    validate_price("sell_price_cents", sell_price_cents)

    def _op():
        if ensure_imei_available(store_id, imei) is not None:
            raise DuplicateCodeError(f"IMEI {imei} belongs to a removed phone; purchase it to restock")
        phone = Phone(
            store_id=store_id,
            imei=imei,
            name=name,
            buy_price_cents=buy_price_cents,
            sell_price_cents=sell_price_cents,
            status=PhoneStatus.AVAILABLE.value,
            is_active=True,
        )
        db.session.add(phone)
        db.session.flush()
        record_phone_intake(phone, source_type="adjustment", source_id=None, user_id=user_id, note="Opening stock")
        db.session.commit()
        return phone

    return run_with_retry(_op)


def update_phone(store_id: int, phone_id: int, **fields) -> Phone:
    """Edit descriptive fields and prices. Status is not editable here."""
    allowed = {"imei", "name", "buy_price_cents", "sell_price_cents"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    def _op():
        phone = db.session.query(Phone).filter_by(id=phone_id, store_id=store_id).first()
        if not phone:
            raise NotFoundError(f"Phone {phone_id} not found")
        if "imei" in fields:
            imei = normalize_imei(fields["imei"])
            if imei != phone.imei:
                if ensure_imei_available(store_id, imei, exclude_id=phone.id) is not None:
                    raise DuplicateCodeError(f"IMEI {imei} already exists in this store")
                phone.imei = imei
        if "name" in fields:
            if not fields["name"]:
                raise ValidationError("name is required")
            phone.name = fields["name"]
        for key in ("buy_price_cents", "sell_price_cents"):
            if key in fields:
                setattr(phone, key, validate_price(key, fields[key]))
        db.session.commit()
        return phone

    return run_with_retry(_op)


def list_phones(store_id: int, *, status: str | None = None, include_inactive: bool = False) -> list[Phone]:
    q = db.session.query(Phone).filter_by(store_id=store_id)
    if status:
        q = q.filter_by(status=status)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(Phone.id).all()


def get_phone_by_imei(store_id: int, imei: str) -> Phone | None:
    return db.session.query(Phone).filter_by(store_id=store_id, imei=str(imei).strip()).first()


# =============================================================================
# ACCESSORIES
# =============================================================================

def create_accessory(
    store_id: int,
    *,
    sku: str,
    name: str,
    quantity: int = 0,
    min_qty: int = 0,
    buy_price_cents: int = 0,
    sell_price_cents: int = 0,
    user_id: int | None = None,
) -> Accessory:
    """Create an accessory; a non-zero opening quantity is recorded as an adjustment movement."""
    sku = normalize_sku(sku)
    if not name:
        raise ValidationError("name is required")
    validate_count("quantity", quantity)
    validate_count("min_qty", min_qty)
    validate_price("buy_price_cents", buy_price_cents)
    validate_price("sell_price_cents", sell_price_cents)

    def _op():
        ensure_sku_available(store_id, sku)
        accessory = Accessory(
            store_id=store_id,
            sku=sku,
            name=name,
            quantity=0,
            min_qty=min_qty,
            buy_price_cents=buy_price_cents,
            sell_price_cents=sell_price_cents,
            is_active=True,
        )
        db.session.add(accessory)
        db.session.flush()
        if quantity:
            apply_quantity_delta(
                accessory,
                quantity,
                source_type="adjustment",
                user_id=user_id,
                note="Opening stock",
                movement_type=MovementType.ADJUSTMENT.value,
            )
        db.session.commit()
        return accessory

    return run_with_retry(_op)


def update_accessory(store_id: int, accessory_id: int, **fields) -> Accessory:
    """Edit master data. Quantity changes go through documents or adjustments."""
    allowed = {"sku", "name", "min_qty", "buy_price_cents", "sell_price_cents", "is_active"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

    def _op():
        accessory = db.session.query(Accessory).filter_by(id=accessory_id, store_id=store_id).first()
        if not accessory:
            raise NotFoundError(f"Accessory {accessory_id} not found")
        if "sku" in fields:
            sku = normalize_sku(fields["sku"])
            if sku != accessory.sku:
                ensure_sku_available(store_id, sku, exclude_id=accessory.id)
                accessory.sku = sku
        if "name" in fields:
            if not fields["name"]:
                raise ValidationError("name is required")
            accessory.name = fields["name"]
        if "min_qty" in fields:
            accessory.min_qty = validate_count("min_qty", fields["min_qty"])
        for key in ("buy_price_cents", "sell_price_cents"):
            if key in fields:
                setattr(accessory, key, validate_price(key, fields[key]))
        if "is_active" in fields:
            accessory.is_active = bool(fields["is_active"])
        db.session.commit()
        return accessory

    return run_with_retry(_op)


def list_accessories(store_id: int, *, low_stock_only: bool = False, include_inactive: bool = False) -> list[Accessory]:
    q = db.session.query(Accessory).filter_by(store_id=store_id)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    if low_stock_only:
        q = q.filter(Accessory.quantity <= Accessory.min_qty)
    return q.order_by(Accessory.sku).all()
