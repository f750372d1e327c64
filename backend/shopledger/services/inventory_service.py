# Overview: Stock ledger; the only code that changes on-hand quantity or phone status.

"""
Stock Ledger

Single source of truth for on-hand stock:
- Accessory (bulk): integer quantity, never below zero.
- Phone (serialized): quantity is always 1; "stock" is the status, moved
  only along lifecycle_service.PHONE_TRANSITIONS.

The product kind is resolved once, at the boundary (`resolve_product`),
into a Phone or an Accessory; `apply_delta` then dispatches on that type.
A bulk delta is an int, a serialized delta is the target status.

Nothing here commits. Callers run these helpers inside their own
`run_with_retry` unit so the stock change and the document/return status
change land together or not at all. Every change writes a StockMovement.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Phone, Accessory, StockMovement
from ..errors import NegativeStockError, NotFoundError, ValidationError
from ..states import ItemType, MovementType, PhoneStatus, values
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import require_transition
from .ledger_service import append_audit_event

logger = logging.getLogger(__name__)


# Phone status changes that move a unit into / out of sellable stock
_PHONE_STOCK_SIGN = {
    PhoneStatus.AVAILABLE.value: 1,
}


def _model_for(item_type: str):
    if item_type == ItemType.PHONE.value:
        return Phone
    if item_type == ItemType.ACCESSORY.value:
        return Accessory
    raise ValidationError(f"Invalid item_type '{item_type}'. Must be one of {values(ItemType)}")


def resolve_product(store_id: int, item_type: str, product_id: int, *, lock: bool = False):
    """Load a Phone or Accessory by kind and id, scoped to the store."""
    model = _model_for(item_type)
    q = db.session.query(model).filter_by(id=product_id, store_id=store_id)
    if lock:
        q = lock_for_update(q)
    product = q.first()
    if not product:
        raise NotFoundError(f"{item_type.capitalize()} {product_id} not found")
    return product


def is_low_stock(accessory: Accessory) -> bool:
    """Derived on every read: quantity <= min_qty."""
    return accessory.quantity <= accessory.min_qty


def _record_movement(
    product,
    *,
    movement_type: str,
    quantity_delta: int,
    source_type: str,
    source_id: int | None,
    user_id: int | None,
    note: str | None,
    from_status: str | None = None,
    to_status: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        store_id=product.store_id,
        item_type=product.item_type,
        phone_id=product.id if isinstance(product, Phone) else None,
        accessory_id=product.id if isinstance(product, Accessory) else None,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        from_status=from_status,
        to_status=to_status,
        source_type=source_type,
        source_id=source_id,
        note=note,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    return movement


def apply_quantity_delta(
    accessory: Accessory,
    delta: int,
    *,
    source_type: str,
    source_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    movement_type: str | None = None,
) -> Accessory:
    """
    Add `delta` to an accessory's quantity.

    Raises NegativeStockError if the result would drop below zero; the
    accessory is left untouched in that case.
    """
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise ValidationError("Accessory delta must be an integer")
    if delta == 0:
        raise ValidationError("Accessory delta must be non-zero")

    new_quantity = accessory.quantity + delta
    if new_quantity < 0:
        raise NegativeStockError(
            f"Accessory {accessory.sku} would go negative ({accessory.quantity} {delta:+d})",
            details={"accessory_id": accessory.id, "quantity": accessory.quantity, "delta": delta},
        )

    accessory.quantity = new_quantity
    _record_movement(
        accessory,
        movement_type=movement_type or (MovementType.IN.value if delta > 0 else MovementType.OUT.value),
        quantity_delta=delta,
        source_type=source_type,
        source_id=source_id,
        user_id=user_id,
        note=note,
    )
    return accessory


def transition_phone(
    phone: Phone,
    to_status: str,
    *,
    source_type: str,
    source_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    movement_type: str | None = None,
) -> Phone:
    """
    Move a phone along the serialized-stock transition table.

    Raises InvalidTransitionError for anything not listed (sold -> sold,
    damaged -> sold, ...).
    """
    from_status = phone.status
    require_transition("phone", phone, to_status, label=f"phone {phone.imei}")

    delta = _PHONE_STOCK_SIGN.get(to_status, 0) - _PHONE_STOCK_SIGN.get(from_status, 0)
    if movement_type is None:
        if delta > 0:
            movement_type = MovementType.IN.value
        elif delta < 0:
            movement_type = MovementType.OUT.value
        else:
            movement_type = MovementType.ADJUSTMENT.value

    _record_movement(
        phone,
        movement_type=movement_type,
        quantity_delta=delta,
        source_type=source_type,
        source_id=source_id,
        user_id=user_id,
        note=note,
        from_status=from_status,
        to_status=to_status,
    )
    return phone


def apply_delta(product, delta, **kwargs):
    """
    Apply a stock delta to a resolved product.

    Accessory: `delta` is a signed int. Phone: `delta` is the target status.
    """
    if isinstance(product, Accessory):
        return apply_quantity_delta(product, delta, **kwargs)
    if isinstance(product, Phone):
        if delta not in values(PhoneStatus):
            raise ValidationError(f"Phone delta must be a status, got {delta!r}")
        return transition_phone(product, delta, **kwargs)
    raise ValidationError(f"Unsupported product {product!r}")


def record_phone_intake(phone: Phone, *, source_type: str, source_id: int | None, user_id: int | None, note: str | None) -> None:
    """Movement for a handset entering stock as a new row (no prior status)."""
    _record_movement(
        phone,
        movement_type=MovementType.IN.value,
        quantity_delta=1,
        source_type=source_type,
        source_id=source_id,
        user_id=user_id,
        note=note,
        to_status=phone.status,
    )


def record_phone_removal(phone: Phone, *, source_type: str, source_id: int | None, user_id: int | None, note: str | None) -> None:
    """Movement for a handset leaving stock entirely (cancelled purchase)."""
    _record_movement(
        phone,
        movement_type=MovementType.OUT.value,
        quantity_delta=-1,
        source_type=source_type,
        source_id=source_id,
        user_id=user_id,
        note=note,
        from_status=phone.status,
    )


# =============================================================================
# MANUAL ADJUSTMENTS
# =============================================================================

def adjust_accessory_stock(
    store_id: int,
    accessory_id: int,
    delta: int,
    *,
    reason: str,
    user_id: int,
) -> Accessory:
    """Stock count correction outside any document (damage, recount, shrinkage)."""
    if not reason:
        raise ValidationError("Adjustment reason is required")

    def _op():
        accessory = resolve_product(store_id, ItemType.ACCESSORY.value, accessory_id, lock=True)
        before = accessory.quantity
        apply_quantity_delta(
            accessory,
            delta,
            source_type="adjustment",
            user_id=user_id,
            note=reason,
            movement_type=MovementType.ADJUSTMENT.value,
        )
        append_audit_event(
            store_id=store_id,
            event_type="inventory.adjusted",
            entity_type="accessory",
            entity_id=accessory.id,
            actor_user_id=user_id,
            note=reason,
            payload={"before": before, "delta": delta, "after": accessory.quantity},
        )
        db.session.commit()
        return accessory

    accessory = run_with_retry(_op)
    logger.info("Accessory %s adjusted by %+d (%s)", accessory.sku, delta, reason)
    return accessory


def set_phone_status(
    store_id: int,
    phone_id: int,
    to_status: str,
    *,
    user_id: int,
    note: str | None = None,
) -> Phone:
    """
    Manual status change for a handset (reserve, mark damaged, repair).

    Sold phones only leave 'sold' through a sale cancel or an approved
    return, so those transitions are refused here.
    """
    if to_status not in values(PhoneStatus):
        raise ValidationError(f"Invalid phone status '{to_status}'. Must be one of {values(PhoneStatus)}")

    def _op():
        phone = resolve_product(store_id, ItemType.PHONE.value, phone_id, lock=True)
        if phone.status == PhoneStatus.SOLD.value or to_status == PhoneStatus.SOLD.value:
            raise ValidationError("Sold status is managed by sales, cancellations and returns only")
        from_status = phone.status
        transition_phone(phone, to_status, source_type="adjustment", user_id=user_id, note=note)
        append_audit_event(
            store_id=store_id,
            event_type="inventory.phone_status_changed",
            entity_type="phone",
            entity_id=phone.id,
            actor_user_id=user_id,
            note=note,
            payload={"from": from_status, "to": to_status},
        )
        db.session.commit()
        return phone

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_low_stock_accessories(store_id: int) -> list[Accessory]:
    return (
        db.session.query(Accessory)
        .filter(
            Accessory.store_id == store_id,
            Accessory.is_active.is_(True),
            Accessory.quantity <= Accessory.min_qty,
        )
        .order_by(Accessory.quantity, Accessory.sku)
        .all()
    )


def get_movements(
    store_id: int,
    *,
    item_type: str | None = None,
    product_id: int | None = None,
    limit: int = 200,
) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter_by(store_id=store_id)
    if item_type:
        _model_for(item_type)
        q = q.filter_by(item_type=item_type)
        if product_id is not None:
            column = StockMovement.phone_id if item_type == ItemType.PHONE.value else StockMovement.accessory_id
            q = q.filter(column == product_id)
    return q.order_by(StockMovement.id.desc()).limit(limit).all()
