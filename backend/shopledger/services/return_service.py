# Overview: Owner-gated return workflow layered on posted sale lines.

"""
Return Workflow

WHY: Returns are disputed often enough that they must not touch stock or
money until someone with authority has looked at them. Creation records
intent; approval applies the effects.

DESIGN PRINCIPLES:
- Returns reference one line of a posted sale
- Sum of non-rejected return qty per line never exceeds the qty sold
- Owner approval required before stock is credited or cash paid out
- Approval bumps the sale line's version (returned_qty), which serializes
  it against other approvals and against cancelling the sale
- Refund cash movement is written at approval, reconciled on completion

LIFECYCLE:
1. Create return (pending)
2. Approve (owner) or reject
3. Mark refunded with the concrete payment reference
4. Complete once the refund's cash session has been closed
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import DocumentItem, ReturnTransaction
from ..errors import InvalidStateError, NotFoundError, OverReturnError, ValidationError
from ..states import (
    CashDirection,
    CashTransactionType,
    DocumentStatus,
    DocumentType,
    MovementType,
    PaymentMethod,
    PhoneStatus,
    ReturnStatus,
    SessionStatus,
    values,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import get_document
from .inventory_service import apply_delta, resolve_product
from .lifecycle_service import require_status, require_transition
from .ledger_service import append_audit_event
from .permission_service import require_elevated
from .register_service import record_cash_movement

logger = logging.getLogger(__name__)


def _load_return(store_id: int, return_id: int, *, lock: bool = False) -> ReturnTransaction:
    q = db.session.query(ReturnTransaction).filter_by(id=return_id, store_id=store_id)
    if lock:
        q = lock_for_update(q)
    ret = q.first()
    if not ret:
        raise NotFoundError(f"Return {return_id} not found")
    return ret


def _claimed_qty(sale_item_id: int, *, exclude_id: int | None = None) -> int:
    """Qty already claimed against a sale line by pending/approved/refunded/completed returns."""
    q = db.session.query(func.coalesce(func.sum(ReturnTransaction.qty), 0)).filter(
        ReturnTransaction.sale_item_id == sale_item_id,
        ReturnTransaction.status != ReturnStatus.REJECTED.value,
    )
    if exclude_id is not None:
        q = q.filter(ReturnTransaction.id != exclude_id)
    return int(q.scalar() or 0)


def _claimed_refund(sale_item_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(ReturnTransaction.refund_amount_cents), 0))
        .filter(
            ReturnTransaction.sale_item_id == sale_item_id,
            ReturnTransaction.status != ReturnStatus.REJECTED.value,
        )
        .scalar()
    )
    return int(total or 0)


def _ref(ret: ReturnTransaction) -> str:
    return f"RET-{ret.id}"


# =============================================================================
# CREATION
# =============================================================================

def create_return(
    store_id: int,
    *,
    sale_id: int,
    sale_item_id: int,
    qty: int,
    reason: str,
    user_id: int,
    refund_amount_cents: int | None = None,
    refund_method: str = PaymentMethod.CASH.value,
) -> ReturnTransaction:
    """
    Record a pending return against one line of a posted sale.

    The refund defaults to the line's net price for the returned qty.
    Nothing happens to stock or cash until approval.

    Raises:
        InvalidStateError: sale is not posted
        OverReturnError: qty exceeds sold qty minus qty already claimed
    """
    if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
        raise ValidationError("qty must be a positive integer")
    if not reason:
        raise ValidationError("Return reason is required")
    if refund_method not in values(PaymentMethod):
        raise ValidationError(f"Invalid refund method '{refund_method}'. Must be one of {values(PaymentMethod)}")
    if refund_amount_cents is not None and (
        not isinstance(refund_amount_cents, int) or isinstance(refund_amount_cents, bool) or refund_amount_cents < 0
    ):
        raise ValidationError("refund_amount_cents must be a non-negative integer")

    def _op():
        sale = get_document(store_id, sale_id)
        if sale.doc_type != DocumentType.SALE.value:
            raise ValidationError(f"Document {sale_id} is not a sale")
        require_status("document", sale, DocumentStatus.POSTED.value, action="create return")

        item = lock_for_update(
            db.session.query(DocumentItem).filter_by(id=sale_item_id, document_id=sale.id)
        ).first()
        if not item:
            raise NotFoundError(f"Item {sale_item_id} not found on sale {sale_id}")

        claimed = _claimed_qty(item.id)
        returnable = item.qty - claimed
        if qty > returnable:
            raise OverReturnError(
                f"Cannot return {qty}: {returnable} of {item.qty} still returnable on this line",
                details={"sale_item_id": item.id, "sold_qty": item.qty, "claimed_qty": claimed, "requested": qty},
            )

        refund = refund_amount_cents
        if refund is None:
            refund = item.line_total_cents * qty // item.qty
        refundable = item.line_total_cents - _claimed_refund(item.id)
        if refund > refundable:
            raise ValidationError(
                f"Refund of {refund} exceeds the {refundable} still refundable on this line",
                details={"sale_item_id": item.id, "refundable_cents": refundable},
            )

        ret = ReturnTransaction(
            store_id=store_id,
            sale_id=sale.id,
            sale_item_id=item.id,
            item_type=item.item_type,
            phone_id=item.phone_id,
            accessory_id=item.accessory_id,
            qty=qty,
            reason=reason,
            refund_amount_cents=refund,
            refund_method=refund_method,
            status=ReturnStatus.PENDING.value,
            created_by_user_id=user_id,
        )
        db.session.add(ret)
        db.session.flush()

        append_audit_event(
            store_id=store_id,
            event_type="return.created",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user_id,
            note=reason,
            payload={"sale_id": sale.id, "sale_item_id": item.id, "qty": qty, "refund_amount_cents": refund},
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


# =============================================================================
# APPROVAL / REJECTION
# =============================================================================

def approve_return(
    store_id: int,
    return_id: int,
    *,
    user,
    resellable: bool = True,
    notes: str | None = None,
) -> ReturnTransaction:
    """
    Approve a pending return and apply its effects.

    Accessories go back into quantity. A phone goes sold -> available when
    resellable, otherwise sold -> returned. A cash-out refund movement is
    appended when the refund amount is non-zero.
    """
    require_elevated(user, "approve returns")

    def _op():
        ret = _load_return(store_id, return_id, lock=True)
        require_transition("return", ret, ReturnStatus.APPROVED.value, label=_ref(ret))

        sale = get_document(store_id, ret.sale_id)
        require_status("document", sale, DocumentStatus.POSTED.value, action="approve return")

        item = lock_for_update(db.session.query(DocumentItem).filter_by(id=ret.sale_item_id)).first()
        if not item.stock_applied:
            raise InvalidStateError(f"Sale line {item.id} no longer holds stock", details={"sale_item_id": item.id})
        if item.returned_qty + ret.qty > item.qty:
            raise OverReturnError(
                f"Approving {_ref(ret)} would return more than was sold on this line",
                details={"sale_item_id": item.id, "sold_qty": item.qty, "returned_qty": item.returned_qty},
            )
        item.returned_qty += ret.qty

        kwargs = {
            "source_type": "return",
            "source_id": ret.id,
            "user_id": user.id,
            "note": _ref(ret),
            "movement_type": MovementType.RETURN.value,
        }
        product = resolve_product(store_id, ret.item_type, item.product_id, lock=True)
        if ret.phone_id is not None:
            apply_delta(product, PhoneStatus.AVAILABLE.value if resellable else PhoneStatus.RETURNED.value, **kwargs)
            ret.restocked = bool(resellable)
        else:
            apply_delta(product, ret.qty, **kwargs)
            ret.restocked = True

        if ret.refund_amount_cents > 0:
            movement = record_cash_movement(
                store_id=store_id,
                amount_cents=ret.refund_amount_cents,
                direction=CashDirection.OUT.value,
                method=ret.refund_method,
                transaction_type=CashTransactionType.REFUND.value,
                transaction_ref=_ref(ret),
                document_id=sale.id,
                user_id=user.id,
            )
            ret.refund_movement_id = movement.id

        ret.approved_by_user_id = user.id
        ret.approved_at = utcnow()
        ret.inspection_notes = notes

        append_audit_event(
            store_id=store_id,
            event_type="return.approved",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user.id,
            occurred_at=ret.approved_at,
            note=notes,
            payload={"qty": ret.qty, "restocked": ret.restocked, "refund_amount_cents": ret.refund_amount_cents},
        )
        db.session.commit()
        return ret

    ret = run_with_retry(_op)
    logger.info("Return %s approved: qty %d, refund %d cents", ret.id, ret.qty, ret.refund_amount_cents)
    return ret


def reject_return(store_id: int, return_id: int, *, user_id: int, reason: str) -> ReturnTransaction:
    if not reason:
        raise ValidationError("Rejection reason is required")

    def _op():
        ret = _load_return(store_id, return_id, lock=True)
        require_transition("return", ret, ReturnStatus.REJECTED.value, label=_ref(ret))
        ret.rejected_by_user_id = user_id
        ret.rejected_at = utcnow()
        ret.rejection_reason = reason
        append_audit_event(
            store_id=store_id,
            event_type="return.rejected",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user_id,
            note=reason,
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


# =============================================================================
# REFUND / COMPLETION
# =============================================================================

def mark_refunded(store_id: int, return_id: int, *, user_id: int, payment_ref: str) -> ReturnTransaction:
    """Record the concrete refund payment (receipt, transfer id) for an approved return."""
    if not payment_ref:
        raise ValidationError("payment_ref is required")

    def _op():
        ret = _load_return(store_id, return_id, lock=True)
        require_transition("return", ret, ReturnStatus.REFUNDED.value, label=_ref(ret))
        ret.refund_payment_ref = payment_ref
        ret.refunded_at = utcnow()
        append_audit_event(
            store_id=store_id,
            event_type="return.refunded",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user_id,
            payload={"payment_ref": payment_ref, "refund_amount_cents": ret.refund_amount_cents},
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


def complete_return(store_id: int, return_id: int, *, user_id: int) -> ReturnTransaction:
    """
    Close out a refunded return.

    When the refund went through a cash session, that session must be
    closed first so the refund is part of a reconciled drawer count.
    """
    def _op():
        ret = _load_return(store_id, return_id, lock=True)
        movement = ret.refund_movement
        if (
            ret.status == ReturnStatus.REFUNDED.value
            and movement is not None
            and movement.session is not None
            and movement.session.status != SessionStatus.CLOSED.value
        ):
            raise InvalidStateError(
                f"{_ref(ret)} cannot complete until cash session {movement.session_id} is closed",
                details={"return_id": ret.id, "session_id": movement.session_id},
            )
        require_transition("return", ret, ReturnStatus.COMPLETED.value, label=_ref(ret))
        ret.completed_at = utcnow()
        append_audit_event(
            store_id=store_id,
            event_type="return.completed",
            entity_type="return",
            entity_id=ret.id,
            actor_user_id=user_id,
        )
        db.session.commit()
        return ret

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(store_id: int, return_id: int) -> ReturnTransaction:
    return _load_return(store_id, return_id)


def get_sale_returns(store_id: int, sale_id: int) -> list[ReturnTransaction]:
    return (
        db.session.query(ReturnTransaction)
        .filter_by(store_id=store_id, sale_id=sale_id)
        .order_by(ReturnTransaction.id)
        .all()
    )


def list_returns(store_id: int, *, status: str | None = None, limit: int = 100) -> list[ReturnTransaction]:
    q = db.session.query(ReturnTransaction).filter_by(store_id=store_id)
    if status:
        if status not in values(ReturnStatus):
            raise ValidationError(f"Invalid status '{status}'")
        q = q.filter_by(status=status)
    return q.order_by(ReturnTransaction.id.desc()).limit(limit).all()


def get_returnable_qty(store_id: int, sale_item_id: int) -> int:
    item = db.session.get(DocumentItem, sale_item_id)
    if not item or item.document.store_id != store_id:
        raise NotFoundError(f"Sale item {sale_item_id} not found")
    return item.qty - _claimed_qty(item.id)
