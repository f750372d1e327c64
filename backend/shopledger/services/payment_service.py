# Overview: Payments against posted documents and the derived counterparty balances.

"""
Payment / Balance Reconciler

WHY: Keeps paid vs. total consistent per document and answers "who owes
us / whom do we owe" without a cached balance that could drift.

DESIGN PRINCIPLES:
- 0 <= paid_cents <= total_cents and remaining = total - paid after every
  mutation; an amount above the remaining balance is refused, not clamped
- Every captured payment is a Payment row plus a CashMovement (sale = in,
  purchase = out) in the same transaction
- Aggregate debt is computed from posted documents on every read
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Customer, Document, Payment, Supplier
from ..errors import NotFoundError, OverPaymentError, ValidationError
from ..states import (
    CashDirection,
    DocumentStatus,
    DocumentType,
    PaymentMethod,
    PaymentStatus,
    values,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import require_status
from .ledger_service import append_audit_event
from .register_service import record_cash_movement

logger = logging.getLogger(__name__)

COUNTERPARTY_KINDS = {
    "customer": (Customer, DocumentType.SALE.value, Document.customer_id),
    "supplier": (Supplier, DocumentType.PURCHASE.value, Document.supplier_id),
}


def _payment_direction(document: Document) -> str:
    return CashDirection.IN.value if document.is_sale else CashDirection.OUT.value


def capture_payment(
    document: Document,
    amount_cents: int,
    *,
    method: str = PaymentMethod.CASH.value,
    reference: str | None = None,
    user_id: int,
) -> Payment:
    """
    Apply a payment to a locked, posted document inside the caller's transaction.

    Raises:
        ValidationError: amount not a positive integer, unknown method
        InvalidStateError: document is not posted
        OverPaymentError: amount exceeds remaining_cents
    """
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("Payment amount must be a positive integer number of cents")
    if method not in values(PaymentMethod):
        raise ValidationError(f"Invalid payment method '{method}'. Must be one of {values(PaymentMethod)}")

    require_status("document", document, DocumentStatus.POSTED.value, action="record payment")

    if amount_cents > document.remaining_cents:
        raise OverPaymentError(
            f"Payment of {amount_cents} exceeds remaining balance of {document.remaining_cents}",
            details={
                "document_id": document.id,
                "amount_cents": amount_cents,
                "remaining_cents": document.remaining_cents,
            },
        )

    payment = Payment(
        store_id=document.store_id,
        document_id=document.id,
        amount_cents=amount_cents,
        method=method,
        reference=reference,
        status=PaymentStatus.CAPTURED.value,
        created_by_user_id=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    document.paid_cents += amount_cents
    document.remaining_cents = document.total_cents - document.paid_cents

    record_cash_movement(
        store_id=document.store_id,
        amount_cents=amount_cents,
        direction=_payment_direction(document),
        method=method,
        transaction_type=document.doc_type,
        transaction_ref=document.document_number,
        document_id=document.id,
        payment_id=payment.id,
        user_id=user_id,
    )

    append_audit_event(
        store_id=document.store_id,
        event_type=f"{document.doc_type}.payment_recorded",
        entity_type="document",
        entity_id=document.id,
        actor_user_id=user_id,
        payload={
            "payment_id": payment.id,
            "amount_cents": amount_cents,
            "method": method,
            "paid_cents": document.paid_cents,
            "remaining_cents": document.remaining_cents,
        },
    )
    return payment


def record_payment(
    store_id: int,
    document_id: int,
    amount_cents: int,
    *,
    user_id: int,
    method: str = PaymentMethod.CASH.value,
    reference: str | None = None,
) -> Payment:
    """Record a payment against a posted sale or purchase."""
    def _op():
        document = lock_for_update(
            db.session.query(Document).filter_by(id=document_id, store_id=store_id)
        ).first()
        if not document:
            raise NotFoundError(f"Document {document_id} not found")

        payment = capture_payment(document, amount_cents, method=method, reference=reference, user_id=user_id)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info(
        "Payment %s of %d cents (%s) recorded on document %s",
        payment.id, payment.amount_cents, payment.method, payment.document_id,
    )
    return payment


def void_document_payments(document: Document, *, user_id: int) -> int:
    """
    Void every captured payment on a document being cancelled.

    Each void appends a reversing CashMovement (the opposite direction of
    the original) instead of touching the original movement. Returns the
    total voided, in cents. Runs inside the caller's transaction.
    """
    reverse_direction = CashDirection.OUT.value if document.is_sale else CashDirection.IN.value
    voided = 0
    now = utcnow()
    for payment in document.payments:
        if payment.status != PaymentStatus.CAPTURED.value:
            continue
        payment.status = PaymentStatus.VOIDED.value
        payment.voided_at = now
        record_cash_movement(
            store_id=document.store_id,
            amount_cents=payment.amount_cents,
            direction=reverse_direction,
            method=payment.method,
            transaction_type=document.doc_type,
            transaction_ref=document.document_number,
            document_id=document.id,
            payment_id=payment.id,
            user_id=user_id,
            note=f"Reversal of payment {payment.id}",
        )
        voided += payment.amount_cents

    document.paid_cents = 0
    document.remaining_cents = document.total_cents
    return voided


def recompute_balance(document: Document) -> tuple[int, int]:
    """
    Recalculate (paid_cents, remaining_cents) from captured payments.

    Used by the invariant checker; the write path maintains the columns
    incrementally under the document lock.
    """
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.document_id == document.id, Payment.status == PaymentStatus.CAPTURED.value)
        .scalar()
    )
    paid = int(paid or 0)
    return paid, document.total_cents - paid


def list_payments(store_id: int, document_id: int) -> list[Payment]:
    return (
        db.session.query(Payment)
        .filter_by(store_id=store_id, document_id=document_id)
        .order_by(Payment.id)
        .all()
    )


# =============================================================================
# COUNTERPARTY BALANCES
# =============================================================================

def _kind(kind: str):
    try:
        return COUNTERPARTY_KINDS[kind]
    except KeyError:
        raise ValidationError(f"Invalid counterparty kind '{kind}'. Must be customer or supplier")


def _posted_aggregates(store_id: int, kind: str, counterparty_id: int | None = None):
    _, doc_type, fk = _kind(kind)
    q = (
        db.session.query(
            fk,
            func.count(Document.id),
            func.coalesce(func.sum(Document.total_cents), 0),
            func.coalesce(func.sum(Document.paid_cents), 0),
            func.coalesce(func.sum(Document.remaining_cents), 0),
        )
        .filter(
            Document.store_id == store_id,
            Document.doc_type == doc_type,
            Document.status == DocumentStatus.POSTED.value,
            fk.isnot(None),
        )
    )
    if counterparty_id is not None:
        q = q.filter(fk == counterparty_id)
    return {
        row[0]: {
            "doc_count": int(row[1]),
            "total_spent_cents": int(row[2]),
            "paid_cents": int(row[3]),
            "outstanding_cents": int(row[4]),
        }
        for row in q.group_by(fk).all()
    }


def _empty_balance() -> dict:
    return {"doc_count": 0, "total_spent_cents": 0, "paid_cents": 0, "outstanding_cents": 0}


def get_counterparty_balance(store_id: int, kind: str, counterparty_id: int) -> dict:
    """total_spent, paid and outstanding over the counterparty's posted documents."""
    model, _, _ = _kind(kind)
    counterparty = db.session.query(model).filter_by(id=counterparty_id, store_id=store_id).first()
    if not counterparty:
        raise NotFoundError(f"{kind.capitalize()} {counterparty_id} not found")

    balance = _posted_aggregates(store_id, kind, counterparty_id).get(counterparty_id, _empty_balance())
    return {"kind": kind, "counterparty": counterparty.to_dict(), **balance}


def list_balances(store_id: int, kind: str, *, outstanding_only: bool = False) -> list[dict]:
    model, _, _ = _kind(kind)
    aggregates = _posted_aggregates(store_id, kind)
    rows = []
    for counterparty in db.session.query(model).filter_by(store_id=store_id).order_by(model.name).all():
        balance = aggregates.get(counterparty.id, _empty_balance())
        if outstanding_only and balance["outstanding_cents"] <= 0:
            continue
        rows.append({"kind": kind, "counterparty": counterparty.to_dict(), **balance})
    return rows


def get_total_debt(store_id: int, kind: str) -> int:
    """Sum of remaining_cents over all posted documents of this kind."""
    _, doc_type, _ = _kind(kind)
    total = (
        db.session.query(func.coalesce(func.sum(Document.remaining_cents), 0))
        .filter(
            Document.store_id == store_id,
            Document.doc_type == doc_type,
            Document.status == DocumentStatus.POSTED.value,
        )
        .scalar()
    )
    return int(total or 0)


def get_high_risk(store_id: int, kind: str, threshold: float | None = None) -> list[dict]:
    """
    Counterparties whose outstanding / total_spent exceeds the threshold.

    Counterparties with no spend are skipped rather than rated infinite.
    """
    if threshold is None:
        threshold = current_app.config["HIGH_RISK_THRESHOLD"]
    if threshold < 0:
        raise ValidationError("threshold must be non-negative")

    flagged = []
    for row in list_balances(store_id, kind):
        if row["total_spent_cents"] <= 0:
            continue
        ratio = row["outstanding_cents"] / row["total_spent_cents"]
        if ratio > threshold:
            flagged.append({**row, "risk_ratio": round(ratio, 4)})
    flagged.sort(key=lambda r: r["risk_ratio"], reverse=True)
    return flagged
