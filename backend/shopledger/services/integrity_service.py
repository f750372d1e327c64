# Overview: Read-only consistency checks over the persisted ledger.

"""
Ledger integrity checks

Every rule here is also enforced on the write path. This module re-derives
them from stored rows so drift (manual SQL, a bad migration) is visible.
Each check returns a list of problem dicts; an empty list means clean.
"""

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Accessory, CashRegisterSession, Document, DocumentItem, Phone, ReturnTransaction
from ..states import DocumentStatus, PhoneStatus, ReturnStatus, SessionStatus
from .payment_service import recompute_balance
from .register_service import compute_expected_balance


def check_document_balances(store_id: int) -> list[dict]:
    problems = []
    for document in db.session.query(Document).filter_by(store_id=store_id).order_by(Document.id):
        if document.remaining_cents != document.total_cents - document.paid_cents:
            problems.append({"check": "remaining_mismatch", "document_id": document.id})
        if not 0 <= document.paid_cents <= document.total_cents:
            problems.append({"check": "paid_out_of_bounds", "document_id": document.id})
        if document.status == DocumentStatus.POSTED.value:
            paid, _ = recompute_balance(document)
            if paid != document.paid_cents:
                problems.append({
                    "check": "paid_vs_payments",
                    "document_id": document.id,
                    "stored": document.paid_cents,
                    "captured": paid,
                })
            line_sum = sum(item.line_total_cents for item in document.items)
            if line_sum != document.total_cents:
                problems.append({"check": "total_vs_lines", "document_id": document.id})
    return problems


def check_stock(store_id: int) -> list[dict]:
    problems = [
        {"check": "negative_quantity", "accessory_id": a.id, "quantity": a.quantity}
        for a in db.session.query(Accessory).filter(Accessory.store_id == store_id, Accessory.quantity < 0)
    ]

    # A phone is sold by at most one posted sale line still holding stock
    rows = (
        db.session.query(DocumentItem.phone_id, func.count(DocumentItem.id))
        .join(Document, Document.id == DocumentItem.document_id)
        .filter(
            Document.store_id == store_id,
            Document.doc_type == "sale",
            Document.status == DocumentStatus.POSTED.value,
            DocumentItem.phone_id.isnot(None),
            DocumentItem.stock_applied.is_(True),
            DocumentItem.returned_qty == 0,
        )
        .group_by(DocumentItem.phone_id)
        .all()
    )
    for phone_id, count in rows:
        phone = db.session.get(Phone, phone_id)
        if count > 1 or phone.status != PhoneStatus.SOLD.value:
            problems.append({"check": "phone_sale_state", "phone_id": phone_id, "open_sales": count, "status": phone.status})
    return problems


def check_returns(store_id: int) -> list[dict]:
    problems = []
    rows = (
        db.session.query(ReturnTransaction.sale_item_id, func.sum(ReturnTransaction.qty))
        .filter(
            ReturnTransaction.store_id == store_id,
            ReturnTransaction.status.in_([
                ReturnStatus.APPROVED.value,
                ReturnStatus.REFUNDED.value,
                ReturnStatus.COMPLETED.value,
            ]),
        )
        .group_by(ReturnTransaction.sale_item_id)
        .all()
    )
    for sale_item_id, approved_qty in rows:
        item = db.session.get(DocumentItem, sale_item_id)
        if approved_qty > item.qty or approved_qty != item.returned_qty:
            problems.append({
                "check": "return_qty",
                "sale_item_id": sale_item_id,
                "sold": item.qty,
                "approved": int(approved_qty),
                "recorded": item.returned_qty,
            })
    return problems


def check_sessions(store_id: int) -> list[dict]:
    open_count = (
        db.session.query(func.count(CashRegisterSession.id))
        .filter_by(store_id=store_id, status=SessionStatus.OPEN.value)
        .scalar()
    )
    problems = []
    if open_count > 1:
        problems.append({"check": "multiple_open_sessions", "count": open_count})
    closed = db.session.query(CashRegisterSession).filter_by(store_id=store_id, status=SessionStatus.CLOSED.value).all()
    for session in closed:
        if session.difference_cents != session.closing_balance_cents - session.expected_balance_cents:
            problems.append({"check": "session_difference", "session_id": session.id})
        recomputed = compute_expected_balance(session)
        if recomputed != session.expected_balance_cents:
            problems.append({
                "check": "session_expected",
                "session_id": session.id,
                "stored": session.expected_balance_cents,
                "movements": recomputed,
            })
    return problems


def verify_store(store_id: int) -> dict[str, list[dict]]:
    return {
        "documents": check_document_balances(store_id),
        "stock": check_stock(store_id),
        "returns": check_returns(store_id),
        "sessions": check_sessions(store_id),
    }
