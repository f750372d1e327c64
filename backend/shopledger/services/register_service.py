# Overview: Cash register sessions and the append-only money movement log.

"""
Cash Session Ledger

WHY: End-of-day cash accountability. A session starts with a counted
opening balance, collects every money movement while it is open, and is
closed against a counted actual balance. The variance is recorded, never
forced to zero.

DESIGN PRINCIPLES:
- One open session per store at a time (service check + partial unique index)
- Movements are append-only and attach to whichever session is open
- expected = opening + cash in - cash out (cash method only)
- Sessions are immutable once closed
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegisterSession, CashMovement
from ..errors import NoOpenSessionError, NotFoundError, SessionAlreadyOpenError, ValidationError
from ..states import CashDirection, CashTransactionType, PaymentMethod, SessionStatus, values
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import require_transition
from .ledger_service import append_audit_event

logger = logging.getLogger(__name__)


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def get_open_session(store_id: int, *, lock: bool = False) -> CashRegisterSession | None:
    q = db.session.query(CashRegisterSession).filter_by(store_id=store_id, status=SessionStatus.OPEN.value)
    if lock:
        q = lock_for_update(q)
    return q.first()


def open_session(
    store_id: int,
    user_id: int,
    opening_balance_cents: int,
    notes: str | None = None,
) -> CashRegisterSession:
    """
    Open the store's cash session.

    Raises:
        SessionAlreadyOpenError: another session is open for this store,
            including one opened concurrently (caught at the unique index)
    """
    if not isinstance(opening_balance_cents, int) or isinstance(opening_balance_cents, bool) or opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents must be a non-negative integer")

    def _op():
        existing = get_open_session(store_id, lock=True)
        if existing:
            raise SessionAlreadyOpenError(
                f"Store already has an open cash session (session {existing.id})",
                details={"session_id": existing.id},
            )

        session = CashRegisterSession(
            store_id=store_id,
            status=SessionStatus.OPEN.value,
            opened_by_user_id=user_id,
            opened_at=utcnow(),
            opening_balance_cents=opening_balance_cents,
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise SessionAlreadyOpenError("Store already has an open cash session")

        append_audit_event(
            store_id=store_id,
            event_type="cash.session_opened",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=user_id,
            payload={"opening_balance_cents": opening_balance_cents},
        )
        db.session.commit()
        return session

    return run_with_retry(_op)


def close_session(
    store_id: int,
    user_id: int,
    actual_cash_cents: int,
    notes: str | None = None,
) -> CashRegisterSession:
    """
    Close the open session and freeze its reconciliation.

    difference = actual - expected, positive for overage, negative for
    shortage. Any difference is accepted and stored.
    """
    if not isinstance(actual_cash_cents, int) or isinstance(actual_cash_cents, bool) or actual_cash_cents < 0:
        raise ValidationError("actual_cash_cents must be a non-negative integer")

    def _op():
        session = get_open_session(store_id, lock=True)
        if not session:
            raise NoOpenSessionError("No open cash session for this store")

        expected = compute_expected_balance(session)
        require_transition("session", session, SessionStatus.CLOSED.value, label=f"cash session {session.id}")
        session.closed_by_user_id = user_id
        session.closed_at = utcnow()
        session.closing_balance_cents = actual_cash_cents
        session.expected_balance_cents = expected
        session.difference_cents = actual_cash_cents - expected
        if notes:
            session.notes = f"{session.notes}\n{notes}" if session.notes else notes

        append_audit_event(
            store_id=store_id,
            event_type="cash.session_closed",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=user_id,
            note=notes,
            payload={
                "expected_balance_cents": expected,
                "closing_balance_cents": actual_cash_cents,
                "difference_cents": session.difference_cents,
            },
        )
        db.session.commit()
        return session

    session = run_with_retry(_op)
    if session.difference_cents:
        logger.warning(
            "Cash session %s closed with variance %+d cents (expected %d, counted %d)",
            session.id, session.difference_cents, session.expected_balance_cents, session.closing_balance_cents,
        )
    else:
        logger.info("Cash session %s closed balanced at %d cents", session.id, session.closing_balance_cents)
    return session


# =============================================================================
# MOVEMENTS
# =============================================================================

def record_cash_movement(
    *,
    store_id: int,
    amount_cents: int,
    direction: str,
    method: str,
    transaction_type: str,
    transaction_ref: str | None = None,
    document_id: int | None = None,
    payment_id: int | None = None,
    expense_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> CashMovement:
    """
    Append a money movement inside the caller's transaction.

    The movement joins the store's open session if there is one and
    touches that session row, so a close racing with it fails its version
    check and recomputes the expected balance. With
    REQUIRE_OPEN_CASH_SESSION set, a cash-method movement without an open
    session raises NoOpenSessionError, which aborts the caller's whole
    operation.
    """
    if amount_cents <= 0:
        raise ValidationError("Movement amount must be positive")
    if direction not in values(CashDirection):
        raise ValidationError(f"Invalid direction '{direction}'")
    if method not in values(PaymentMethod):
        raise ValidationError(f"Invalid payment method '{method}'. Must be one of {values(PaymentMethod)}")
    if transaction_type not in values(CashTransactionType):
        raise ValidationError(f"Invalid transaction type '{transaction_type}'")

    session = get_open_session(store_id, lock=True)
    if session is None and method == PaymentMethod.CASH.value and current_app.config.get("REQUIRE_OPEN_CASH_SESSION"):
        raise NoOpenSessionError("Open the cash register before taking or paying out cash")

    movement = CashMovement(
        store_id=store_id,
        session_id=session.id if session else None,
        amount_cents=amount_cents,
        direction=direction,
        method=method,
        transaction_type=transaction_type,
        transaction_ref=transaction_ref,
        document_id=document_id,
        payment_id=payment_id,
        expense_id=expense_id,
        note=note,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    if session is not None:
        # Bumps the session version so a concurrent close re-reads its totals
        session.last_movement_at = utcnow()
    db.session.flush()
    return movement


def _cash_total(session_id: int, direction: str) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(CashMovement.amount_cents), 0))
        .filter(
            CashMovement.session_id == session_id,
            CashMovement.method == PaymentMethod.CASH.value,
            CashMovement.direction == direction,
        )
        .scalar()
    )
    return int(total or 0)


def compute_expected_balance(session: CashRegisterSession) -> int:
    """opening_balance + cash in - cash out over the session's movements."""
    return (
        session.opening_balance_cents
        + _cash_total(session.id, CashDirection.IN.value)
        - _cash_total(session.id, CashDirection.OUT.value)
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_session(store_id: int, session_id: int) -> CashRegisterSession:
    session = db.session.query(CashRegisterSession).filter_by(id=session_id, store_id=store_id).first()
    if not session:
        raise NotFoundError(f"Cash session {session_id} not found")
    return session


def list_sessions(store_id: int, *, status: str | None = None, limit: int = 50) -> list[CashRegisterSession]:
    q = db.session.query(CashRegisterSession).filter_by(store_id=store_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(CashRegisterSession.id.desc()).limit(limit).all()


def get_session_movements(session_id: int) -> list[CashMovement]:
    return db.session.query(CashMovement).filter_by(session_id=session_id).order_by(CashMovement.id).all()


def get_session_summary(session: CashRegisterSession) -> dict:
    """Totals per direction and method plus the live (or frozen) expected balance."""
    rows = (
        db.session.query(
            CashMovement.direction,
            CashMovement.method,
            func.count(CashMovement.id),
            func.coalesce(func.sum(CashMovement.amount_cents), 0),
        )
        .filter(CashMovement.session_id == session.id)
        .group_by(CashMovement.direction, CashMovement.method)
        .all()
    )
    by_method: dict[str, dict] = {}
    for direction, method, count, total in rows:
        bucket = by_method.setdefault(method, {"in_cents": 0, "out_cents": 0, "count_in": 0, "count_out": 0})
        bucket[f"{direction}_cents"] = int(total)
        bucket[f"count_{direction}"] = int(count)

    if session.status == SessionStatus.CLOSED.value:
        expected = session.expected_balance_cents
    else:
        expected = compute_expected_balance(session)

    cash = by_method.get(PaymentMethod.CASH.value, {})
    return {
        "session": session.to_dict(),
        "by_method": by_method,
        "cash_in_cents": cash.get("in_cents", 0),
        "cash_out_cents": cash.get("out_cents", 0),
        "expected_balance_cents": expected,
    }
