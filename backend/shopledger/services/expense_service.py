# Overview: Operating expenses; paying one moves money out through the cash ledger.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Expense
from ..errors import NotFoundError, ValidationError
from ..states import CashDirection, CashTransactionType, ExpenseStatus, PaymentMethod, values
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .lifecycle_service import require_transition
from .ledger_service import append_audit_event
from .register_service import record_cash_movement

logger = logging.getLogger(__name__)


def _load_expense(store_id: int, expense_id: int, *, lock: bool = False) -> Expense:
    q = db.session.query(Expense).filter_by(id=expense_id, store_id=store_id)
    if lock:
        q = lock_for_update(q)
    expense = q.first()
    if not expense:
        raise NotFoundError(f"Expense {expense_id} not found")
    return expense


def create_expense(
    store_id: int,
    *,
    category: str,
    amount_cents: int,
    user_id: int,
    method: str = PaymentMethod.CASH.value,
    description: str | None = None,
) -> Expense:
    if not category:
        raise ValidationError("category is required")
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if method not in values(PaymentMethod):
        raise ValidationError(f"Invalid payment method '{method}'. Must be one of {values(PaymentMethod)}")

    def _op():
        expense = Expense(
            store_id=store_id,
            category=category,
            description=description,
            amount_cents=amount_cents,
            method=method,
            status=ExpenseStatus.PENDING.value,
            created_by_user_id=user_id,
        )
        db.session.add(expense)
        db.session.flush()
        append_audit_event(
            store_id=store_id,
            event_type="expense.created",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=user_id,
            note=description,
            payload={"category": category, "amount_cents": amount_cents, "method": method},
        )
        db.session.commit()
        return expense

    return run_with_retry(_op)


def pay_expense(store_id: int, expense_id: int, *, user_id: int) -> Expense:
    """pending -> paid, appending an out/expense cash movement."""
    def _op():
        expense = _load_expense(store_id, expense_id, lock=True)
        require_transition("expense", expense, ExpenseStatus.PAID.value, label=f"EXP-{expense.id}")
        expense.paid_at = utcnow()
        record_cash_movement(
            store_id=store_id,
            amount_cents=expense.amount_cents,
            direction=CashDirection.OUT.value,
            method=expense.method,
            transaction_type=CashTransactionType.EXPENSE.value,
            transaction_ref=f"EXP-{expense.id}",
            expense_id=expense.id,
            user_id=user_id,
            note=expense.category,
        )
        append_audit_event(
            store_id=store_id,
            event_type="expense.paid",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=user_id,
            payload={"amount_cents": expense.amount_cents, "method": expense.method},
        )
        db.session.commit()
        return expense

    expense = run_with_retry(_op)
    logger.info("Expense %s paid: %d cents (%s)", expense.id, expense.amount_cents, expense.category)
    return expense


def cancel_expense(store_id: int, expense_id: int, *, user_id: int) -> Expense:
    def _op():
        expense = _load_expense(store_id, expense_id, lock=True)
        require_transition("expense", expense, ExpenseStatus.CANCELLED.value, label=f"EXP-{expense.id}")
        expense.cancelled_at = utcnow()
        append_audit_event(
            store_id=store_id,
            event_type="expense.cancelled",
            entity_type="expense",
            entity_id=expense.id,
            actor_user_id=user_id,
        )
        db.session.commit()
        return expense

    return run_with_retry(_op)


def get_expense(store_id: int, expense_id: int) -> Expense:
    return _load_expense(store_id, expense_id)


def list_expenses(store_id: int, *, status: str | None = None, limit: int = 100) -> list[Expense]:
    q = db.session.query(Expense).filter_by(store_id=store_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Expense.id.desc()).limit(limit).all()
