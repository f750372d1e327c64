from __future__ import annotations

from sqlalchemy import event, text

from ..extensions import db
from ..states import SessionStatus
from ..time_utils import to_utc_z


class CashRegisterSession(db.Model):
    """
    Cash register session (one business day / shift of the drawer).

    LIFECYCLE: open -> closed. At most one open session per store; the
    partial unique index backs the service-level check so a racing second
    open fails at commit instead of silently succeeding.

    IMMUTABLE once closed: closing_balance_cents, expected_balance_cents and
    difference_cents are frozen at close time.
    """
    __tablename__ = "cash_register_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open_per_store",
            "store_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SessionStatus.OPEN.value, index=True)

    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closing_balance_cents = db.Column(db.Integer, nullable=True)  # actual cash counted
    expected_balance_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # closing - expected
    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "status": self.status,
            "opened_by_user_id": self.opened_by_user_id,
            "opened_at": to_utc_z(self.opened_at),
            "opening_balance_cents": self.opening_balance_cents,
            "closed_by_user_id": self.closed_by_user_id,
            "closed_at": to_utc_z(self.closed_at),
            "closing_balance_cents": self.closing_balance_cents,
            "expected_balance_cents": self.expected_balance_cents,
            "difference_cents": self.difference_cents,
            "last_movement_at": to_utc_z(self.last_movement_at),
            "notes": self.notes,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Append-only money movement (in/out) caused by a payment, expense or refund.

    Every payment method is recorded; only method == 'cash' counts toward a
    session's expected balance. Rows are never updated or deleted.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_movements_amount_positive"),
        db.Index("ix_cash_movements_session_method", "session_id", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_register_sessions.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    direction = db.Column(db.String(8), nullable=False)  # in, out
    method = db.Column(db.String(32), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # sale, purchase, expense, refund

    # Human-readable source reference (document number, RET-<id>, EXP-<id>)
    transaction_ref = db.Column(db.String(64), nullable=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)
    expense_id = db.Column(db.Integer, db.ForeignKey("expenses.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashRegisterSession", backref=db.backref("movements", lazy=True, order_by="CashMovement.id"))

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == "in" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "session_id": self.session_id,
            "amount_cents": self.amount_cents,
            "direction": self.direction,
            "method": self.method,
            "transaction_type": self.transaction_type,
            "transaction_ref": self.transaction_ref,
            "document_id": self.document_id,
            "payment_id": self.payment_id,
            "expense_id": self.expense_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(CashMovement, "before_update")
def _reject_cash_movement_update(mapper, connection, target):
    raise ValueError(f"CashMovement {target.id} is append-only")
