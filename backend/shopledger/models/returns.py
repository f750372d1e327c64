from __future__ import annotations

from ..extensions import db
from ..states import ReturnStatus
from ..time_utils import to_utc_z


class ReturnTransaction(db.Model):
    """
    Return of (part of) one posted sale line.

    LIFECYCLE:
    - pending   -> approved -> refunded -> completed
    - pending   -> rejected (terminal)

    Creation records intent only. Stock and cash are touched at approval,
    which requires an owner; refund_movement_id points at the cash-out
    movement written at that moment.
    """
    __tablename__ = "return_transactions"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_returns_qty_positive"),
        db.CheckConstraint("refund_amount_cents >= 0", name="ck_returns_refund_nonnegative"),
        db.Index("ix_returns_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("document_items.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    phone_id = db.Column(db.Integer, db.ForeignKey("phones.id"), nullable=True)
    accessory_id = db.Column(db.Integer, db.ForeignKey("accessories.id"), nullable=True)

    qty = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_method = db.Column(db.String(32), nullable=False, default="cash")

    status = db.Column(db.String(16), nullable=False, default=ReturnStatus.PENDING.value, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inspection_notes = db.Column(db.Text, nullable=True)
    # Phone condition at approval: back to sellable stock or held as returned
    restocked = db.Column(db.Boolean, nullable=True)

    rejected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    refund_movement_id = db.Column(db.Integer, db.ForeignKey("cash_movements.id"), nullable=True)
    refund_payment_ref = db.Column(db.String(128), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Document", foreign_keys=[sale_id], backref=db.backref("returns", lazy=True))
    sale_item = db.relationship("DocumentItem", foreign_keys=[sale_item_id])
    refund_movement = db.relationship("CashMovement", foreign_keys=[refund_movement_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "item_type": self.item_type,
            "phone_id": self.phone_id,
            "accessory_id": self.accessory_id,
            "qty": self.qty,
            "reason": self.reason,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_method": self.refund_method,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "inspection_notes": self.inspection_notes,
            "restocked": self.restocked,
            "rejected_by_user_id": self.rejected_by_user_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "refund_movement_id": self.refund_movement_id,
            "refund_payment_ref": self.refund_payment_ref,
            "refunded_at": to_utc_z(self.refunded_at),
            "completed_at": to_utc_z(self.completed_at),
            "version_id": self.version_id,
        }
