from __future__ import annotations

from ..extensions import db
from ..states import DocumentStatus, DocumentType, PaymentStatus
from ..time_utils import to_utc_z


class Document(db.Model):
    """
    Sale or Purchase header.

    LIFECYCLE: draft -> posted -> cancelled. Lines may change only while
    draft; posting freezes total_cents and applies stock effects; after that
    only status (posted -> cancelled) and the payment columns move.

    BALANCE INVARIANT: remaining_cents == total_cents - paid_cents and
    0 <= paid_cents <= total_cents after every mutation.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("store_id", "doc_type", "document_number", name="uq_documents_store_type_docnum"),
        db.CheckConstraint("paid_cents >= 0", name="ck_documents_paid_nonnegative"),
        db.CheckConstraint("remaining_cents >= 0", name="ck_documents_remaining_nonnegative"),
        db.Index("ix_documents_store_type_status", "store_id", "doc_type", "status"),
        db.Index("ix_documents_customer_status", "customer_id", "status"),
        db.Index("ix_documents_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    doc_type = db.Column(db.String(16), nullable=False)  # sale, purchase
    document_number = db.Column(db.String(64), nullable=False)
    doc_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=DocumentStatus.DRAFT.value, index=True)

    # Counterparty: customer for sales, supplier for purchases
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True)

    # Money (cents)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    posted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    items = db.relationship(
        "DocumentItem",
        backref="document",
        lazy=True,
        order_by="DocumentItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_sale(self) -> bool:
        return self.doc_type == DocumentType.SALE.value

    @property
    def counterparty_id(self) -> int | None:
        return self.customer_id if self.is_sale else self.supplier_id

    @property
    def payment_status(self) -> str:
        if self.paid_cents <= 0:
            return "unpaid"
        if self.remaining_cents > 0:
            return "partial"
        return "paid"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "doc_type": self.doc_type,
            "document_number": self.document_number,
            "doc_date": self.doc_date.isoformat() if self.doc_date else None,
            "status": self.status,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "remaining_cents": self.remaining_cents,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "posted_by_user_id": self.posted_by_user_id,
            "posted_at": to_utc_z(self.posted_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class DocumentItem(db.Model):
    """
    Line item on a Sale or Purchase.

    Exactly one of phone_id / accessory_id identifies the product, except
    for a purchase line that brings in a new handset: that line carries the
    IMEI, name and sell price, and phone_id is filled in when the purchase
    is posted. Phone lines always have qty == 1.

    stock_applied records whether this line's stock effect is currently in
    force; returned_qty accumulates approved returns against a sale line.
    Both writes bump version_id, which serializes return approval against
    document cancellation on the same line.
    """
    __tablename__ = "document_items"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_document_items_qty_positive"),
        db.CheckConstraint("discount_cents >= 0", name="ck_document_items_discount_nonnegative"),
        db.CheckConstraint("returned_qty >= 0 AND returned_qty <= qty", name="ck_document_items_returned_bounds"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)  # phone, accessory
    phone_id = db.Column(db.Integer, db.ForeignKey("phones.id"), nullable=True, index=True)
    accessory_id = db.Column(db.Integer, db.ForeignKey("accessories.id"), nullable=True, index=True)

    # Snapshot of the product at line creation (new handsets on purchases)
    imei = db.Column(db.String(17), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    sell_price_cents = db.Column(db.Integer, nullable=True)

    qty = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    stock_applied = db.Column(db.Boolean, nullable=False, default=False)
    returned_qty = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    phone = db.relationship("Phone")
    accessory = db.relationship("Accessory")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def product_id(self) -> int | None:
        return self.phone_id if self.phone_id is not None else self.accessory_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "item_type": self.item_type,
            "phone_id": self.phone_id,
            "accessory_id": self.accessory_id,
            "imei": self.imei,
            "description": self.description,
            "sell_price_cents": self.sell_price_cents,
            "qty": self.qty,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "stock_applied": self.stock_applied,
            "returned_qty": self.returned_qty,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    One captured payment against a posted document.

    paid_cents on the document is the sum of captured payments; voiding a
    payment (document cancel) leaves the row for the audit trail.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=PaymentStatus.CAPTURED.value, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    document = db.relationship("Document", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "document_id": self.document_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "status": self.status,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at),
        }


class DocumentSequence(db.Model):
    """Per-store, per-type, per-day counter behind document numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("store_id", "doc_type", "business_date", name="uq_document_sequences_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    doc_type = db.Column(db.String(16), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
