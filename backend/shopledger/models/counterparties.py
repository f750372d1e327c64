from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class _CounterpartyMixin:
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "phone": self.phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class Customer(_CounterpartyMixin, db.Model):
    """Sale counterparty. Display data only; balances are derived from documents."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)


class Supplier(_CounterpartyMixin, db.Model):
    """Purchase counterparty."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
