from __future__ import annotations

from ..extensions import db
from ..states import Role
from ..time_utils import to_utc_z


class Store(db.Model):
    """
    Tenant root. Every ledger row carries a store_id and every uniqueness
    rule (IMEI, SKU, document number, open cash session) is store-scoped.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Acting user as supplied by the authentication collaborator.

    Only the identity and role matter to the ledger. The bearer token is
    issued outside the ledger; we keep its SHA-256 hash for lookup.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("store_id", "username", name="uq_users_store_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    username = db.Column(db.String(64), nullable=False)
    full_name = db.Column(db.String(128), nullable=True)

    # owner, admin, seller, technician
    role = db.Column(db.String(16), nullable=False, default=Role.SELLER.value)

    api_token_hash = db.Column(db.String(64), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("users", lazy=True))

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
