from __future__ import annotations

from ..extensions import db
from ..states import ItemType, PhoneStatus
from ..time_utils import to_utc_z


class Phone(db.Model):
    """
    Serialized stock item: one row per physical handset.

    Quantity is always 1; stock state is carried entirely by `status`
    (available, sold, returned, damaged, reserved). Only an active,
    available phone may appear on a new sale.

    Rows are never deleted. A cancelled purchase deactivates the phone and
    a later purchase of the same IMEI reactivates the same row, which keeps
    the (store_id, imei) unique constraint intact.
    """
    __tablename__ = "phones"
    __table_args__ = (
        db.UniqueConstraint("store_id", "imei", name="uq_phones_store_imei"),
        db.Index("ix_phones_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    item_type = ItemType.PHONE.value

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    imei = db.Column(db.String(17), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    buy_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sell_price_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PhoneStatus.AVAILABLE.value)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def code(self) -> str:
        return self.imei

    @property
    def stock_state(self) -> str:
        return self.status

    @property
    def is_sellable(self) -> bool:
        return self.is_active and self.status == PhoneStatus.AVAILABLE.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_type": self.item_type,
            "store_id": self.store_id,
            "imei": self.imei,
            "name": self.name,
            "buy_price_cents": self.buy_price_cents,
            "sell_price_cents": self.sell_price_cents,
            "status": self.status,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Accessory(db.Model):
    """
    Bulk stock item counted by quantity with a low-stock threshold.

    `quantity` is only changed through the inventory service; the check
    constraint is the last line of defence behind NegativeStockError.
    Low stock is derived on read (quantity <= min_qty), never stored.
    """
    __tablename__ = "accessories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "sku", name="uq_accessories_store_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_accessories_quantity_nonnegative"),
        db.CheckConstraint("min_qty >= 0", name="ck_accessories_min_qty_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    item_type = ItemType.ACCESSORY.value

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_qty = db.Column(db.Integer, nullable=False, default=0)

    buy_price_cents = db.Column(db.Integer, nullable=False, default=0)
    sell_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def code(self) -> str:
        return self.sku

    @property
    def stock_state(self) -> int:
        return self.quantity

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_type": self.item_type,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "min_qty": self.min_qty,
            "is_low_stock": self.is_low_stock,
            "buy_price_cents": self.buy_price_cents,
            "sell_price_cents": self.sell_price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only history of every stock effect.

    quantity_delta is signed (+ in, - out). Phone rows carry the status
    change in from_status/to_status; their delta is +1/-1 when the unit
    enters or leaves sellable stock and 0 for status-only changes.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    item_type = db.Column(db.String(16), nullable=False)
    phone_id = db.Column(db.Integer, db.ForeignKey("phones.id"), nullable=True, index=True)
    accessory_id = db.Column(db.Integer, db.ForeignKey("accessories.id"), nullable=True, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)  # in, out, return, adjustment
    quantity_delta = db.Column(db.Integer, nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)

    # What caused it: sale, purchase, return, adjustment
    source_type = db.Column(db.String(16), nullable=False)
    source_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "item_type": self.item_type,
            "phone_id": self.phone_id,
            "accessory_id": self.accessory_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
