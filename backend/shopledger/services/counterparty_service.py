# Overview: Customer and supplier directory, scoped per store.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Supplier
from ..errors import NotFoundError, ValidationError

_MODELS = {"customer": Customer, "supplier": Supplier}


def _model(kind: str):
    if kind not in _MODELS:
        raise ValidationError(f"Invalid counterparty kind '{kind}'. Must be customer or supplier")
    return _MODELS[kind]


def create_counterparty(store_id: int, kind: str, *, name: str, phone: str | None = None, notes: str | None = None):
    model = _model(kind)
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    counterparty = model(store_id=store_id, name=name, phone=phone, notes=notes)
    db.session.add(counterparty)
    db.session.commit()
    return counterparty


def get_counterparty(store_id: int, kind: str, counterparty_id: int):
    model = _model(kind)
    counterparty = db.session.query(model).filter_by(id=counterparty_id, store_id=store_id).first()
    if not counterparty:
        raise NotFoundError(f"{kind.capitalize()} {counterparty_id} not found")
    return counterparty


def update_counterparty(store_id: int, kind: str, counterparty_id: int, **fields):
    allowed = {"name", "phone", "notes"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {sorted(unknown)}")
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("name cannot be empty")

    counterparty = get_counterparty(store_id, kind, counterparty_id)
    for key, value in fields.items():
        setattr(counterparty, key, value.strip() if key == "name" else value)
    db.session.commit()
    return counterparty


def list_counterparties(store_id: int, kind: str, *, search: str | None = None):
    model = _model(kind)
    q = db.session.query(model).filter_by(store_id=store_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(model.name.ilike(pattern), model.phone.ilike(pattern)))
    return q.order_by(model.name).all()
