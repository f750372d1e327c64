# Overview: Date-scoped document number allocation.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import ValidationError
from ..time_utils import business_date


def format_document_number(prefix: str, day: date, number: int, pad: int = 4) -> str:
    return f"{prefix}-{day:%Y%m%d}-{number:0{pad}d}"


def next_document_number(
    *,
    store_id: int,
    doc_type: str,
    day: date | None = None,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a store/type/day, e.g. INV-20261019-0007.

    Runs inside the caller's transaction. The UPDATE ... SET next_number =
    next_number + 1 takes the row lock; the first document of the day
    inserts the counter inside a savepoint so a racing insert only costs a
    retry of the UPDATE, not the caller's whole transaction.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    prefixes = current_app.config["DOCUMENT_PREFIXES"]
    if doc_type not in prefixes:
        raise ValidationError(f"Unknown document type '{doc_type}'")

    day = day or business_date()
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.doc_type == doc_type,
            DocumentSequence.business_date == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    store_id=store_id, doc_type=doc_type, business_date=day, next_number=2,
                ))
            return format_document_number(prefixes[doc_type], day, 1, pad)
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, doc_type=doc_type, business_date=day)
        .scalar()
    )
    return format_document_number(prefixes[doc_type], day, current - 1, pad)
