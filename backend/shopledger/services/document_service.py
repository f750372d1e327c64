# Overview: Sale and Purchase documents; the only path from intent to stock and balance effects.

"""
Document Engine

WHY: A sale or purchase is edited as a draft, then posted in one step that
moves stock and freezes the total. Cancelling a posted document reverses
exactly what posting did.

LIFECYCLE: draft -> posted -> cancelled (see lifecycle_service).

DESIGN PRINCIPLES:
- Lines change only while draft; totals are recomputed on every change
- post/cancel run as one unit: stock, status, payments and audit events
  commit together or not at all
- Concurrent posts against the same accessory serialize on its version
  column; the retry re-reads stock and fails InsufficientStock cleanly
- A second post of the same document raises InvalidStateError and
  touches nothing
"""

from __future__ import annotations

import logging
from datetime import date

from ..extensions import db
from ..models import Accessory, Customer, Document, DocumentItem, Phone, Supplier
from ..errors import (
    ConflictingStateError,
    InsufficientStockError,
    InvalidStateError,
    NegativeStockError,
    NotFoundError,
    ValidationError,
)
from ..states import DocumentStatus, DocumentType, ItemType, MovementType, PaymentMethod, PhoneStatus, ReturnStatus, values
from ..time_utils import business_date, utcnow
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import (
    apply_delta,
    record_phone_intake,
    record_phone_removal,
    resolve_product,
)
from .lifecycle_service import require_status, require_transition
from .ledger_service import append_audit_event
from .payment_service import capture_payment, void_document_payments
from .permission_service import require_elevated
from .products_service import ensure_imei_available, normalize_imei, validate_price
from .sequence_service import next_document_number

logger = logging.getLogger(__name__)


def _load_document(store_id: int, document_id: int, *, lock: bool = False) -> Document:
    q = db.session.query(Document).filter_by(id=document_id, store_id=store_id)
    if lock:
        q = lock_for_update(q)
    document = q.first()
    if not document:
        raise NotFoundError(f"Document {document_id} not found")
    return document


def _validate_counterparty(store_id: int, doc_type: str, customer_id: int | None, supplier_id: int | None) -> None:
    if doc_type == DocumentType.SALE.value:
        if supplier_id is not None:
            raise ValidationError("A sale takes a customer, not a supplier")
        if customer_id is not None and not db.session.query(Customer).filter_by(id=customer_id, store_id=store_id).first():
            raise NotFoundError(f"Customer {customer_id} not found")
    else:
        if customer_id is not None:
            raise ValidationError("A purchase takes a supplier, not a customer")
        if supplier_id is not None and not db.session.query(Supplier).filter_by(id=supplier_id, store_id=store_id).first():
            raise NotFoundError(f"Supplier {supplier_id} not found")


def _recompute_totals(document: Document) -> None:
    document.total_cents = sum(item.line_total_cents for item in document.items)
    document.remaining_cents = document.total_cents - document.paid_cents


def _line_total(qty: int, unit_price_cents: int, discount_cents: int) -> int:
    gross = qty * unit_price_cents
    if discount_cents < 0 or discount_cents > gross:
        raise ValidationError(
            "discount_cents must be between 0 and qty * unit_price_cents",
            details={"gross_cents": gross, "discount_cents": discount_cents},
        )
    return gross - discount_cents


# =============================================================================
# DRAFT EDITING
# =============================================================================

def create_document(
    store_id: int,
    doc_type: str,
    *,
    user_id: int,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    notes: str | None = None,
    doc_date: date | None = None,
) -> Document:
    """Open a draft sale or purchase with the next number in today's sequence."""
    if doc_type not in values(DocumentType):
        raise ValidationError(f"Invalid document type '{doc_type}'. Must be one of {values(DocumentType)}")

    def _op():
        _validate_counterparty(store_id, doc_type, customer_id, supplier_id)
        day = doc_date or business_date()
        document = Document(
            store_id=store_id,
            doc_type=doc_type,
            document_number=next_document_number(store_id=store_id, doc_type=doc_type, day=day),
            doc_date=day,
            status=DocumentStatus.DRAFT.value,
            customer_id=customer_id,
            supplier_id=supplier_id,
            total_cents=0,
            paid_cents=0,
            remaining_cents=0,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(document)
        db.session.commit()
        return document

    return run_with_retry(_op)


def update_draft(store_id: int, document_id: int, **fields) -> Document:
    """Change counterparty or notes of a draft."""
    allowed = {"customer_id", "supplier_id", "notes"}
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Cannot update fields: {sorted(unknown)}")

    def _op():
        document = _load_document(store_id, document_id, lock=True)
        require_status("document", document, DocumentStatus.DRAFT.value, action="edit document")
        customer_id = fields.get("customer_id", document.customer_id)
        supplier_id = fields.get("supplier_id", document.supplier_id)
        _validate_counterparty(store_id, document.doc_type, customer_id, supplier_id)
        for key, value in fields.items():
            setattr(document, key, value)
        db.session.commit()
        return document

    return run_with_retry(_op)


def _reserved_on_document(document: Document, accessory_id: int) -> int:
    return sum(item.qty for item in document.items if item.accessory_id == accessory_id)


def _build_sale_item(document: Document, product, qty: int, unit_price_cents: int | None) -> DocumentItem:
    if isinstance(product, Phone):
        if any(item.phone_id == product.id for item in document.items):
            raise ValidationError(f"Phone {product.imei} is already on this sale")
        if not product.is_sellable:
            raise InsufficientStockError(
                f"Phone {product.imei} is not available for sale (status '{product.status}')",
                details={"phone_id": product.id, "status": product.status},
            )
        return DocumentItem(
            item_type=ItemType.PHONE.value,
            phone_id=product.id,
            imei=product.imei,
            description=product.name,
            qty=1,
            unit_price_cents=product.sell_price_cents if unit_price_cents is None else unit_price_cents,
        )

    if not product.is_active:
        raise ValidationError(f"Accessory {product.sku} is inactive")
    wanted = _reserved_on_document(document, product.id) + qty
    if wanted > product.quantity:
        raise InsufficientStockError(
            f"Only {product.quantity} of {product.sku} on hand",
            details={"accessory_id": product.id, "requested": wanted, "on_hand": product.quantity},
        )
    return DocumentItem(
        item_type=ItemType.ACCESSORY.value,
        accessory_id=product.id,
        description=product.name,
        qty=qty,
        unit_price_cents=product.sell_price_cents if unit_price_cents is None else unit_price_cents,
    )


def _build_purchase_phone_item(
    document: Document,
    *,
    imei,
    name: str | None,
    unit_price_cents: int | None,
    sell_price_cents: int | None,
) -> DocumentItem:
    imei = normalize_imei(imei)
    if not name:
        raise ValidationError("name is required for a purchased phone")
    if unit_price_cents is None:
        raise ValidationError("unit_price_cents (buy price) is required for a purchased phone")
    if sell_price_cents is not None:
        validate_price("sell_price_cents", sell_price_cents)
    if any(item.imei == imei for item in document.items):
        raise ValidationError(f"IMEI {imei} is already on this purchase")
    ensure_imei_available(document.store_id, imei)
    return DocumentItem(
        item_type=ItemType.PHONE.value,
        imei=imei,
        description=name,
        sell_price_cents=sell_price_cents,
        qty=1,
        unit_price_cents=unit_price_cents,
    )


def add_item(
    store_id: int,
    document_id: int,
    *,
    item_type: str,
    product_id: int | None = None,
    qty: int = 1,
    unit_price_cents: int | None = None,
    discount_cents: int = 0,
    imei: str | None = None,
    name: str | None = None,
    sell_price_cents: int | None = None,
) -> DocumentItem:
    """
    Add a line to a draft document.

    Sales reference an existing product by id. Purchases reference an
    accessory by id, or bring in a new handset by IMEI (plus name and
    sell price); the Phone row is created when the purchase is posted.

    Raises:
        InvalidStateError: document is not draft
        InsufficientStockError: sale qty exceeds on-hand, or phone not available
        DuplicateCodeError: purchased IMEI already belongs to an active phone
    """
    if item_type not in values(ItemType):
        raise ValidationError(f"Invalid item_type '{item_type}'. Must be one of {values(ItemType)}")
    if not isinstance(qty, int) or isinstance(qty, bool) or qty <= 0:
        raise ValidationError("qty must be a positive integer")
    if item_type == ItemType.PHONE.value and qty != 1:
        raise ValidationError("Phone lines always have qty 1")
    if unit_price_cents is not None:
        validate_price("unit_price_cents", unit_price_cents)
    if not isinstance(discount_cents, int) or isinstance(discount_cents, bool):
        raise ValidationError("discount_cents must be an integer")

    def _op():
        document = _load_document(store_id, document_id, lock=True)
        require_status("document", document, DocumentStatus.DRAFT.value, action="add item")

        if document.is_sale:
            if product_id is None:
                raise ValidationError("product_id is required")
            product = resolve_product(store_id, item_type, product_id)
            item = _build_sale_item(document, product, qty, unit_price_cents)
        elif item_type == ItemType.PHONE.value:
            if product_id is not None:
                raise ValidationError("Purchased phones are identified by IMEI, not product_id")
            item = _build_purchase_phone_item(
                document, imei=imei, name=name, unit_price_cents=unit_price_cents, sell_price_cents=sell_price_cents,
            )
        else:
            if product_id is None:
                raise ValidationError("product_id is required")
            accessory = resolve_product(store_id, item_type, product_id)
            item = DocumentItem(
                item_type=ItemType.ACCESSORY.value,
                accessory_id=accessory.id,
                description=accessory.name,
                qty=qty,
                unit_price_cents=accessory.buy_price_cents if unit_price_cents is None else unit_price_cents,
            )

        item.discount_cents = discount_cents
        item.line_total_cents = _line_total(item.qty, item.unit_price_cents, discount_cents)
        document.items.append(item)
        _recompute_totals(document)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(store_id: int, document_id: int, item_id: int) -> Document:
    def _op():
        document = _load_document(store_id, document_id, lock=True)
        require_status("document", document, DocumentStatus.DRAFT.value, action="remove item")
        item = next((i for i in document.items if i.id == item_id), None)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found on document {document_id}")
        document.items.remove(item)
        _recompute_totals(document)
        db.session.commit()
        return document

    return run_with_retry(_op)


# =============================================================================
# POSTING
# =============================================================================

def _check_sale_availability(document: Document) -> None:
    """Fail the whole post, before any mutation, if a line cannot be filled."""
    requested: dict[int, int] = {}
    for item in document.items:
        if item.accessory_id is not None:
            requested[item.accessory_id] = requested.get(item.accessory_id, 0) + item.qty

    short = []
    for accessory_id, qty in requested.items():
        accessory = resolve_product(document.store_id, ItemType.ACCESSORY.value, accessory_id, lock=True)
        if not accessory.is_active:
            raise ValidationError(
                f"Accessory {accessory.sku} is inactive",
                details={"accessory_id": accessory.id},
            )
        if accessory.quantity < qty:
            short.append({"accessory_id": accessory_id, "requested": qty, "on_hand": accessory.quantity})
    for item in document.items:
        if item.phone_id is not None:
            phone = resolve_product(document.store_id, ItemType.PHONE.value, item.phone_id, lock=True)
            if not phone.is_sellable:
                short.append({"phone_id": phone.id, "status": phone.status})

    if short:
        raise InsufficientStockError("Insufficient stock to post sale", details={"items": short})


def _receive_phone(document: Document, item: DocumentItem, user_id: int) -> Phone:
    phone = ensure_imei_available(document.store_id, item.imei)
    if phone is None:
        phone = Phone(store_id=document.store_id, imei=item.imei)
        db.session.add(phone)
    phone.name = item.description
    phone.buy_price_cents = item.unit_price_cents
    if item.sell_price_cents is not None:
        phone.sell_price_cents = item.sell_price_cents
    elif phone.sell_price_cents is None:
        phone.sell_price_cents = 0
    phone.status = PhoneStatus.AVAILABLE.value
    phone.is_active = True
    db.session.flush()
    record_phone_intake(
        phone,
        source_type=document.doc_type,
        source_id=document.id,
        user_id=user_id,
        note=document.document_number,
    )
    item.phone_id = phone.id
    return phone


def _apply_posting(document: Document, user_id: int) -> None:
    movement_kwargs = {
        "source_type": document.doc_type,
        "source_id": document.id,
        "user_id": user_id,
        "note": document.document_number,
    }
    for item in document.items:
        if document.is_sale:
            product = resolve_product(document.store_id, item.item_type, item.product_id)
            try:
                apply_delta(product, PhoneStatus.SOLD.value if item.phone_id else -item.qty, **movement_kwargs)
            except NegativeStockError as e:
                # Stock moved since the availability check (concurrent post)
                raise InsufficientStockError(
                    f"Insufficient stock to post {document.document_number}: {e.message}",
                    details=e.details,
                )
        elif item.item_type == ItemType.PHONE.value:
            _receive_phone(document, item, user_id)
        else:
            accessory = resolve_product(document.store_id, ItemType.ACCESSORY.value, item.accessory_id, lock=True)
            apply_delta(accessory, item.qty, **movement_kwargs)
        item.stock_applied = True


def post_document(
    store_id: int,
    document_id: int,
    *,
    user_id: int,
    payment_cents: int | None = None,
    payment_method: str = PaymentMethod.CASH.value,
    payment_reference: str | None = None,
) -> Document:
    """
    Post a draft: apply every line's stock effect and freeze the total.

    Sale lines decrement accessory quantity or move phones available -> sold.
    Purchase lines increment quantity or bring phones into stock as
    available. An optional initial payment is captured in the same unit.

    Raises:
        InvalidStateError: not draft (including a repeated post), or no lines
        InsufficientStockError: any sale line cannot be filled
        DuplicateCodeError: a purchased IMEI became active since it was added
    """
    def _op():
        document = _load_document(store_id, document_id, lock=True)
        require_status("document", document, DocumentStatus.DRAFT.value, action="post document")
        if not document.items:
            raise InvalidStateError(
                f"Cannot post {document.document_number}: document has no items",
                details={"document_id": document.id},
            )

        if document.is_sale:
            _check_sale_availability(document)
        _apply_posting(document, user_id)

        _recompute_totals(document)
        require_transition("document", document, DocumentStatus.POSTED.value, label=document.document_number)
        document.posted_by_user_id = user_id
        document.posted_at = utcnow()

        append_audit_event(
            store_id=store_id,
            event_type=f"{document.doc_type}.posted",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user_id,
            occurred_at=document.posted_at,
            note=f"{document.document_number} posted",
            payload={"total_cents": document.total_cents, "items": len(document.items)},
        )

        if payment_cents:
            capture_payment(
                document,
                payment_cents,
                method=payment_method,
                reference=payment_reference,
                user_id=user_id,
            )

        db.session.commit()
        return document

    document = run_with_retry(_op)
    logger.info(
        "Posted %s %s: total %d cents, paid %d cents",
        document.doc_type, document.document_number, document.total_cents, document.paid_cents,
    )
    return document


# =============================================================================
# CANCELLATION
# =============================================================================

def _reverse_sale_item(document: Document, item: DocumentItem, kwargs: dict) -> None:
    product = resolve_product(document.store_id, item.item_type, item.product_id, lock=True)
    if isinstance(product, Phone):
        apply_delta(product, PhoneStatus.AVAILABLE.value, movement_type=MovementType.RETURN.value, **kwargs)
    else:
        apply_delta(product, item.qty, movement_type=MovementType.RETURN.value, **kwargs)


def _reverse_purchase_item(document: Document, item: DocumentItem, kwargs: dict) -> None:
    product = resolve_product(document.store_id, item.item_type, item.product_id, lock=True)
    if isinstance(product, Accessory):
        if product.quantity < item.qty:
            raise ConflictingStateError(
                f"Cannot cancel {document.document_number}: only {product.quantity} of {product.sku} left, "
                f"{item.qty} were purchased",
                details={"accessory_id": product.id, "on_hand": product.quantity, "purchased": item.qty},
            )
        apply_delta(product, -item.qty, **kwargs)
        return

    if not product.is_active or product.status != PhoneStatus.AVAILABLE.value:
        raise ConflictingStateError(
            f"Cannot cancel {document.document_number}: phone {product.imei} is '{product.status}'",
            details={"phone_id": product.id, "status": product.status},
        )
    record_phone_removal(product, **kwargs)
    product.is_active = False


def cancel_document(store_id: int, document_id: int, *, user, reason: str) -> Document:
    """
    Cancel a posted document and reverse its stock and payment effects.

    Owner only. A sale with a non-rejected return cannot be cancelled; a
    purchase whose stock was already sold or consumed fails ConflictingState.
    """
    require_elevated(user, "cancel documents")
    if not reason:
        raise ValidationError("Cancellation reason is required")

    def _op():
        document = _load_document(store_id, document_id, lock=True)
        require_status("document", document, DocumentStatus.POSTED.value, action="cancel document")

        if document.is_sale:
            open_returns = [r.id for r in document.returns if r.status != ReturnStatus.REJECTED.value]
            if open_returns:
                raise ConflictingStateError(
                    f"Cannot cancel {document.document_number}: it has returns",
                    details={"return_ids": open_returns},
                )

        kwargs = {
            "source_type": document.doc_type,
            "source_id": document.id,
            "user_id": user.id,
            "note": f"Cancel {document.document_number}",
        }
        for item in document.items:
            if not item.stock_applied:
                continue
            if document.is_sale:
                _reverse_sale_item(document, item, kwargs)
            else:
                _reverse_purchase_item(document, item, kwargs)
            item.stock_applied = False

        voided = void_document_payments(document, user_id=user.id)

        require_transition("document", document, DocumentStatus.CANCELLED.value, label=document.document_number)
        document.cancelled_by_user_id = user.id
        document.cancelled_at = utcnow()
        document.cancel_reason = reason

        append_audit_event(
            store_id=store_id,
            event_type=f"{document.doc_type}.cancelled",
            entity_type="document",
            entity_id=document.id,
            actor_user_id=user.id,
            occurred_at=document.cancelled_at,
            note=reason,
            payload={"total_cents": document.total_cents, "voided_payments_cents": voided},
        )
        db.session.commit()
        return document

    document = run_with_retry(_op)
    logger.info("Cancelled %s %s: %s", document.doc_type, document.document_number, reason)
    return document


# =============================================================================
# QUERIES
# =============================================================================

def get_document(store_id: int, document_id: int) -> Document:
    return _load_document(store_id, document_id)


def list_documents(
    store_id: int,
    doc_type: str,
    *,
    status: str | None = None,
    counterparty_id: int | None = None,
    limit: int = 100,
) -> list[Document]:
    if doc_type not in values(DocumentType):
        raise ValidationError(f"Invalid document type '{doc_type}'")
    q = db.session.query(Document).filter_by(store_id=store_id, doc_type=doc_type)
    if status:
        if status not in values(DocumentStatus):
            raise ValidationError(f"Invalid status '{status}'")
        q = q.filter_by(status=status)
    if counterparty_id is not None:
        fk = Document.customer_id if doc_type == DocumentType.SALE.value else Document.supplier_id
        q = q.filter(fk == counterparty_id)
    return q.order_by(Document.id.desc()).limit(limit).all()
