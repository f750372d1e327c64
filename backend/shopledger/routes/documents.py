# Overview: Flask API routes for sale and purchase documents, their lines and payments.

"""
Document API Routes

LIFECYCLE: draft -> posted -> cancelled

- Lines are added/removed only on drafts
- POST /<id>/post applies stock effects; an optional initial payment is
  captured in the same transaction
- POST /<id>/cancel is owner-only and reverses stock and payments
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import document_service, payment_service, return_service
from ..decorators import require_auth, ledger_error_response, json_body


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _document_payload(document) -> dict:
    data = document.to_dict(include_items=True)
    data["payments"] = [p.to_dict() for p in document.payments]
    return data


@documents_bp.post("/")
@require_auth
def create_document_route():
    """
    Create a draft document.

    Request body:
    {
        "doc_type": "sale" | "purchase",
        "customer_id": 3,      (sales, optional)
        "supplier_id": 2,      (purchases, optional)
        "notes": "..."
    }
    """
    try:
        data = json_body()
        document = document_service.create_document(
            g.store_id,
            data.get("doc_type"),
            user_id=g.current_user.id,
            customer_id=data.get("customer_id"),
            supplier_id=data.get("supplier_id"),
            notes=data.get("notes"),
        )
        return jsonify({"document": _document_payload(document)}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/")
@require_auth
def list_documents_route():
    try:
        documents = document_service.list_documents(
            g.store_id,
            request.args.get("doc_type", "sale"),
            status=request.args.get("status"),
            counterparty_id=request.args.get("counterparty_id", type=int),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"documents": [d.to_dict() for d in documents]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@documents_bp.get("/<int:document_id>")
@require_auth
def get_document_route(document_id: int):
    try:
        document = document_service.get_document(g.store_id, document_id)
        return jsonify({"document": _document_payload(document)}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@documents_bp.patch("/<int:document_id>")
@require_auth
def update_document_route(document_id: int):
    try:
        document = document_service.update_draft(g.store_id, document_id, **json_body())
        return jsonify({"document": _document_payload(document)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/items")
@require_auth
def add_item_route(document_id: int):
    """
    Add a line to a draft.

    Request body (sale, or purchase of a known accessory):
    {"item_type": "accessory", "product_id": 7, "qty": 4, "unit_price_cents": 1000, "discount_cents": 0}

    Request body (purchase of a new handset):
    {"item_type": "phone", "imei": "123456789012345", "name": "Pixel 8",
     "unit_price_cents": 30000, "sell_price_cents": 45000}
    """
    try:
        data = json_body()
        item = document_service.add_item(
            g.store_id,
            document_id,
            item_type=data.get("item_type"),
            product_id=data.get("product_id"),
            qty=data.get("qty", 1),
            unit_price_cents=data.get("unit_price_cents"),
            discount_cents=data.get("discount_cents", 0),
            imei=data.get("imei"),
            name=data.get("name"),
            sell_price_cents=data.get("sell_price_cents"),
        )
        return jsonify({"item": item.to_dict(), "document": item.document.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add document item")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.delete("/<int:document_id>/items/<int:item_id>")
@require_auth
def remove_item_route(document_id: int, item_id: int):
    try:
        document = document_service.remove_item(g.store_id, document_id, item_id)
        return jsonify({"document": _document_payload(document)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove document item")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/post")
@require_auth
def post_document_route(document_id: int):
    """
    Post a draft.

    Request body (optional):
    {"payment_cents": 2500, "payment_method": "cash", "payment_reference": null}
    """
    try:
        data = json_body()
        document = document_service.post_document(
            g.store_id,
            document_id,
            user_id=g.current_user.id,
            payment_cents=data.get("payment_cents"),
            payment_method=data.get("payment_method", "cash"),
            payment_reference=data.get("payment_reference"),
        )
        return jsonify({"document": _document_payload(document)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/cancel")
@require_auth
def cancel_document_route(document_id: int):
    """Owner only. Request body: {"reason": "Entered twice"}"""
    try:
        data = json_body()
        document = document_service.cancel_document(
            g.store_id,
            document_id,
            user=g.current_user,
            reason=data.get("reason"),
        )
        return jsonify({"document": _document_payload(document)}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/payments")
@require_auth
def record_payment_route(document_id: int):
    """Request body: {"amount_cents": 2500, "method": "cash", "reference": null}"""
    try:
        data = json_body()
        payment = payment_service.record_payment(
            g.store_id,
            document_id,
            data.get("amount_cents"),
            user_id=g.current_user.id,
            method=data.get("method", "cash"),
            reference=data.get("reference"),
        )
        return jsonify({"payment": payment.to_dict(), "document": payment.document.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/<int:document_id>/payments")
@require_auth
def list_payments_route(document_id: int):
    try:
        document_service.get_document(g.store_id, document_id)
        payments = payment_service.list_payments(g.store_id, document_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@documents_bp.get("/<int:document_id>/returns")
@require_auth
def list_document_returns_route(document_id: int):
    try:
        document_service.get_document(g.store_id, document_id)
        returns = return_service.get_sale_returns(g.store_id, document_id)
        return jsonify({"returns": [r.to_dict() for r in returns]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
