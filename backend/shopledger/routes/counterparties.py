# Overview: Flask API routes for customers, suppliers and their balances.

"""
Counterparty API Routes

/api/customers and /api/suppliers share one set of views. Balances are
computed from posted documents on every request.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError, ValidationError
from ..services import counterparty_service, payment_service
from ..decorators import require_auth, ledger_error_response, json_body


counterparties_bp = Blueprint("counterparties", __name__, url_prefix="/api")

_KINDS = {"customers": "customer", "suppliers": "supplier"}


@counterparties_bp.get("/<any(customers, suppliers):kinds>")
@require_auth
def list_counterparties_route(kinds: str):
    rows = counterparty_service.list_counterparties(g.store_id, _KINDS[kinds], search=request.args.get("q"))
    return jsonify({kinds: [r.to_dict() for r in rows]}), 200


@counterparties_bp.post("/<any(customers, suppliers):kinds>")
@require_auth
def create_counterparty_route(kinds: str):
    """Request body: {"name": "Jane Roe", "phone": "+1 555 0100", "notes": null}"""
    try:
        data = json_body()
        row = counterparty_service.create_counterparty(
            g.store_id,
            _KINDS[kinds],
            name=data.get("name"),
            phone=data.get("phone"),
            notes=data.get("notes"),
        )
        return jsonify({_KINDS[kinds]: row.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create %s", _KINDS[kinds])
        return jsonify({"error": "Internal server error"}), 500


@counterparties_bp.get("/<any(customers, suppliers):kinds>/<int:counterparty_id>")
@require_auth
def get_counterparty_route(kinds: str, counterparty_id: int):
    try:
        row = counterparty_service.get_counterparty(g.store_id, _KINDS[kinds], counterparty_id)
        return jsonify({_KINDS[kinds]: row.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@counterparties_bp.patch("/<any(customers, suppliers):kinds>/<int:counterparty_id>")
@require_auth
def update_counterparty_route(kinds: str, counterparty_id: int):
    try:
        row = counterparty_service.update_counterparty(g.store_id, _KINDS[kinds], counterparty_id, **json_body())
        return jsonify({_KINDS[kinds]: row.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update %s", _KINDS[kinds])
        return jsonify({"error": "Internal server error"}), 500


@counterparties_bp.get("/<any(customers, suppliers):kinds>/<int:counterparty_id>/balance")
@require_auth
def counterparty_balance_route(kinds: str, counterparty_id: int):
    try:
        balance = payment_service.get_counterparty_balance(g.store_id, _KINDS[kinds], counterparty_id)
        return jsonify(balance), 200
    except LedgerError as e:
        return ledger_error_response(e)


@counterparties_bp.get("/<any(customers, suppliers):kinds>/balances")
@require_auth
def balances_route(kinds: str):
    kind = _KINDS[kinds]
    outstanding_only = request.args.get("outstanding_only", "").lower() in ("1", "true", "yes")
    return jsonify({
        "balances": payment_service.list_balances(g.store_id, kind, outstanding_only=outstanding_only),
        "total_outstanding_cents": payment_service.get_total_debt(g.store_id, kind),
    }), 200


@counterparties_bp.get("/<any(customers, suppliers):kinds>/high-risk")
@require_auth
def high_risk_route(kinds: str):
    try:
        threshold = request.args.get("threshold")
        if threshold is not None:
            try:
                threshold = float(threshold)
            except ValueError:
                raise ValidationError("threshold must be a number")
        flagged = payment_service.get_high_risk(g.store_id, _KINDS[kinds], threshold)
        return jsonify({"high_risk": flagged}), 200
    except LedgerError as e:
        return ledger_error_response(e)
