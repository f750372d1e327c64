# Overview: Flask API routes for the return workflow.

# backend/shopledger/routes/returns.py
"""
Return API Routes

- Create returns against one line of a posted sale (pending)
- Owner approval applies stock credit and the refund cash movement
- Reject, mark refunded, complete
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import return_service
from ..decorators import require_auth, ledger_error_response, json_body


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("/")
@require_auth
def create_return_route():
    """
    Request body:
    {
        "sale_id": 12,
        "sale_item_id": 40,
        "qty": 2,
        "reason": "Wrong model",
        "refund_amount_cents": 2000,  (optional, defaults to the line's net price)
        "refund_method": "cash"       (optional)
    }
    """
    try:
        data = json_body()
        ret = return_service.create_return(
            g.store_id,
            sale_id=data.get("sale_id"),
            sale_item_id=data.get("sale_item_id"),
            qty=data.get("qty"),
            reason=data.get("reason"),
            user_id=g.current_user.id,
            refund_amount_cents=data.get("refund_amount_cents"),
            refund_method=data.get("refund_method", "cash"),
        )
        return jsonify({"return": ret.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/")
@require_auth
def list_returns_route():
    try:
        returns = return_service.list_returns(
            g.store_id,
            status=request.args.get("status"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"returns": [r.to_dict() for r in returns]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return_route(return_id: int):
    try:
        ret = return_service.get_return(g.store_id, return_id)
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@returns_bp.post("/<int:return_id>/approve")
@require_auth
def approve_return_route(return_id: int):
    """Owner only. Request body: {"resellable": true, "notes": "Box unopened"}"""
    try:
        data = json_body()
        ret = return_service.approve_return(
            g.store_id,
            return_id,
            user=g.current_user,
            resellable=bool(data.get("resellable", True)),
            notes=data.get("notes"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/reject")
@require_auth
def reject_return_route(return_id: int):
    try:
        data = json_body()
        ret = return_service.reject_return(
            g.store_id, return_id, user_id=g.current_user.id, reason=data.get("reason"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/refund")
@require_auth
def mark_refunded_route(return_id: int):
    try:
        data = json_body()
        ret = return_service.mark_refunded(
            g.store_id, return_id, user_id=g.current_user.id, payment_ref=data.get("payment_ref"),
        )
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark return refunded")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/complete")
@require_auth
def complete_return_route(return_id: int):
    try:
        ret = return_service.complete_return(g.store_id, return_id, user_id=g.current_user.id)
        return jsonify({"return": ret.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete return")
        return jsonify({"error": "Internal server error"}), 500
