# Overview: Flask API routes for operating expenses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import expense_service
from ..decorators import require_auth, ledger_error_response, json_body


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("/")
@require_auth
def create_expense_route():
    """Request body: {"category": "rent", "amount_cents": 50000, "method": "bank_transfer", "description": "..."}"""
    try:
        data = json_body()
        expense = expense_service.create_expense(
            g.store_id,
            category=data.get("category"),
            amount_cents=data.get("amount_cents"),
            user_id=g.current_user.id,
            method=data.get("method", "cash"),
            description=data.get("description"),
        )
        return jsonify({"expense": expense.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.get("/")
@require_auth
def list_expenses_route():
    expenses = expense_service.list_expenses(
        g.store_id,
        status=request.args.get("status"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@expenses_bp.get("/<int:expense_id>")
@require_auth
def get_expense_route(expense_id: int):
    try:
        expense = expense_service.get_expense(g.store_id, expense_id)
        return jsonify({"expense": expense.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@expenses_bp.post("/<int:expense_id>/pay")
@require_auth
def pay_expense_route(expense_id: int):
    try:
        expense = expense_service.pay_expense(g.store_id, expense_id, user_id=g.current_user.id)
        return jsonify({"expense": expense.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to pay expense")
        return jsonify({"error": "Internal server error"}), 500


@expenses_bp.post("/<int:expense_id>/cancel")
@require_auth
def cancel_expense_route(expense_id: int):
    try:
        expense = expense_service.cancel_expense(g.store_id, expense_id, user_id=g.current_user.id)
        return jsonify({"expense": expense.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel expense")
        return jsonify({"error": "Internal server error"}), 500
