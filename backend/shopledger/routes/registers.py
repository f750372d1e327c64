# Overview: Flask API routes for cash register sessions and movements.

"""
Cash Register API Routes

- One open session per store; opening a second fails SessionAlreadyOpen
- Closing records the counted cash and the variance against expected
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..services import register_service
from ..decorators import require_auth, ledger_error_response, json_body


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash")


@registers_bp.post("/sessions/open")
@require_auth
def open_session_route():
    """Request body: {"opening_balance_cents": 10000, "notes": "Morning float"}"""
    try:
        data = json_body()
        session = register_service.open_session(
            g.store_id,
            g.current_user.id,
            data.get("opening_balance_cents", 0),
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/sessions/close")
@require_auth
def close_session_route():
    """Request body: {"actual_cash_cents": 12450, "notes": "Counted twice"}"""
    try:
        data = json_body()
        session = register_service.close_session(
            g.store_id,
            g.current_user.id,
            data.get("actual_cash_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"session": session.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/sessions/current")
@require_auth
def current_session_route():
    session = register_service.get_open_session(g.store_id)
    if not session:
        return jsonify({"session": None}), 200
    return jsonify(register_service.get_session_summary(session)), 200


@registers_bp.get("/sessions")
@require_auth
def list_sessions_route():
    sessions = register_service.list_sessions(
        g.store_id,
        status=request.args.get("status"),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@registers_bp.get("/sessions/<int:session_id>")
@require_auth
def get_session_route(session_id: int):
    try:
        session = register_service.get_session(g.store_id, session_id)
        return jsonify(register_service.get_session_summary(session)), 200
    except LedgerError as e:
        return ledger_error_response(e)


@registers_bp.get("/sessions/<int:session_id>/movements")
@require_auth
def session_movements_route(session_id: int):
    try:
        register_service.get_session(g.store_id, session_id)
        movements = register_service.get_session_movements(session_id)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
