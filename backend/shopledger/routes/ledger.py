# Overview: Flask API routes for reading the audit trail.

from flask import Blueprint, request, jsonify, g

from ..errors import ValidationError
from ..services import ledger_service
from ..decorators import require_auth, ledger_error_response
from ..time_utils import parse_iso_datetime


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("/events")
@require_auth
def list_events_route():
    """
    Query params:
    - entity_type + entity_id: history of one entity
    - event_type: filter store-wide feed (e.g. sale.posted)
    - since: ISO-8601 lower bound on occurred_at
    """
    entity_type = request.args.get("entity_type")
    entity_id = request.args.get("entity_id", type=int)
    if entity_type and entity_id is not None:
        events = [
            e for e in ledger_service.get_entity_events(entity_type, entity_id)
            if e.store_id == g.store_id
        ]
    else:
        try:
            since = parse_iso_datetime(request.args.get("since"))
        except ValueError:
            return ledger_error_response(ValidationError("since must be an ISO-8601 datetime"))
        events = ledger_service.get_store_events(
            g.store_id,
            event_type=request.args.get("event_type"),
            since=since,
            limit=request.args.get("limit", 200, type=int),
        )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
