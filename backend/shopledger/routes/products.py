# Overview: Flask API routes for phones, accessories and stock movements.

"""
Product & Stock API Routes

- Phones are serialized (one row per IMEI); status changes go through the
  phone transition table
- Accessories are counted; quantity changes only through documents,
  returns or an explicit adjustment with a reason
- Low stock is derived on every read
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import LedgerError
from ..states import ItemType, Role
from ..services import inventory_service, products_service
from ..decorators import require_auth, require_roles, ledger_error_response, json_body


products_bp = Blueprint("products", __name__, url_prefix="/api/products")

_MANAGERS = (Role.OWNER.value, Role.ADMIN.value)


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in ("1", "true", "yes")


# =============================================================================
# PHONES
# =============================================================================

@products_bp.get("/phones")
@require_auth
def list_phones_route():
    try:
        phones = products_service.list_phones(
            g.store_id,
            status=request.args.get("status"),
            include_inactive=_flag("include_inactive"),
        )
        return jsonify({"phones": [p.to_dict() for p in phones]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.post("/phones")
@require_auth
@require_roles(*_MANAGERS)
def create_phone_route():
    """
    Register a handset already on hand.

    Request body:
    {
        "imei": "123456789012345",
        "name": "Pixel 8 128GB",
        "buy_price_cents": 30000,
        "sell_price_cents": 45000
    }
    """
    try:
        data = json_body()
        phone = products_service.create_phone(
            g.store_id,
            imei=data.get("imei"),
            name=data.get("name"),
            buy_price_cents=data.get("buy_price_cents", 0),
            sell_price_cents=data.get("sell_price_cents", 0),
            user_id=g.current_user.id,
        )
        return jsonify({"phone": phone.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create phone")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/phones/<int:phone_id>")
@require_auth
def get_phone_route(phone_id: int):
    try:
        phone = inventory_service.resolve_product(g.store_id, ItemType.PHONE.value, phone_id)
        return jsonify({"phone": phone.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.patch("/phones/<int:phone_id>")
@require_auth
@require_roles(*_MANAGERS)
def update_phone_route(phone_id: int):
    try:
        phone = products_service.update_phone(g.store_id, phone_id, **json_body())
        return jsonify({"phone": phone.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update phone")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/phones/<int:phone_id>/status")
@require_auth
@require_roles(*_MANAGERS, Role.TECHNICIAN.value)
def set_phone_status_route(phone_id: int):
    """Request body: {"status": "damaged", "note": "Cracked screen"}"""
    try:
        data = json_body()
        phone = inventory_service.set_phone_status(
            g.store_id,
            phone_id,
            data.get("status"),
            user_id=g.current_user.id,
            note=data.get("note"),
        )
        return jsonify({"phone": phone.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change phone status")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ACCESSORIES
# =============================================================================

@products_bp.get("/accessories")
@require_auth
def list_accessories_route():
    try:
        accessories = products_service.list_accessories(
            g.store_id,
            low_stock_only=_flag("low_stock"),
            include_inactive=_flag("include_inactive"),
        )
        return jsonify({"accessories": [a.to_dict() for a in accessories]}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.post("/accessories")
@require_auth
@require_roles(*_MANAGERS)
def create_accessory_route():
    """
    Request body:
    {
        "sku": "CASE-IP15",
        "name": "iPhone 15 case",
        "quantity": 10,
        "min_qty": 3,
        "buy_price_cents": 300,
        "sell_price_cents": 1000
    }
    """
    try:
        data = json_body()
        accessory = products_service.create_accessory(
            g.store_id,
            sku=data.get("sku"),
            name=data.get("name"),
            quantity=data.get("quantity", 0),
            min_qty=data.get("min_qty", 0),
            buy_price_cents=data.get("buy_price_cents", 0),
            sell_price_cents=data.get("sell_price_cents", 0),
            user_id=g.current_user.id,
        )
        return jsonify({"accessory": accessory.to_dict()}), 201
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create accessory")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/accessories/<int:accessory_id>")
@require_auth
def get_accessory_route(accessory_id: int):
    try:
        accessory = inventory_service.resolve_product(g.store_id, ItemType.ACCESSORY.value, accessory_id)
        return jsonify({"accessory": accessory.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)


@products_bp.patch("/accessories/<int:accessory_id>")
@require_auth
@require_roles(*_MANAGERS)
def update_accessory_route(accessory_id: int):
    try:
        accessory = products_service.update_accessory(g.store_id, accessory_id, **json_body())
        return jsonify({"accessory": accessory.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update accessory")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/accessories/<int:accessory_id>/adjust")
@require_auth
@require_roles(*_MANAGERS)
def adjust_accessory_route(accessory_id: int):
    """Request body: {"delta": -2, "reason": "Damaged in storage"}"""
    try:
        data = json_body()
        accessory = inventory_service.adjust_accessory_stock(
            g.store_id,
            accessory_id,
            data.get("delta"),
            reason=data.get("reason"),
            user_id=g.current_user.id,
        )
        return jsonify({"accessory": accessory.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust accessory stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
@require_auth
def low_stock_route():
    accessories = inventory_service.get_low_stock_accessories(g.store_id)
    return jsonify({"accessories": [a.to_dict() for a in accessories]}), 200


@products_bp.get("/movements")
@require_auth
def movements_route():
    try:
        movements = inventory_service.get_movements(
            g.store_id,
            item_type=request.args.get("item_type"),
            product_id=request.args.get("product_id", type=int),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
