# Overview: Flask API routes for zone inventory allocation and transfers.

"""
Inventory Zone API Routes

SECURITY:
- Reading allocations: any role of the tenant
- Allocating and transferring: tenant admins and event managers
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import MANAGER_ROLES
from ..services import inventory_service
from ..validation import optional_str, require_payload, require_positive_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/menu-items/<int:menu_item_id>/allocations")
@require_caller
def get_allocations_route(menu_item_id: int):
    try:
        summary = inventory_service.allocation_summary(g.caller.tenant_id, menu_item_id)
        summary["transfers"] = [
            t.to_dict() for t in inventory_service.list_transfers(g.caller.tenant_id, menu_item_id)
        ]
        return jsonify(summary), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load allocations")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.put("/menu-items/<int:menu_item_id>/allocations")
@require_caller
@require_role(MANAGER_ROLES)
def put_allocations_route(menu_item_id: int):
    """
    Set per-zone allocations.

    Request body:
    {"allocations": {"3": 40, "4": 20}}

    Returns:
        200: Updated allocation summary
        400: Negative quantity, foreign zone, or total above inventory
    """
    try:
        data = require_payload(request.get_json(silent=True))
        summary = inventory_service.allocate(g.caller, menu_item_id, data.get("allocations"))
        return jsonify(summary), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to allocate inventory")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transfers")
@require_caller
@require_role(MANAGER_ROLES)
def transfer_route():
    """
    Move allocated stock between zones.

    Request body:
    {"menu_item_id": 7, "from_zone_id": 3, "to_zone_id": 4, "quantity": 5, "reason": "..."}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        menu_item_id = require_positive_int(data, "menu_item_id")
        log_entry = inventory_service.transfer(
            g.caller,
            menu_item_id,
            require_positive_int(data, "from_zone_id"),
            require_positive_int(data, "to_zone_id"),
            require_positive_int(data, "quantity"),
            reason=optional_str(data, "reason"),
        )
        return jsonify({
            "transfer": log_entry.to_dict(),
            "allocations": inventory_service.allocation_summary(g.caller.tenant_id, menu_item_id),
        }), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transfer inventory")
        return jsonify({"error": "Internal server error"}), 500
