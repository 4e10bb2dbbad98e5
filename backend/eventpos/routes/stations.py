# Overview: Flask API routes for station queues and item transitions.

"""
Station API Routes

DESIGN:
- A station actor sees open items for its station type in its zones
- dispatch / ready / reject are conditional writes; losing a race is a 409
- Any station (or a manager) can flag a menu item out of stock, which
  rejects its open items across the event
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import MANAGER_ROLES, STATION_ROLES
from ..services import station_service
from ..validation import optional_str, require_payload, require_positive_int


stations_bp = Blueprint("stations", __name__, url_prefix="/api/stations")


@stations_bp.get("/queue")
@require_caller
@require_role(STATION_ROLES)
def station_queue_route():
    """
    Open items for the caller's station and zones.

    Query params:
    - event_id (required)
    """
    try:
        event_id = require_positive_int(request.args, "event_id")
        items = station_service.station_queue(g.caller, event_id)
        return jsonify({"items": items, "count": len(items)}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load station queue")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("/items/<int:item_id>/dispatch")
@require_caller
@require_role(STATION_ROLES)
def dispatch_item_route(item_id: int):
    try:
        item = station_service.dispatch_item(g.caller, item_id)
        return jsonify({"item": item.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to dispatch item")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("/items/<int:item_id>/ready")
@require_caller
@require_role(STATION_ROLES)
def ready_item_route(item_id: int):
    try:
        item = station_service.mark_item_ready(g.caller, item_id)
        return jsonify({"item": item.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark item ready")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("/items/<int:item_id>/reject")
@require_caller
@require_role(STATION_ROLES)
def reject_item_route(item_id: int):
    """
    Reject an item that has not been prepared.

    Request body (optional):
    {"reason": "burnt"}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        item = station_service.reject_item(g.caller, item_id, optional_str(data, "reason"))
        return jsonify({"item": item.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject item")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("/menu-items/<int:menu_item_id>/unavailable")
@require_caller
@require_role(STATION_ROLES, MANAGER_ROLES)
def mark_unavailable_route(menu_item_id: int):
    """
    Mark a menu item out of stock.

    Returns:
        200: {"menu_item_id", "rejected_item_ids", "affected_order_ids"}
        500: Some open items could not be rejected (ids in details)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        result = station_service.mark_menu_item_unavailable(
            g.caller, menu_item_id, optional_str(data, "reason")
        )
        return jsonify(result), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark menu item unavailable")
        return jsonify({"error": "Internal server error"}), 500


@stations_bp.post("/menu-items/<int:menu_item_id>/available")
@require_caller
@require_role(STATION_ROLES, MANAGER_ROLES)
def mark_available_route(menu_item_id: int):
    try:
        menu_item = station_service.mark_menu_item_available(g.caller, menu_item_id)
        return jsonify({"menu_item": menu_item.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark menu item available")
        return jsonify({"error": "Internal server error"}), 500
