# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Waiters create orders at tables and mark them served
- The bar rings up walk-up sales in one call
- Every role of the tenant can read an order with its items and balance
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import ORDER_ROLES, MANAGER_ROLES, Role
from ..services import order_service, payment_service
from ..validation import optional_int, optional_str, require_payload, require_positive_int


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_caller
@require_role(ORDER_ROLES)
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "event_id": 1,
        "table_id": 4,              (or "table_number": "12"; bar sales go to /walkup)
        "guest_name": "Ana",        (optional)
        "items": [{"menu_item_id": 3, "quantity": 2, "notes": "no ice"}]
    }

    Returns:
        201: Order created with its items
        400 / 404 / 409: see error body
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order = order_service.create_order(
            g.caller,
            require_positive_int(data, "event_id"),
            data.get("items"),
            table_id=optional_int(data, "table_id", minimum=1),
            table_number=optional_str(data, "table_number", max_length=32),
            guest_name=optional_str(data, "guest_name", max_length=128),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/walkup")
@require_caller
@require_role(Role.BAR_STAFF, Role.CASHIER, MANAGER_ROLES)
def create_walkup_route():
    """Walk-up bar sale: items are served on creation and the order is payable."""
    try:
        data = require_payload(request.get_json(silent=True))
        order = order_service.create_walkup_sale(
            g.caller,
            require_positive_int(data, "event_id"),
            data.get("items"),
            guest_name=optional_str(data, "guest_name", max_length=128),
        )
        return jsonify({
            "order": order.to_dict(include_items=True),
            "balance": payment_service.quote_balance(order),
        }), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create walk-up sale")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_caller
def list_orders_route():
    """
    Orders of one event, oldest first.

    Query params:
    - event_id (required)
    - status (optional): e.g. served, to see what is waiting for the cashier
    """
    try:
        orders = order_service.list_orders(
            g.caller.tenant_id,
            require_positive_int(request.args, "event_id"),
            status=optional_str(request.args, "status", max_length=16),
        )
        return jsonify({"orders": [order.to_dict() for order in orders], "count": len(orders)}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_caller
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.caller.tenant_id, order_id)
        return jsonify({
            "order": order.to_dict(include_items=True),
            "balance": payment_service.quote_balance(order),
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items")
@require_caller
@require_role(ORDER_ROLES)
def add_items_route(order_id: int):
    try:
        data = require_payload(request.get_json(silent=True))
        order = order_service.add_items(g.caller, order_id, data.get("items"))
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add order items")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/serve")
@require_caller
@require_role(ORDER_ROLES)
def serve_order_route(order_id: int):
    """
    Mark an order served (every active item must be ready).

    Returns:
        200: Order served; ready items cascaded to served
        409: Items still being prepared, or already served/paid
    """
    try:
        order = order_service.mark_order_served(g.caller, order_id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark order served")
        return jsonify({"error": "Internal server error"}), 500
