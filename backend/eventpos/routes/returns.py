# Overview: Flask API routes for returns and refunds; parses input and returns JSON responses.

# backend/eventpos/routes/returns.py
"""
Return/Refund API Routes

DESIGN:
- Any role that can see an order may report a served item returned
- Cashiers approve (or override) the refund amount
- The station (or a cashier) confirms the item physically came back
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import MANAGER_ROLES, STATION_ROLES, Role
from ..services import return_service
from ..services.payment_service import METHOD_CASH
from ..validation import optional_int, optional_str, require_payload, require_positive_int, require_str


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")

REFUND_ROLES = (Role.CASHIER, MANAGER_ROLES)
CONFIRM_ROLES = (Role.CASHIER, STATION_ROLES, MANAGER_ROLES)


@returns_bp.post("")
@require_caller
def report_return_route():
    """
    Report a served item as returned.

    Request body:
    {"order_item_id": 40, "reason": "Cold"}

    Returns:
        201: Return created; the item leaves the order total
        409: Item not served, or order already paid
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_return = return_service.report_return(
            g.caller, require_positive_int(data, "order_item_id"), require_str(data, "reason")
        )
        return jsonify({"return": order_return.to_dict()}), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to report return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("")
@require_caller
def list_returns_route():
    """
    List returns.

    Query params:
    - pending: "true" for returns awaiting refund approval or confirmation
    - event_id: restrict to one event
    """
    try:
        pending_only = request.args.get("pending", "false").lower() == "true"
        event_id = optional_int(request.args, "event_id", minimum=1)
        returns = return_service.list_returns(g.caller.tenant_id, pending_only=pending_only, event_id=event_id)
        return jsonify({"returns": [r.to_dict() for r in returns], "count": len(returns)}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/approve")
@require_caller
@require_role(*REFUND_ROLES)
def approve_refund_route(return_id: int):
    """
    Approve the refund.

    Request body (optional):
    {"refund_amount_cents": 1000, "payment_method": "cash"}
    Defaults to the item's full line total.
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_return = return_service.approve_refund(
            g.caller,
            return_id,
            data.get("refund_amount_cents"),
            method=data.get("payment_method") or METHOD_CASH,
        )
        return jsonify({"return": order_return.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve refund")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/override")
@require_caller
@require_role(*REFUND_ROLES)
def override_refund_route(return_id: int):
    """
    Replace an approved refund amount.

    Request body:
    {"refund_amount_cents": 500, "reason": "Partial refund agreed", "payment_method": "cash"}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_return = return_service.override_refund(
            g.caller,
            return_id,
            data.get("refund_amount_cents"),
            require_str(data, "reason"),
            method=optional_str(data, "payment_method") or METHOD_CASH,
        )
        return jsonify({"return": order_return.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to override refund")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/confirm")
@require_caller
@require_role(*CONFIRM_ROLES)
def confirm_return_route(return_id: int):
    try:
        order_return = return_service.confirm_return(g.caller, return_id)
        return jsonify({"return": order_return.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm return")
        return jsonify({"error": "Internal server error"}), 500
