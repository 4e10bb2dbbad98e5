# Overview: Flask API routes for the payment ledger; parses input and returns JSON responses.

"""
Payment Ledger API Routes

DESIGN:
- Record single, split-by-method and split-by-item payments
- Quote the balance and an even per-guest split
- Settle in one call, or confirm paid once the ledger matches
- Void mistaken payments while the order is open

SECURITY:
- Cashiers, bar staff and managers only
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import PAYMENT_ROLES
from ..services import payment_service
from ..validation import optional_str, require_payload, require_positive_int, require_str


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@require_caller
@require_role(PAYMENT_ROLES)
def record_payment_route():
    """
    Record one payment.

    Request body:
    {
        "order_id": 12,
        "payment_method": "cash",        (cash | pos | transfer)
        "amount_cents": 2500,
        "split_type": "by_guest",        (optional, default "full")
        "guest_identifier": "Guest 2",   (required for by_guest)
        "notes": "..."                   (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_id = require_positive_int(data, "order_id")
        payment = payment_service.record_payment(
            g.caller,
            order_id,
            data.get("payment_method"),
            data.get("amount_cents"),
            notes=optional_str(data, "notes"),
            guest_identifier=optional_str(data, "guest_identifier", max_length=64),
            split_type=data.get("split_type") or payment_service.SPLIT_FULL,
        )
        return jsonify({
            "payment": payment.to_dict(),
            "balance": payment_service.get_balance(g.caller.tenant_id, order_id),
        }), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/split")
@require_caller
@require_role(PAYMENT_ROLES)
def record_split_route():
    """
    Pay the remaining balance with several methods.

    Request body:
    {"order_id": 12, "components": {"cash": 1500, "pos": 1000}, "notes": "..."}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_id = require_positive_int(data, "order_id")
        payments = payment_service.record_split_payment(
            g.caller, order_id, data.get("components"), notes=optional_str(data, "notes")
        )
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "split_session_id": payments[0].split_session_id if payments else None,
            "balance": payment_service.get_balance(g.caller.tenant_id, order_id),
        }), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record split payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/items")
@require_caller
@require_role(PAYMENT_ROLES)
def record_item_split_route():
    """
    Pay for specific items.

    Request body:
    {
        "order_id": 12,
        "payment_method": "pos",
        "items": [{"order_item_id": 40, "quantity": 1}],
        "guest_identifier": "Guest 1"    (optional)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        order_id = require_positive_int(data, "order_id")
        payment = payment_service.record_item_split_payment(
            g.caller,
            order_id,
            data.get("payment_method"),
            data.get("items"),
            guest_identifier=optional_str(data, "guest_identifier", max_length=64),
            notes=optional_str(data, "notes"),
        )
        return jsonify({
            "payment": payment.to_dict(),
            "balance": payment_service.get_balance(g.caller.tenant_id, order_id),
        }), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record item split payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/settle")
@require_caller
@require_role(PAYMENT_ROLES)
def settle_route():
    """Record a full single-method payment and close the order."""
    try:
        data = require_payload(request.get_json(silent=True))
        order = payment_service.settle_order(
            g.caller,
            require_positive_int(data, "order_id"),
            data.get("payment_method"),
            data.get("amount_cents"),
            notes=optional_str(data, "notes"),
        )
        return jsonify({
            "order": order.to_dict(include_items=True),
            "balance": payment_service.quote_balance(order),
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/orders/<int:order_id>/balance")
@require_caller
def balance_route(order_id: int):
    try:
        return jsonify(payment_service.get_balance(g.caller.tenant_id, order_id)), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote balance")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>")
@require_caller
@require_role(PAYMENT_ROLES)
def list_payments_route(order_id: int):
    """
    Payments of an order.

    Query params:
    - include_voided: Include voided payments (default: true)
    """
    try:
        include_voided = request.args.get("include_voided", "true").lower() != "false"
        payments = payment_service.list_payments(g.caller.tenant_id, order_id, include_voided=include_voided)
        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "balance": payment_service.get_balance(g.caller.tenant_id, order_id),
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<int:order_id>/guest-split")
@require_caller
@require_role(PAYMENT_ROLES)
def guest_split_route(order_id: int):
    """Even split of the remaining balance. Query params: guests (required)."""
    try:
        quote = payment_service.quote_guest_split(g.caller.tenant_id, order_id, request.args.get("guests"))
        return jsonify(quote), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to quote guest split")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CONFIRMATION & VOIDS
# =============================================================================

@payments_bp.post("/orders/<int:order_id>/confirm")
@require_caller
@require_role(PAYMENT_ROLES)
def confirm_paid_route(order_id: int):
    """
    Mark an order paid.

    Returns:
        200: Order paid
        400: Ledger does not match the total
        409: Already paid
    """
    try:
        order = payment_service.confirm_order_paid(g.caller, order_id)
        return jsonify({
            "order": order.to_dict(include_items=True),
            "balance": payment_service.quote_balance(order),
        }), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm order paid")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/void")
@require_caller
@require_role(PAYMENT_ROLES)
def void_payment_route(payment_id: int):
    """
    Void a payment (a split component voids its whole split).

    Request body:
    {"reason": "Wrong amount entered"}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        voided = payment_service.void_payment(g.caller, payment_id, require_str(data, "reason"))
        return jsonify({"payments": [p.to_dict() for p in voided]}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void payment")
        return jsonify({"error": "Internal server error"}), 500
