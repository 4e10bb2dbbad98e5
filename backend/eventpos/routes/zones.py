# Overview: Flask API routes for zone-role assignments.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_caller, require_role
from ..errors import FulfillmentError
from ..permissions import MANAGER_ROLES
from ..services import scope_service
from ..validation import require_payload, require_positive_int, require_str


zones_bp = Blueprint("zones", __name__, url_prefix="/api/zones")


@zones_bp.get("/<int:zone_id>/assignments")
@require_caller
def list_assignments_route(zone_id: int):
    try:
        assignments = scope_service.list_zone_assignments(g.caller.tenant_id, zone_id)
        return jsonify({"assignments": [a.to_dict() for a in assignments]}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list zone assignments")
        return jsonify({"error": "Internal server error"}), 500


@zones_bp.post("/<int:zone_id>/assignments")
@require_caller
@require_role(MANAGER_ROLES)
def assign_route(zone_id: int):
    """
    Assign a user to a zone role.

    Request body:
    {"user_id": 21, "role": "bar_staff"}

    Returns:
        201: Assignment created
        409: The zone already has that role, or the user already holds a role there
    """
    try:
        data = require_payload(request.get_json(silent=True))
        assignment = scope_service.assign_zone_role(
            g.caller.tenant_id,
            zone_id,
            require_positive_int(data, "user_id"),
            require_str(data, "role", max_length=32),
            actor_user_id=g.caller.user_id,
        )
        return jsonify({"assignment": assignment.to_dict()}), 201
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign zone role")
        return jsonify({"error": "Internal server error"}), 500


@zones_bp.put("/<int:zone_id>/assignments/<role>")
@require_caller
@require_role(MANAGER_ROLES)
def replace_route(zone_id: int, role: str):
    """Hand the zone role to another user: {"user_id": 22}."""
    try:
        data = require_payload(request.get_json(silent=True))
        assignment = scope_service.replace_zone_role(
            g.caller.tenant_id,
            zone_id,
            role,
            require_positive_int(data, "user_id"),
            actor_user_id=g.caller.user_id,
        )
        return jsonify({"assignment": assignment.to_dict()}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to replace zone role")
        return jsonify({"error": "Internal server error"}), 500


@zones_bp.delete("/<int:zone_id>/assignments/<role>")
@require_caller
@require_role(MANAGER_ROLES)
def remove_route(zone_id: int, role: str):
    try:
        scope_service.remove_zone_role(g.caller.tenant_id, zone_id, role, actor_user_id=g.caller.user_id)
        return jsonify({"removed": True, "zone_id": zone_id, "role": role}), 200
    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove zone role")
        return jsonify({"error": "Internal server error"}), 500
