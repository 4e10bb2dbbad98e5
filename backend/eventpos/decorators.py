# Overview: Request decorators establishing caller identity and role authority.

from functools import wraps
from flask import jsonify, g

from .errors import AuthenticationError
from .services import identity_service


def require_caller(f):
    """
    Require gateway identity headers and establish tenant context.

    Sets g.caller (user_id, tenant_id, role). Returns 401 when the headers
    are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.caller = identity_service.caller_from_request()
        except AuthenticationError as e:
            return jsonify(e.to_dict()), e.status_code
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the caller to hold one of the given roles.

    Must be applied after @require_caller.
    """
    allowed = set()
    for role in roles:
        allowed |= set(role) if isinstance(role, (set, frozenset, list, tuple)) else {role}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            caller = getattr(g, "caller", None)
            if caller is None:
                return jsonify({"error": "Authentication required", "code": "AUTHENTICATION_REQUIRED"}), 401
            if caller.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "code": "SCOPE_DENIED",
                    "required_roles": sorted(allowed),
                    "message": f"Role '{caller.role}' cannot perform this action",
                }), 403
            return f(*args, **kwargs)

        return decorated_function
    return decorator
