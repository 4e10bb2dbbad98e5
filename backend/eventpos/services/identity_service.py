# Overview: Caller identity asserted by the upstream gateway.

"""
Identity Service

Authentication is owned by an upstream gateway. Each request arrives with
the already-verified user id, tenant id and role as headers (names are
configurable). This module only parses them; it never trusts a tenant id
from a request body.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, request

from ..errors import AuthenticationError
from ..permissions import validate_role


@dataclass(frozen=True)
class Caller:
    user_id: int
    tenant_id: int
    role: str

    def to_dict(self) -> dict:
        return {"user_id": self.user_id, "tenant_id": self.tenant_id, "role": self.role}


def _positive_int_header(name: str) -> int:
    raw = (request.headers.get(name) or "").strip()
    if not raw:
        raise AuthenticationError(f"Missing identity header {name}")
    if not raw.isdigit() or int(raw) <= 0:
        raise AuthenticationError(f"Identity header {name} must be a positive integer")
    return int(raw)


def caller_from_request() -> Caller:
    config = current_app.config
    user_id = _positive_int_header(config["IDENTITY_USER_HEADER"])
    tenant_id = _positive_int_header(config["IDENTITY_TENANT_HEADER"])

    role_header = config["IDENTITY_ROLE_HEADER"]
    role = (request.headers.get(role_header) or "").strip()
    if not role:
        raise AuthenticationError(f"Missing identity header {role_header}")
    if not validate_role(role):
        raise AuthenticationError(f"Unknown role '{role}' in {role_header}")

    return Caller(user_id=user_id, tenant_id=tenant_id, role=role)
