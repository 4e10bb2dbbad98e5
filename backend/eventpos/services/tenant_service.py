"""
Multi-Tenant Service: Tenant Scoping Helpers

WHY: Every lookup by id must be tenant-scoped. An id that belongs to another
tenant behaves exactly like a missing id, so its existence is never revealed.

USAGE:
    from eventpos.services.tenant_service import require_in_tenant

    order = require_in_tenant(Order, order_id, caller.tenant_id)
"""

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError
from ..extensions import db


def require_in_tenant(model, entity_id, tenant_id: int, *, label: str | None = None):
    """
    Load one row of `model` by primary key inside a tenant.

    Raises:
        NotFoundError if the row does not exist or belongs to another tenant
    """
    label = label or model.__name__
    entity = db.session.get(model, entity_id) if entity_id is not None else None

    if entity is None:
        raise NotFoundError(f"{label} {entity_id} not found")

    if entity.tenant_id != tenant_id:
        # Could be probing; do not reveal it exists elsewhere
        current_app.logger.warning(
            "Cross-tenant lookup: %s %s requested by tenant %s", label, entity_id, tenant_id
        )
        raise NotFoundError(f"{label} {entity_id} not found")

    return entity


def require_many_in_tenant(model, entity_ids, tenant_id: int, *, label: str | None = None) -> dict:
    """Batch variant; returns {id: entity}. Any missing id raises NotFoundError."""
    label = label or model.__name__
    ids = {int(i) for i in entity_ids}
    if not ids:
        return {}
    rows = db.session.query(model).filter(model.id.in_(ids), model.tenant_id == tenant_id).all()
    found = {row.id: row for row in rows}
    missing = sorted(ids - set(found))
    if missing:
        raise NotFoundError(f"{label} not found: {', '.join(str(i) for i in missing)}")
    return found
