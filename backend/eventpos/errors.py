# Overview: Domain error taxonomy shared by services and routes.

"""
Fulfillment error taxonomy.

Every rejected operation carries a message a floor operator can act on
("split total does not match order total", "zone already has a bar_staff
assigned"). Routes translate these into JSON bodies with the status code
carried by the class.

PROPAGATION:
- AuthenticationError / ValidationError / ScopeError / NotFoundError: raised
  at the boundary, before any write.
- StateConflictError: recoverable; the caller re-reads and re-evaluates.
- ConsistencyError: a multi-row write was partially applied or had to be
  compensated. Logged for operator remediation, never swallowed.
- UnavailableError: the store did not answer in time. Retryable, but the
  outcome of the write is unknown; callers must re-query before retrying.
"""

from __future__ import annotations


class FulfillmentError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    code = "FULFILLMENT_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(FulfillmentError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(FulfillmentError):
    """Entity does not exist inside the caller's tenant."""

    status_code = 404
    code = "NOT_FOUND"


class ScopeError(FulfillmentError):
    """Caller lacks the role or zone scope for the targeted entity."""

    status_code = 403
    code = "SCOPE_DENIED"


class StateConflictError(FulfillmentError):
    """409-level: the entity's current status does not permit the transition."""

    status_code = 409
    code = "STATE_CONFLICT"


class ConsistencyError(FulfillmentError):
    """A multi-row operation was partially applied and needs remediation."""

    status_code = 500
    code = "CONSISTENCY_VIOLATION"


class UnavailableError(FulfillmentError):
    """The durable store did not respond within its bound."""

    status_code = 503
    code = "STORE_UNAVAILABLE"


class AuthenticationError(FulfillmentError):
    """Identity headers from the gateway are missing or malformed."""

    status_code = 401
    code = "AUTHENTICATION_REQUIRED"
