# Overview: Typed failures raised by the core and translated to JSON by the HTTP layer.

"""
Error taxonomy.

Every failure the core surfaces to its caller is one of these types. Nothing
is retried or swallowed inside the core: services raise, routes translate
via the OmsError handler registered in create_app.
"""

from __future__ import annotations


class OmsError(Exception):
    """Base class for all domain failures."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class NotFound(OmsError):
    """Tenant, order, product or user lookup miss."""

    status_code = 404


class InvalidTransition(OmsError):
    """State machine precondition violated."""

    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(message or f"Cannot move order from {current} to {target}")
        self.current = current
        self.target = target


class InsufficientStock(OmsError):
    """FIFO deduction cannot satisfy the requested quantity."""

    status_code = 409

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class CourierError(OmsError):
    """Carrier rejected the request; reason comes from the fixed code table."""

    status_code = 502

    def __init__(self, code: int, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "courier_code": self.code}


class TransportError(OmsError):
    """Carrier unreachable or answered with something that is not JSON."""

    status_code = 502


class Unauthorized(OmsError):
    """Bad credentials."""

    status_code = 401


class Forbidden(OmsError):
    """Caller's role does not allow the operation."""

    status_code = 403

    def __init__(self, message: str = "Permission denied", required_roles=()):
        super().__init__(message)
        self.required_roles = list(required_roles)

    def to_dict(self) -> dict:
        data = {"error": self.message}
        if self.required_roles:
            data["required_roles"] = self.required_roles
        return data


class ValidationError(OmsError, ValueError):
    """400-level input problem."""

    status_code = 400


class ConflictError(OmsError, ValueError):
    """409-level business rule conflict (duplicate SKU, stale version)."""

    status_code = 409


class StoreUnavailable(OmsError):
    """A tenant's data store could not be opened."""

    status_code = 503
