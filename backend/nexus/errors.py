# Overview: Domain error taxonomy shared by services and routes.

"""
Every error a service raises on purpose derives from ErpError and knows its
HTTP status. Routes translate them with ``jsonify(e.to_dict()), e.status_code``;
anything else is an unexpected failure and becomes a logged 500.
"""

from __future__ import annotations


class ErpError(Exception):
    """Base class for expected, client-reportable failures."""

    status_code = 400

    def __init__(self, message: str, details: dict | list | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ErpError):
    """Malformed or missing input. Carries every violation found."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message, details=list(errors) if errors else None)
        self.errors = list(errors or [])


class InvalidStateError(ErpError):
    """The entity is not in a state that permits the operation."""


class InvalidTransitionError(InvalidStateError):
    def __init__(self, current: str, attempted: str, reason: str | None = None):
        message = f"Invalid status transition from {current} to {attempted}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current = current
        self.attempted = attempted


class InsufficientStockError(ErpError):
    def __init__(
        self,
        product_id: int,
        required: int,
        available: int,
        product_name: str | None = None,
    ):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Required: {required}",
            details={
                "product_id": product_id,
                "required": required,
                "available": available,
                "shortfall": required - available,
            },
        )
        self.product_id = product_id
        self.required = required
        self.available = available


class NotFoundError(ErpError):
    status_code = 404


class AuthError(ErpError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


class StorageError(ErpError):
    """Unexpected database failure inside a transaction scope."""

    status_code = 500


class ImmutableRecordError(StorageError):
    """An append-only row (movement, audit entry) was about to be updated or deleted."""
