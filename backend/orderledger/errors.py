# Overview: Domain error taxonomy shared by services and routes.

"""
Order Ledger Errors

Every failure of the lifecycle subsystem is raised as one of these classes.
Each carries a stable `code` (machine-readable, never reworded) and the HTTP
status the API layer should answer with. Routes catch OrderLedgerError and
return `jsonify(err.to_dict()), err.status_code`.

Only the refund-gateway rejection inside cancel_order is NOT raised; it is
recorded on the Refund row (status FAILED) instead.
"""

from __future__ import annotations


class OrderLedgerError(Exception):
    """Base class for all domain errors."""

    code = "ORDER_LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OrderLedgerError):
    """Malformed input: unknown enum value, missing field, bad quantity."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFound(OrderLedgerError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransition(OrderLedgerError):
    """Target status is not reachable from the current status (order or refund)."""
    code = "INVALID_STATUS_TRANSITION"
    status_code = 409

    def __init__(self, current_status: str, target_status: str, allowed: list[str]):
        allowed_text = ", ".join(allowed) if allowed else "none (terminal status)"
        super().__init__(
            f"Cannot transition from {current_status} to {target_status}. "
            f"Allowed transitions: {allowed_text}",
            current_status=current_status,
            target_status=target_status,
            allowed=list(allowed),
        )
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = list(allowed)


class InsufficientStock(OrderLedgerError):
    """Ledger arithmetic would drive a stock counter below zero."""
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, variant_id: int, available: int, quantity_change: int):
        super().__init__(
            f"Variant {variant_id} has {available} in stock; "
            f"change of {quantity_change} would make stock negative",
            variant_id=variant_id,
            available=available,
            quantity_change=quantity_change,
        )
        self.variant_id = variant_id
        self.available = available


class CannotCancel(OrderLedgerError):
    code = "CANNOT_CANCEL"
    status_code = 409


class AlreadyRefunded(OrderLedgerError):
    code = "ALREADY_REFUNDED"
    status_code = 409


class Unauthorized(OrderLedgerError):
    """No (or unusable) actor context."""
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(OrderLedgerError):
    """Actor lacks the role or ownership for the operation."""
    code = "FORBIDDEN"
    status_code = 403


class IntegrityViolation(OrderLedgerError):
    """
    Ledger identity broken: caller-supplied quantities disagree with
    previous + change, an immutable ledger field was targeted for update,
    or an entry/counter pair was found out of step.
    """
    code = "INTEGRITY_VIOLATION"
    status_code = 409
