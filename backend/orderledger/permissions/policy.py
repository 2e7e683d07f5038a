# Overview: Single authorization policy evaluated once per operation.

"""
Authorization is a pure function of (actor, operation, resource).

Services call `authorize(...)` once at the top of each operation instead of
scattering role checks across route handlers. The policy never touches the
database; the caller passes the already-loaded resource when ownership
matters.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import Forbidden, Unauthorized
from .definitions import (
    OPERATION_DEFINITIONS,
    OWNER_SCOPED_OPERATIONS,
    ROLE_CUSTOMER,
    ROLE_GRANTS,
    STAFF_ROLES,
    VALID_ROLES,
)


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation."""
    user_id: int
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER


_KNOWN_OPERATIONS = frozenset(op[0] for op in OPERATION_DEFINITIONS)


def _owner_of(resource) -> int | None:
    if resource is None:
        return None
    if isinstance(resource, dict):
        return resource.get("customer_id")
    return getattr(resource, "customer_id", None)


def check(actor: Actor | None, operation: str, resource=None) -> str | None:
    """
    Evaluate the policy.

    Returns None when allowed, otherwise the error kind: "UNAUTHORIZED"
    or "FORBIDDEN".
    """
    if operation not in _KNOWN_OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")

    if actor is None or actor.user_id is None or actor.role not in VALID_ROLES:
        return "UNAUTHORIZED"

    if operation not in ROLE_GRANTS.get(actor.role, ()):
        return "FORBIDDEN"

    if actor.role == ROLE_CUSTOMER and operation in OWNER_SCOPED_OPERATIONS:
        owner = _owner_of(resource)
        if owner is None or owner != actor.user_id:
            return "FORBIDDEN"

    return None


def is_allowed(actor: Actor | None, operation: str, resource=None) -> bool:
    return check(actor, operation, resource) is None


def authorize(actor: Actor | None, operation: str, resource=None) -> Actor:
    """
    Raise Unauthorized / Forbidden unless `actor` may perform `operation`
    on `resource`. Returns the actor for call-site convenience.
    """
    outcome = check(actor, operation, resource)
    if outcome == "UNAUTHORIZED":
        raise Unauthorized("Authenticated actor with a known role is required")
    if outcome == "FORBIDDEN":
        if actor.role == ROLE_CUSTOMER and operation in OWNER_SCOPED_OPERATIONS:
            raise Forbidden(
                "Customers may only act on their own orders",
                operation=operation,
            )
        raise Forbidden(
            f"Role {actor.role} may not perform {operation}",
            operation=operation,
            role=actor.role,
        )
    return actor
