# Overview: Authorization package.
# Re-exports all public APIs so callers import from one place.

from .categories import OperationCategory
from .definitions import (
    OPERATION_DEFINITIONS,
    ORDER_OPERATIONS,
    PAYMENT_OPERATIONS,
    INVENTORY_OPERATIONS,
    REFUND_OPERATIONS,
    ROLE_GRANTS,
    VALID_ROLES,
    STAFF_ROLES,
    ROLE_CUSTOMER,
    ROLE_SALES_STAFF,
    ROLE_INVENTORY_MANAGER,
    ROLE_ADMIN,
)
from .policy import Actor, authorize, check, is_allowed
from .helpers import (
    get_all_operation_codes,
    get_operations_by_category,
    get_operation_definition,
    get_role_operations,
)

__all__ = [
    "OperationCategory",
    "OPERATION_DEFINITIONS",
    "ORDER_OPERATIONS",
    "PAYMENT_OPERATIONS",
    "INVENTORY_OPERATIONS",
    "REFUND_OPERATIONS",
    "ROLE_GRANTS",
    "VALID_ROLES",
    "STAFF_ROLES",
    "ROLE_CUSTOMER",
    "ROLE_SALES_STAFF",
    "ROLE_INVENTORY_MANAGER",
    "ROLE_ADMIN",
    "Actor",
    "authorize",
    "check",
    "is_allowed",
    "get_all_operation_codes",
    "get_operations_by_category",
    "get_operation_definition",
    "get_role_operations",
]
