# Overview: Roles, operation definitions and the role -> operation grants.
# Each operation is defined as: (code, name, description, category)

from .categories import OperationCategory


# -- ROLES --
# Supplied by the authentication collaborator; trusted as-is.

ROLE_CUSTOMER = "CUSTOMER"
ROLE_SALES_STAFF = "SALES_STAFF"
ROLE_INVENTORY_MANAGER = "INVENTORY_MANAGER"
ROLE_ADMIN = "ADMIN"

VALID_ROLES = (ROLE_CUSTOMER, ROLE_SALES_STAFF, ROLE_INVENTORY_MANAGER, ROLE_ADMIN)
STAFF_ROLES = frozenset({ROLE_SALES_STAFF, ROLE_INVENTORY_MANAGER, ROLE_ADMIN})


# -- ORDERS --

ORDER_CREATE = "order.create"
ORDER_VIEW = "order.view"
ORDER_LIST_ALL = "order.list_all"
ORDER_TRANSITION = "order.transition"
ORDER_CANCEL = "order.cancel"

ORDER_OPERATIONS = [
    (ORDER_CREATE, "Create Order", "Place an order (customers for themselves, staff at POS)", OperationCategory.ORDERS),
    (ORDER_VIEW, "View Order", "Read an order and its status history", OperationCategory.ORDERS),
    (ORDER_LIST_ALL, "List All Orders", "List orders of every customer", OperationCategory.ORDERS),
    (ORDER_TRANSITION, "Change Order Status", "Drive the order lifecycle state machine", OperationCategory.ORDERS),
    (ORDER_CANCEL, "Cancel Order", "Cancel an order and refund it", OperationCategory.ORDERS),
]


# -- PAYMENTS --

PAYMENT_UPDATE = "payment.update"

PAYMENT_OPERATIONS = [
    (PAYMENT_UPDATE, "Update Payment Status", "Verify or fail an order payment", OperationCategory.PAYMENTS),
]


# -- INVENTORY --

INVENTORY_VIEW = "inventory.view"
INVENTORY_ADJUST = "inventory.adjust"
INVENTORY_ANNOTATE = "inventory.annotate"
INVENTORY_DELETE_ENTRY = "inventory.delete_entry"

INVENTORY_OPERATIONS = [
    (INVENTORY_VIEW, "View Inventory Ledger", "Read stock history and ledger entries", OperationCategory.INVENTORY),
    (INVENTORY_ADJUST, "Adjust Stock", "Record RESTOCK / ADJUSTMENT / RETURN / SALE entries", OperationCategory.INVENTORY),
    (INVENTORY_ANNOTATE, "Annotate Ledger Entry", "Edit the reason text of a ledger entry", OperationCategory.INVENTORY),
    (INVENTORY_DELETE_ENTRY, "Delete Ledger Entry", "Remove a ledger entry (breaks audit trail)", OperationCategory.INVENTORY),
]


# -- REFUNDS --

REFUND_VIEW = "refund.view"
REFUND_UPDATE = "refund.update"

REFUND_OPERATIONS = [
    (REFUND_VIEW, "View Refunds", "List and read refunds", OperationCategory.REFUNDS),
    (REFUND_UPDATE, "Update Refund", "Advance refund status after manual follow-up", OperationCategory.REFUNDS),
]


OPERATION_DEFINITIONS = (
    ORDER_OPERATIONS
    + PAYMENT_OPERATIONS
    + INVENTORY_OPERATIONS
    + REFUND_OPERATIONS
)


# Operations a CUSTOMER may perform only on records they own
OWNER_SCOPED_OPERATIONS = frozenset({ORDER_CREATE, ORDER_VIEW, ORDER_CANCEL})


ROLE_GRANTS = {
    ROLE_ADMIN: frozenset(op[0] for op in OPERATION_DEFINITIONS),
    ROLE_SALES_STAFF: frozenset({
        ORDER_CREATE,
        ORDER_VIEW,
        ORDER_LIST_ALL,
        ORDER_TRANSITION,
        ORDER_CANCEL,
        PAYMENT_UPDATE,
        INVENTORY_VIEW,
        REFUND_VIEW,
    }),
    ROLE_INVENTORY_MANAGER: frozenset({
        ORDER_VIEW,
        ORDER_LIST_ALL,
        ORDER_TRANSITION,
        ORDER_CANCEL,
        INVENTORY_VIEW,
        INVENTORY_ADJUST,
        INVENTORY_ANNOTATE,
        REFUND_VIEW,
    }),
    ROLE_CUSTOMER: frozenset({
        ORDER_CREATE,
        ORDER_VIEW,
        ORDER_CANCEL,
    }),
}
