# Overview: Operation category constants for grouping related capabilities.


class OperationCategory:
    """Operation categories for organization and audit display."""
    ORDERS = "ORDERS"
    PAYMENTS = "PAYMENTS"
    INVENTORY = "INVENTORY"
    REFUNDS = "REFUNDS"
