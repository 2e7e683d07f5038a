# Overview: Service-layer order lifecycle state machine; the only writer of Order.status.

from __future__ import annotations

from ..errors import InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderStatusHistory
from ..permissions import definitions as perms
from ..permissions.policy import Actor, authorize
from ..time_utils import utcnow
from .concurrency import get_locked, run_with_retry
from .notifications import notify_status_changed

"""
Order Lifecycle

    PENDING          -> CONFIRMED, CANCELLED
    CONFIRMED        -> PROCESSING, CANCELLED
    PROCESSING       -> READY_FOR_PICKUP, SHIPPED
    READY_FOR_PICKUP -> DELIVERED
    SHIPPED          -> DELIVERED
    DELIVERED, CANCELLED: terminal

Cancelling always goes through payment_reconciliation.cancel_order, which
also refunds the payment and restocks every item. transition() hands a
CANCELLED target over to it. PROCESSING orders can only be cancelled by
calling cancel_order directly, so the table above does not list it.
"""


STATUS_PENDING = "PENDING"
STATUS_CONFIRMED = "CONFIRMED"
STATUS_PROCESSING = "PROCESSING"
STATUS_READY_FOR_PICKUP = "READY_FOR_PICKUP"
STATUS_SHIPPED = "SHIPPED"
STATUS_DELIVERED = "DELIVERED"
STATUS_CANCELLED = "CANCELLED"

VALID_STATUSES = (
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_READY_FOR_PICKUP,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
)

STATUS_TRANSITIONS = {
    STATUS_PENDING: (STATUS_CONFIRMED, STATUS_CANCELLED),
    STATUS_CONFIRMED: (STATUS_PROCESSING, STATUS_CANCELLED),
    STATUS_PROCESSING: (STATUS_READY_FOR_PICKUP, STATUS_SHIPPED),
    STATUS_READY_FOR_PICKUP: (STATUS_DELIVERED,),
    STATUS_SHIPPED: (STATUS_DELIVERED,),
    STATUS_DELIVERED: (),
    STATUS_CANCELLED: (),
}

TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_CANCELLED})


def validate_status(status: str) -> str:
    normalized = (status or "").upper()
    if normalized not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(VALID_STATUSES)}"
        )
    return normalized


def allowed_transitions(status: str) -> list[str]:
    return list(STATUS_TRANSITIONS.get(status, ()))


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in STATUS_TRANSITIONS.get(from_status, ())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def record_status(order: Order, from_status: str | None, to_status: str, changed_by: int | None, note: str | None = None):
    entry = OrderStatusHistory(
        order=order,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        note=note,
    )
    db.session.add(entry)
    return entry


def _apply_transition(order: Order, target_status: str, changed_by: int | None, note: str | None = None) -> str:
    """
    Move a locked order to `target_status` inside the caller's transaction.

    Does not check the transition table; callers do. Returns the previous
    status.
    """
    previous = order.status
    order.status = target_status
    if is_terminal(target_status) and order.completed_at is None:
        order.completed_at = utcnow()
    record_status(order, previous, target_status, changed_by, note)
    return previous


def transition(order_id: int, target_status: str, actor: Actor, note: str | None = None) -> Order:
    """
    Drive an order to a new lifecycle status.

    Args:
        order_id: Order to move
        target_status: One of VALID_STATUSES
        actor: Staff or admin (customers never call this directly)
        note: Optional free text stored on the status history entry

    A CANCELLED target runs the full cancellation (refund and RETURN ledger
    entries); `note` becomes the cancellation reason.

    Returns:
        The committed Order

    Raises:
        Unauthorized / Forbidden, ValidationError, NotFound, InvalidTransition
    """
    authorize(actor, perms.ORDER_TRANSITION)
    target_status = validate_status(target_status)

    if target_status == STATUS_CANCELLED:
        return _cancel_via_transition(order_id, actor, note)

    def _op():
        order = get_locked(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        # Re-checked on every attempt against the freshly read row
        if not can_transition(order.status, target_status):
            raise InvalidTransition(order.status, target_status, allowed_transitions(order.status))

        previous = _apply_transition(order, target_status, actor.user_id, note)
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    notify_status_changed(order, previous)
    return order


def _cancel_via_transition(order_id: int, actor: Actor, note: str | None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    if not can_transition(order.status, STATUS_CANCELLED):
        raise InvalidTransition(order.status, STATUS_CANCELLED, allowed_transitions(order.status))

    from .payment_reconciliation import cancel_order

    reason = note if note and note.strip() else "Cancelled via status change"
    refund = cancel_order(order_id, reason, actor=actor)
    return refund.order


def get_status_history(order_id: int, actor: Actor) -> list[OrderStatusHistory]:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    authorize(actor, perms.ORDER_VIEW, order)
    return (
        OrderStatusHistory.query.filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        .all()
    )
