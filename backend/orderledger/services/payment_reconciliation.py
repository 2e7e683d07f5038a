# Overview: Service-layer payment reconciliation: payment status sync and cancellation with refund.

"""
Payment Reconciliation

WHY: An order's payment_status, its single transaction row, its refunds and
the stock of its variants must move together. A cancellation that refunds
but forgets to restock (or restocks twice) silently corrupts the business.

DESIGN PRINCIPLES:
- One transaction row per order: re-verification updates it (upsert).
- Cancellation is one local transaction: refund row, CANCELLED status,
  payment_status REFUNDED and one RETURN ledger entry per item.
- The refund gateway is called after that commit. Its rejection is recorded
  on the Refund (FAILED) for manual follow-up; the cancellation stands.
- Idempotence comes from the preconditions (status / REFUNDED guard),
  re-checked on the locked order row; the ledger has no notion of
  "already returned".
"""

from __future__ import annotations

from flask import current_app

from ..errors import AlreadyRefunded, CannotCancel, NotFound, ValidationError
from ..extensions import db
from ..models import Order, PaymentTransaction, Refund
from ..permissions import definitions as perms
from ..permissions.policy import Actor, authorize
from ..time_utils import utcnow
from .concurrency import get_locked, run_with_retry
from .gateways import get_refund_gateway
from .inventory_ledger import CHANGE_RETURN, _apply_adjustment
from .notifications import notify_refund_created, notify_status_changed
from .order_state_machine import STATUS_CANCELLED, STATUS_CONFIRMED, STATUS_PENDING, STATUS_PROCESSING, _apply_transition


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"
PAYMENT_REFUNDED = "REFUNDED"

VALID_PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)


# =============================================================================
# TRANSACTION STATUS (CONSTANTS)
# =============================================================================

TRANSACTION_PENDING = "PENDING"
TRANSACTION_COMPLETED = "COMPLETED"
TRANSACTION_FAILED = "FAILED"

_TRANSACTION_STATUS_FOR_PAYMENT = {
    PAYMENT_PAID: TRANSACTION_COMPLETED,
    PAYMENT_FAILED: TRANSACTION_FAILED,
}

PAYMENT_PROVIDERS = {
    "MOBILE_MONEY": "mobile_money",
    "CASH_ON_DELIVERY": "cash",
    "CASH": "cash",
}


# =============================================================================
# REFUNDS (CONSTANTS)
# =============================================================================

REFUND_PENDING = "PENDING"
REFUND_PROCESSING = "PROCESSING"
REFUND_COMPLETED = "COMPLETED"
REFUND_FAILED = "FAILED"

VALID_REFUND_STATUSES = (REFUND_PENDING, REFUND_PROCESSING, REFUND_COMPLETED, REFUND_FAILED)

REFUND_METHOD_MOBILE_MONEY = "MOBILE_MONEY"
REFUND_METHOD_CASH = "CASH"
REFUND_METHOD_STORE_CREDIT = "STORE_CREDIT"

VALID_REFUND_METHODS = (REFUND_METHOD_MOBILE_MONEY, REFUND_METHOD_CASH, REFUND_METHOD_STORE_CREDIT)

CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_PROCESSING)


def validate_payment_status(payment_status: str) -> str:
    normalized = (payment_status or "").upper()
    if normalized not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{payment_status}'. Must be one of: {', '.join(VALID_PAYMENT_STATUSES)}"
        )
    return normalized


def transaction_status_for(payment_status: str) -> str:
    return _TRANSACTION_STATUS_FOR_PAYMENT.get(payment_status, TRANSACTION_PENDING)


def _upsert_transaction(order: Order, payment_status: str, reference: str | None, verified_by: int | None) -> PaymentTransaction:
    """
    Create or update the order's single transaction row (no commit).

    Only PAID stamps verified_at / verified_by; any other status clears
    them, so a stale verification never survives a downgrade.
    """
    txn = PaymentTransaction.query.filter_by(order_id=order.id).first()
    if txn is None:
        txn = PaymentTransaction(
            order_id=order.id,
            amount_cents=order.total_cents,
            method=order.payment_method,
            provider=PAYMENT_PROVIDERS.get(order.payment_method),
        )
        db.session.add(txn)

    txn.amount_cents = order.total_cents
    txn.status = transaction_status_for(payment_status)
    if reference is not None:
        txn.reference = reference

    if payment_status == PAYMENT_PAID:
        txn.verified_at = utcnow()
        txn.verified_by = verified_by
    else:
        txn.verified_at = None
        txn.verified_by = None

    return txn


# =============================================================================
# PAYMENT STATUS UPDATE
# =============================================================================

def update_payment_status(
    order_id: int,
    new_payment_status: str,
    reference: str | None = None,
    actor: Actor | None = None,
) -> Order:
    """
    Set an order's payment status and reconcile its transaction record.

    Args:
        order_id: Order being paid
        new_payment_status: PENDING, PAID, FAILED or REFUNDED
        reference: Optional external payment reference (mobile money id)
        actor: Sales staff or admin

    Returns:
        The committed Order (its `transaction` holds the upserted row)
    """
    authorize(actor, perms.PAYMENT_UPDATE)
    new_payment_status = validate_payment_status(new_payment_status)

    def _op():
        order = get_locked(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")

        order.payment_status = new_payment_status
        if reference is not None:
            order.payment_reference = reference
        # Order version check first; the loser of a race retries before
        # touching the transaction row.
        db.session.flush()

        _upsert_transaction(order, new_payment_status, reference, actor.user_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION WITH REFUND
# =============================================================================

def cancel_order(
    order_id: int,
    reason: str,
    refund_method: str = REFUND_METHOD_MOBILE_MONEY,
    actor: Actor | None = None,
    notes: str | None = None,
) -> Refund:
    """
    Cancel an order, refund its total and restore its stock.

    Local effects commit together: Refund (PENDING), status CANCELLED
    (completed_at stamped once, history entry), payment_status REFUNDED,
    and one RETURN +quantity ledger entry per item. Afterwards the refund
    gateway is called once: accepted -> PROCESSING, rejected or raising ->
    FAILED with the gateway message.

    Raises:
        Unauthorized / Forbidden, ValidationError, NotFound,
        CannotCancel, AlreadyRefunded
    """
    if not reason or not str(reason).strip():
        raise ValidationError("Cancellation reason is required")
    refund_method = (refund_method or REFUND_METHOD_MOBILE_MONEY).upper()
    if refund_method not in VALID_REFUND_METHODS:
        raise ValidationError(
            f"Invalid refund method '{refund_method}'. Must be one of: {', '.join(VALID_REFUND_METHODS)}"
        )
    reason = str(reason).strip()

    def _op():
        order = get_locked(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        authorize(actor, perms.ORDER_CANCEL, order)

        if order.status not in CANCELLABLE_STATUSES:
            raise CannotCancel(
                f"Cannot cancel order with status {order.status}. "
                f"Only orders with status {', '.join(CANCELLABLE_STATUSES)} can be cancelled.",
                current_status=order.status,
            )
        if order.payment_status == PAYMENT_REFUNDED:
            raise AlreadyRefunded(
                f"Order {order.order_number} payment is already refunded",
                order_id=order.id,
            )

        refund = Refund(
            order_id=order.id,
            amount_cents=order.total_cents,
            reason=reason,
            status=REFUND_PENDING,
            refund_method=refund_method,
            processed_by=actor.user_id,
            notes=notes,
        )
        db.session.add(refund)

        previous = _apply_transition(order, STATUS_CANCELLED, actor.user_id, note=f"Cancelled: {reason}")
        order.payment_status = PAYMENT_REFUNDED

        for item in order.items:
            _apply_adjustment(
                variant_id=item.variant_id,
                change_type=CHANGE_RETURN,
                quantity_change=item.quantity,
                reason=f"Order {order.order_number} cancelled: {reason}",
                performed_by=actor.user_id,
                order_id=order.id,
            )

        db.session.commit()
        return order, refund, previous

    order, refund, previous = run_with_retry(_op)

    _request_gateway_refund(refund.id, order.payment_reference)

    notify_status_changed(order, previous)
    notify_refund_created(refund)
    return refund


def _request_gateway_refund(refund_id: int, external_reference: str | None) -> Refund:
    """
    Call the refund gateway once and record the outcome on the refund.

    Never raises for gateway problems: the cancellation is already committed
    and a FAILED refund is the visible, reportable result.
    """
    refund = db.session.get(Refund, refund_id)
    gateway = get_refund_gateway()

    try:
        result = gateway.refund(refund.amount_cents, external_reference)
        accepted, message = result.accepted, result.message
    except Exception as exc:
        current_app.logger.exception("Refund gateway call failed for refund %s", refund_id)
        accepted, message = False, f"Gateway error: {exc}"

    def _op():
        row = db.session.get(Refund, refund_id)
        if accepted:
            row.status = REFUND_PROCESSING
            row.processed_at = utcnow()
        else:
            row.status = REFUND_FAILED
        row.gateway_message = message[:255] if message else None
        db.session.commit()
        return row

    row = run_with_retry(_op)
    if not accepted:
        current_app.logger.warning(
            "Refund %s for order %s rejected by gateway: %s", row.id, row.order_id, message,
        )
    return row
