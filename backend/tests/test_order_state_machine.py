"""
Order lifecycle state machine tests.

Verifies:
- transition(o, s) succeeds iff s is in the allowed set of o.status
- completed_at is set exactly when a terminal status is first reached
- Every transition is audited in the status history
- Status-changed events are emitted after commit
- Only staff may drive transitions
"""

import pytest

from orderledger.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from orderledger.extensions import db
from orderledger.models import InventoryLog, Order, ProductVariant, Refund
from orderledger.services import order_state_machine as sm


def _drive(order_id, actor, *statuses):
    for status in statuses:
        sm.transition(order_id, status, actor)
    return db.session.get(Order, order_id)


# =============================================================================
# PURE TRANSITION TABLE
# =============================================================================


class TestTransitionTable:

    @pytest.mark.parametrize(
        "current,target",
        [
            (sm.STATUS_PENDING, sm.STATUS_CONFIRMED),
            (sm.STATUS_PENDING, sm.STATUS_CANCELLED),
            (sm.STATUS_CONFIRMED, sm.STATUS_PROCESSING),
            (sm.STATUS_CONFIRMED, sm.STATUS_CANCELLED),
            (sm.STATUS_PROCESSING, sm.STATUS_SHIPPED),
            (sm.STATUS_PROCESSING, sm.STATUS_READY_FOR_PICKUP),
            (sm.STATUS_SHIPPED, sm.STATUS_DELIVERED),
            (sm.STATUS_READY_FOR_PICKUP, sm.STATUS_DELIVERED),
        ],
    )
    def test_allowed(self, current, target):
        assert sm.can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (sm.STATUS_PENDING, sm.STATUS_DELIVERED),
            (sm.STATUS_PENDING, sm.STATUS_PENDING),
            (sm.STATUS_PROCESSING, sm.STATUS_CANCELLED),
            (sm.STATUS_SHIPPED, sm.STATUS_READY_FOR_PICKUP),
            (sm.STATUS_DELIVERED, sm.STATUS_CANCELLED),
            (sm.STATUS_CANCELLED, sm.STATUS_PENDING),
        ],
    )
    def test_not_allowed(self, current, target):
        assert not sm.can_transition(current, target)

    def test_terminal_statuses(self):
        assert sm.is_terminal(sm.STATUS_DELIVERED)
        assert sm.is_terminal(sm.STATUS_CANCELLED)
        assert not sm.is_terminal(sm.STATUS_SHIPPED)
        assert sm.allowed_transitions(sm.STATUS_DELIVERED) == []


# =============================================================================
# TRANSITION OPERATION
# =============================================================================


class TestTransition:

    def test_full_delivery_path_sets_completed_at(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        assert order.completed_at is None

        order = _drive(order.id, sales_staff, sm.STATUS_CONFIRMED, sm.STATUS_PROCESSING, sm.STATUS_SHIPPED)
        assert order.completed_at is None

        order = _drive(order.id, sales_staff, sm.STATUS_DELIVERED)
        assert order.status == sm.STATUS_DELIVERED
        assert order.completed_at is not None

    def test_pending_to_delivered_rejected_and_order_unchanged(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        version_before = order.version_id

        with pytest.raises(InvalidTransition) as exc:
            sm.transition(order.id, sm.STATUS_DELIVERED, sales_staff)

        assert exc.value.current_status == sm.STATUS_PENDING
        assert set(exc.value.allowed) == {sm.STATUS_CONFIRMED, sm.STATUS_CANCELLED}

        order = db.session.get(Order, order.id)
        assert order.status == sm.STATUS_PENDING
        assert order.version_id == version_before
        assert order.completed_at is None

    def test_processing_cannot_be_cancelled_by_transition(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        _drive(order.id, sales_staff, sm.STATUS_CONFIRMED, sm.STATUS_PROCESSING)

        with pytest.raises(InvalidTransition):
            sm.transition(order.id, sm.STATUS_CANCELLED, sales_staff)

        shipped = sm.transition(order.id, sm.STATUS_SHIPPED, sales_staff)
        assert shipped.status == sm.STATUS_SHIPPED

    def test_cancel_by_transition_restocks_and_refunds(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant, quantity=2)
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 3

        cancelled = sm.transition(order.id, sm.STATUS_CANCELLED, sales_staff, note="Out of delivery range")

        assert cancelled.status == sm.STATUS_CANCELLED
        assert cancelled.payment_status == "REFUNDED"
        assert cancelled.completed_at is not None
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 5
        returns = InventoryLog.query.filter_by(order_id=order.id, change_type="RETURN").all()
        assert [r.quantity_change for r in returns] == [2]
        refunds = Refund.query.filter_by(order_id=order.id).all()
        assert len(refunds) == 1
        assert refunds[0].amount_cents == cancelled.total_cents
        assert refunds[0].reason == "Out of delivery range"

    def test_cancel_by_transition_without_note(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff)

        cancelled = sm.transition(order.id, sm.STATUS_CANCELLED, sales_staff)

        assert cancelled.refunds[0].reason == "Cancelled via status change"
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 5

    def test_same_status_rejected(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff)
        with pytest.raises(InvalidTransition):
            sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff)

    def test_terminal_rejects_everything_and_completed_at_never_changes(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        order = _drive(order.id, sales_staff, sm.STATUS_CANCELLED)
        stamped = order.completed_at
        assert stamped is not None

        for target in sm.VALID_STATUSES:
            with pytest.raises(InvalidTransition):
                sm.transition(order.id, target, sales_staff)

        assert db.session.get(Order, order.id).completed_at == stamped

    def test_history_records_each_step(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff, note="Phoned customer")

        history = sm.get_status_history(order.id, sales_staff)
        assert [(h.from_status, h.to_status) for h in history] == [
            (None, sm.STATUS_PENDING),
            (sm.STATUS_PENDING, sm.STATUS_CONFIRMED),
        ]
        assert history[-1].changed_by == sales_staff.user_id
        assert history[-1].note == "Phoned customer"

    def test_status_changed_event_emitted(self, variant, customer, sales_staff, place_order, notifier):
        order = place_order(customer, variant)
        sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff)

        events = notifier.of("order_status_changed")
        assert events == [{
            "order_id": order.id,
            "order_number": order.order_number,
            "previous_status": sm.STATUS_PENDING,
            "new_status": sm.STATUS_CONFIRMED,
        }]

    def test_notifier_failure_does_not_undo_transition(self, variant, customer, sales_staff, place_order, notifier):
        order = place_order(customer, variant)
        notifier.fail_with = RuntimeError("SMS provider down")

        result = sm.transition(order.id, sm.STATUS_CONFIRMED, sales_staff)

        assert result.status == sm.STATUS_CONFIRMED
        assert db.session.get(Order, order.id).status == sm.STATUS_CONFIRMED

    def test_customer_cannot_transition(self, variant, customer, place_order):
        order = place_order(customer, variant)
        with pytest.raises(Forbidden):
            sm.transition(order.id, sm.STATUS_CONFIRMED, customer)

    def test_unknown_status(self, variant, customer, sales_staff, place_order):
        order = place_order(customer, variant)
        with pytest.raises(ValidationError):
            sm.transition(order.id, "LOST_IN_TRANSIT", sales_staff)

    def test_unknown_order(self, db_session, sales_staff):
        with pytest.raises(NotFound):
            sm.transition(424242, sm.STATUS_CONFIRMED, sales_staff)

    def test_other_customer_cannot_read_history(self, variant, customer, other_customer, place_order):
        order = place_order(customer, variant)
        with pytest.raises(Forbidden):
            sm.get_status_history(order.id, other_customer)
