"""
Order creation and order read tests.
"""

from datetime import datetime

import pytest

from orderledger.errors import Forbidden, InsufficientStock, NotFound, ValidationError
from orderledger.extensions import db
from orderledger.models import InventoryLog, Order, PaymentTransaction, ProductVariant
from orderledger.services import order_numbers, order_service
from orderledger.services import order_state_machine as sm
from orderledger.services import payment_reconciliation as pr
from orderledger.services.inventory_ledger import CHANGE_SALE


class TestCreateOrder:

    def test_snapshots_items_and_totals(self, make_variant, customer, place_order):
        variant = make_variant(stock=10, base_price_cents=2500, additional_price_cents=300, size="L", color="Red")

        order = place_order(customer, variant, quantity=3)

        assert order.status == sm.STATUS_PENDING
        assert order.payment_status == pr.PAYMENT_PENDING
        assert order.completed_at is None
        assert order_numbers.is_valid_order_number(order.order_number)

        item = order.items[0]
        assert item.price_at_purchase_cents == 2800
        assert item.quantity == 3
        assert item.variant_details == "L / Red"
        assert order.subtotal_cents == 8400
        assert order.delivery_fee_cents == 0
        assert order.total_cents == 8400

    def test_records_sale_entries_per_item(self, make_variant, customer, place_order):
        variant = make_variant(stock=4)
        order = place_order(customer, variant, quantity=3)

        entry = InventoryLog.query.filter_by(order_id=order.id).one()
        assert entry.change_type == CHANGE_SALE
        assert (entry.previous_quantity, entry.quantity_change, entry.new_quantity) == (4, -3, 1)
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 1

    def test_insufficient_stock_aborts_whole_order(self, make_variant, customer, notifier, gateway):
        plenty = make_variant(stock=10)
        scarce = make_variant(stock=1)

        with pytest.raises(InsufficientStock):
            order_service.create_order(
                customer_id=customer.user_id,
                items=[
                    {"variant_id": plenty.id, "quantity": 2},
                    {"variant_id": scarce.id, "quantity": 2},
                ],
                payment_method="MOBILE_MONEY",
                delivery_method="STORE_PICKUP",
                actor=customer,
            )

        assert Order.query.count() == 0
        assert db.session.get(ProductVariant, plenty.id).stock_quantity == 10
        assert db.session.get(ProductVariant, scarce.id).stock_quantity == 1
        assert InventoryLog.query.filter_by(change_type=CHANGE_SALE).count() == 0

    def test_home_delivery_fee_from_zone(self, make_variant, customer, place_order):
        variant = make_variant(stock=5, base_price_cents=1000)

        order = place_order(
            customer, variant, quantity=1,
            delivery_method="HOME_DELIVERY", delivery_address="12 Av. du Commerce", delivery_zone="Gombe",
        )

        assert order.delivery_fee_cents == 500
        assert order.total_cents == 1500

    def test_free_delivery_over_threshold(self, make_variant, customer, place_order):
        variant = make_variant(stock=5, base_price_cents=6000)
        order = place_order(
            customer, variant, quantity=2,
            delivery_method="HOME_DELIVERY", delivery_address="12 Av. du Commerce", delivery_zone="Lemba",
        )
        assert order.delivery_fee_cents == 0

    def test_home_delivery_requires_address(self, variant, customer, place_order):
        with pytest.raises(ValidationError):
            place_order(customer, variant, delivery_method="HOME_DELIVERY")

    def test_in_store_cash_is_settled(self, variant, sales_staff, place_order):
        order = place_order(sales_staff, variant, customer_id=555, payment_method="CASH", source="IN_STORE")

        assert order.payment_status == pr.PAYMENT_PAID
        txn = PaymentTransaction.query.filter_by(order_id=order.id).one()
        assert txn.status == pr.TRANSACTION_COMPLETED
        assert txn.verified_by == sales_staff.user_id

    def test_staff_price_override(self, variant, sales_staff, place_order):
        order = order_service.create_order(
            customer_id=555,
            items=[{"variant_id": variant.id, "quantity": 1, "price_cents": 999}],
            payment_method="CASH",
            delivery_method="STORE_PICKUP",
            actor=sales_staff,
            source="IN_STORE",
        )
        assert order.items[0].price_at_purchase_cents == 999

    def test_customer_price_override_ignored(self, make_variant, customer, notifier, gateway):
        variant = make_variant(stock=5, base_price_cents=2000)
        order = order_service.create_order(
            customer_id=customer.user_id,
            items=[{"variant_id": variant.id, "quantity": 1, "price_cents": 1}],
            payment_method="MOBILE_MONEY",
            delivery_method="STORE_PICKUP",
            actor=customer,
        )
        assert order.items[0].price_at_purchase_cents == 2000

    def test_customer_cannot_order_for_someone_else(self, variant, customer, place_order):
        with pytest.raises(Forbidden):
            place_order(customer, variant, customer_id=999)

    @pytest.mark.parametrize(
        "override",
        [
            {"payment_method": "BITCOIN"},
            {"delivery_method": "DRONE"},
            {"source": "KIOSK"},
        ],
    )
    def test_invalid_enums(self, variant, customer, place_order, override):
        with pytest.raises(ValidationError):
            place_order(customer, variant, **override)

    @pytest.mark.parametrize(
        "override",
        [{"delivery_fee_cents": "free"}, {"customer_id": "walk-in"}],
    )
    def test_non_integer_fields(self, variant, sales_staff, place_order, override):
        kwargs = {"customer_id": 555, **override}
        with pytest.raises(ValidationError):
            place_order(sales_staff, variant, **kwargs)

    def test_non_positive_quantity(self, variant, customer, place_order):
        with pytest.raises(ValidationError):
            place_order(customer, variant, quantity=0)

    def test_unknown_variant(self, db_session, customer, notifier, gateway):
        with pytest.raises(NotFound):
            order_service.create_order(
                customer_id=customer.user_id,
                items=[{"variant_id": 31337, "quantity": 1}],
                payment_method="MOBILE_MONEY",
                delivery_method="STORE_PICKUP",
                actor=customer,
            )

    def test_inactive_variant(self, variant, customer, place_order, db_session):
        variant.is_active = False
        db_session.commit()
        with pytest.raises(ValidationError):
            place_order(customer, variant)


class TestReadOrders:

    def test_customer_sees_only_own(self, variant, customer, other_customer, place_order):
        mine = place_order(customer, variant, quantity=1)
        place_order(other_customer, variant, quantity=1)

        page = order_service.list_orders({}, actor=customer)
        assert [o.id for o in page["items"]] == [mine.id]

        # customer_id filter cannot widen a customer's view
        page = order_service.list_orders({"customer_id": other_customer.user_id}, actor=customer)
        assert [o.id for o in page["items"]] == [mine.id]

    def test_staff_sees_all_and_filters(self, variant, customer, other_customer, sales_staff, place_order):
        place_order(customer, variant, quantity=1)
        theirs = place_order(other_customer, variant, quantity=1)

        assert order_service.list_orders({}, actor=sales_staff)["total"] == 2
        page = order_service.list_orders({"customer_id": other_customer.user_id}, actor=sales_staff)
        assert [o.id for o in page["items"]] == [theirs.id]

    def test_get_other_customers_order_forbidden(self, variant, customer, other_customer, place_order):
        order = place_order(customer, variant)
        with pytest.raises(Forbidden):
            order_service.get_order(order.id, other_customer)

    def test_get_by_number(self, variant, customer, place_order):
        order = place_order(customer, variant)
        assert order_service.get_order_by_number(order.order_number, customer).id == order.id


class TestOrderNumbers:

    def test_sequential_per_day(self, db_session):
        day = datetime(2025, 1, 23, 10, 0, 0)
        assert order_numbers.next_order_number(day) == "MLA-20250123-0001"
        assert order_numbers.next_order_number(day) == "MLA-20250123-0002"
        assert order_numbers.next_order_number(datetime(2025, 1, 24)) == "MLA-20250124-0001"

    def test_parse(self):
        parsed = order_numbers.parse_order_number("MLA-20250123-0042")
        assert parsed["prefix"] == "MLA"
        assert parsed["date"].isoformat() == "2025-01-23"
        assert parsed["sequence"] == 42

    @pytest.mark.parametrize(
        "value",
        ["", "MLA-2025-0001", "MLA-20251345-0001", "MLA-20250123-0000", "mla-20250123-0001", None],
    )
    def test_invalid_numbers(self, value):
        assert not order_numbers.is_valid_order_number(value)

    def test_parse_invalid_raises(self):
        with pytest.raises(ValueError):
            order_numbers.parse_order_number("ORDER-1")
