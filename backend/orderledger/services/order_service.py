# Overview: Service-layer order creation and order reads.

from __future__ import annotations

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderItem, ProductVariant
from ..permissions import definitions as perms
from ..permissions.policy import Actor, authorize, is_allowed
from .concurrency import run_with_retry
from .inventory_ledger import CHANGE_SALE, _apply_adjustment
from .order_numbers import next_order_number
from .order_state_machine import STATUS_PENDING, VALID_STATUSES, record_status
from .payment_reconciliation import (
    PAYMENT_PAID,
    PAYMENT_PENDING,
    VALID_PAYMENT_STATUSES,
    _upsert_transaction,
)


# =============================================================================
# ORDER ATTRIBUTES (CONSTANTS)
# =============================================================================

PAYMENT_METHOD_MOBILE_MONEY = "MOBILE_MONEY"
PAYMENT_METHOD_CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
PAYMENT_METHOD_CASH = "CASH"

VALID_PAYMENT_METHODS = (PAYMENT_METHOD_MOBILE_MONEY, PAYMENT_METHOD_CASH_ON_DELIVERY, PAYMENT_METHOD_CASH)

DELIVERY_HOME = "HOME_DELIVERY"
DELIVERY_STORE_PICKUP = "STORE_PICKUP"

VALID_DELIVERY_METHODS = (DELIVERY_HOME, DELIVERY_STORE_PICKUP)

SOURCE_ONLINE = "ONLINE"
SOURCE_IN_STORE = "IN_STORE"

VALID_SOURCES = (SOURCE_ONLINE, SOURCE_IN_STORE)


# =============================================================================
# DELIVERY FEES
# =============================================================================

# Per-commune home delivery fee, in cents
DELIVERY_ZONE_FEES_CENTS = {
    "gombe": 500,
    "ngaliema": 600,
    "kalamu": 600,
    "kasa-vubu": 600,
    "limete": 600,
    "lingwala": 600,
    "barumbu": 600,
    "kinshasa": 700,
    "lemba": 800,
    "matete": 800,
    "ngiri-ngiri": 800,
    "bumbu": 800,
    "makala": 800,
    "selembao": 800,
    "kimbanseke": 900,
    "masina": 900,
    "ndjili": 900,
    "mont-ngafula": 900,
}
DEFAULT_DELIVERY_FEE_CENTS = 1000
FREE_DELIVERY_THRESHOLD_CENTS = 10000


def calculate_delivery_fee(delivery_method: str, zone: str | None, subtotal_cents: int) -> int:
    if delivery_method != DELIVERY_HOME:
        return 0
    if subtotal_cents >= FREE_DELIVERY_THRESHOLD_CENTS:
        return 0
    key = (zone or "").strip().lower().replace(" ", "-")
    return DELIVERY_ZONE_FEES_CENTS.get(key, DEFAULT_DELIVERY_FEE_CENTS)


def _choice(value, valid: tuple, field: str, default=None) -> str:
    normalized = (value or default or "").upper()
    if normalized not in valid:
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {', '.join(valid)}")
    return normalized


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _normalize_items(items) -> list[dict]:
    if not items:
        raise ValidationError("Order must contain at least one item")

    normalized = []
    for idx, raw in enumerate(items):
        try:
            variant_id = int(raw["variant_id"])
            quantity = int(raw["quantity"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(f"items[{idx}] requires integer variant_id and quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be positive")

        price = raw.get("price_cents")
        if price is not None:
            price = _as_int(price, f"items[{idx}].price_cents")
            if price < 0:
                raise ValidationError(f"items[{idx}].price_cents must be non-negative")
        normalized.append({"variant_id": variant_id, "quantity": quantity, "price_cents": price})
    return normalized


# =============================================================================
# ORDER CREATION
# =============================================================================

def create_order(
    customer_id: int,
    items,
    payment_method: str,
    delivery_method: str,
    delivery_fee_cents: int | None = None,
    actor: Actor | None = None,
    *,
    source: str = SOURCE_ONLINE,
    delivery_address: str | None = None,
    delivery_zone: str | None = None,
    notes: str | None = None,
    payment_reference: str | None = None,
) -> Order:
    """
    Place an order and take its stock.

    Item name, details and price are snapshotted from the catalog (price =
    product base + variant additional, unless a staff caller supplies
    price_cents). Each item records a SALE -quantity ledger entry in the
    same transaction as the order, so one InsufficientStock aborts the
    whole order with no stock taken.

    Cash sales made in store are settled on the spot: payment PAID and a
    verified transaction row.

    Raises:
        Unauthorized / Forbidden, ValidationError, NotFound,
        InsufficientStock
    """
    customer_id = _as_int(customer_id, "customer_id")
    authorize(actor, perms.ORDER_CREATE, {"customer_id": customer_id})

    payment_method = _choice(payment_method, VALID_PAYMENT_METHODS, "payment_method")
    delivery_method = _choice(delivery_method, VALID_DELIVERY_METHODS, "delivery_method")
    source = _choice(source, VALID_SOURCES, "source", default=SOURCE_ONLINE)
    lines = _normalize_items(items)

    if delivery_method == DELIVERY_HOME and not (delivery_address or "").strip():
        raise ValidationError("delivery_address is required for home delivery")
    if delivery_fee_cents is not None:
        delivery_fee_cents = _as_int(delivery_fee_cents, "delivery_fee_cents")
    if delivery_fee_cents is not None and delivery_fee_cents < 0:
        raise ValidationError("delivery_fee_cents must be non-negative")

    settle_now = payment_method == PAYMENT_METHOD_CASH and source == SOURCE_IN_STORE
    order_number = next_order_number()

    def _op():
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            status=STATUS_PENDING,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            payment_reference=payment_reference,
            delivery_method=delivery_method,
            delivery_address=delivery_address,
            delivery_zone=delivery_zone,
            source=source,
            notes=notes,
            subtotal_cents=0,
            delivery_fee_cents=0,
            total_cents=0,
        )
        db.session.add(order)
        db.session.flush()

        subtotal = 0
        for line in lines:
            variant = db.session.get(ProductVariant, line["variant_id"])
            if variant is None:
                raise NotFound(f"Variant {line['variant_id']} not found")
            if not variant.is_active or not variant.product.is_active:
                raise ValidationError(f"Variant {variant.id} ({variant.sku}) is not available")

            # Price overrides are a point-of-sale staff feature
            override = None if actor.is_customer else line["price_cents"]
            price = override if override is not None else variant.unit_price_cents
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=variant.product_id,
                variant_id=variant.id,
                quantity=line["quantity"],
                price_at_purchase_cents=price,
                product_name=variant.product.name,
                variant_details=variant.details,
            ))
            subtotal += price * line["quantity"]

            _apply_adjustment(
                variant_id=variant.id,
                change_type=CHANGE_SALE,
                quantity_change=-line["quantity"],
                reason=f"Order {order_number}",
                performed_by=actor.user_id,
                order_id=order.id,
            )

        fee = (
            int(delivery_fee_cents)
            if delivery_fee_cents is not None
            else calculate_delivery_fee(delivery_method, delivery_zone, subtotal)
        )
        order.subtotal_cents = subtotal
        order.delivery_fee_cents = fee
        order.total_cents = subtotal + fee

        record_status(order, None, STATUS_PENDING, actor.user_id, note="Order created")

        if settle_now:
            order.payment_status = PAYMENT_PAID
            _upsert_transaction(order, PAYMENT_PAID, payment_reference, actor.user_id)

        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int, actor: Actor) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found")
    authorize(actor, perms.ORDER_VIEW, order)
    return order


def get_order_by_number(order_number: str, actor: Actor) -> Order:
    order = Order.query.filter_by(order_number=order_number).first()
    if order is None:
        raise NotFound(f"Order {order_number} not found")
    authorize(actor, perms.ORDER_VIEW, order)
    return order


def list_orders(filters: dict | None = None, actor: Actor | None = None) -> dict:
    """
    Orders newest first.

    Customers only ever see their own orders; staff see all and may filter
    by customer_id. Other filters: status, payment_status, source, limit,
    offset.
    """
    filters = filters or {}

    if is_allowed(actor, perms.ORDER_LIST_ALL):
        customer_id = filters.get("customer_id")
    else:
        # Customer listing their own orders
        customer_id = actor.user_id if actor is not None else None
        authorize(actor, perms.ORDER_VIEW, {"customer_id": customer_id})

    q = Order.query
    if customer_id is not None:
        q = q.filter(Order.customer_id == int(customer_id))

    status = filters.get("status")
    if status:
        q = q.filter(Order.status == _choice(status, VALID_STATUSES, "status"))
    payment_status = filters.get("payment_status")
    if payment_status:
        q = q.filter(Order.payment_status == _choice(payment_status, VALID_PAYMENT_STATUSES, "payment_status"))
    source = filters.get("source")
    if source:
        q = q.filter(Order.source == _choice(source, VALID_SOURCES, "source"))

    limit = max(1, min(int(filters.get("limit") or 50), 200))
    offset = max(0, int(filters.get("offset") or 0))

    total = q.count()
    orders = q.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return {"items": orders, "total": total, "limit": limit, "offset": offset}
