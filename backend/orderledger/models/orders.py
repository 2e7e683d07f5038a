from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class Order(db.Model):
    """
    Customer order.

    LIFECYCLE (see services/order_state_machine.py):
        PENDING -> CONFIRMED -> PROCESSING -> SHIPPED | READY_FOR_PICKUP -> DELIVERED
        PENDING | CONFIRMED -> CANCELLED   (PROCESSING -> CANCELLED only via cancel_order)

    completed_at is stamped the first time status reaches DELIVERED or
    CANCELLED and never overwritten.

    payment_status is one of PENDING, PAID, FAILED, REFUNDED. REFUNDED is set
    when a cancellation creates a refund; the Refund row's own status is the
    authoritative view of whether money actually moved (exposed here as
    `refund_status`).

    version_id makes concurrent status / payment / cancel writes on the same
    order fail with StaleDataError so the loser retries from a fresh read.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "MLA-20250123-0001"
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    # Owning customer (user id from the authentication collaborator)
    customer_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(24), nullable=False, default="PENDING")

    payment_method = db.Column(db.String(24), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")
    payment_reference = db.Column(db.String(128), nullable=True)

    delivery_method = db.Column(db.String(24), nullable=False)
    delivery_address = db.Column(db.Text, nullable=True)
    delivery_zone = db.Column(db.String(64), nullable=True)

    # ONLINE or IN_STORE
    source = db.Column(db.String(16), nullable=False, default="ONLINE")
    notes = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    refunds = db.relationship("Refund", backref="order", lazy=True, order_by="Refund.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status} payment={self.payment_status}>"

    @property
    def refund_status(self) -> str | None:
        """Status of the most recent refund, or None if never refunded."""
        return self.refunds[-1].status if self.refunds else None

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "refund_status": self.refund_status,
            "delivery_method": self.delivery_method,
            "delivery_address": self.delivery_address,
            "delivery_zone": self.delivery_zone,
            "source": self.source,
            "notes": self.notes,
            "subtotal_cents": self.subtotal_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "total_cents": self.total_cents,
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Immutable snapshot of a purchased variant.

    Name, details and price are copied at order time so later catalog edits
    never rewrite order history.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_purchase_cents = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    variant_details = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def line_total_cents(self) -> int:
        return self.price_at_purchase_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price_at_purchase_cents": self.price_at_purchase_cents,
            "line_total_cents": self.line_total_cents,
            "product_name": self.product_name,
            "variant_details": self.variant_details,
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """
    Append-only audit log of order status changes.

    Shares the append-only pattern of the inventory ledger but not its table:
    status changes never masquerade as zero-quantity stock movements.
    from_status is None for the entry written at order creation.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    changed_by = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship(
        "Order",
        backref=db.backref("status_history", lazy=True, order_by="OrderStatusHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by": self.changed_by,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class OrderNumberSequence(db.Model):
    """
    Atomic per-day order number counter.

    WHY: counting today's orders and adding one races under concurrent
    checkout; a single row per day incremented with UPDATE ... SET n = n + 1
    does not.
    """
    __tablename__ = "order_number_sequences"
    __table_args__ = (
        db.UniqueConstraint("sequence_date", name="uq_order_number_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sequence_date = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
