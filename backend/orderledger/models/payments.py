from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class PaymentTransaction(db.Model):
    """
    Payment record for an order.

    ONE ROW PER ORDER: order_id is unique. Re-verifying a payment updates
    this row (upsert) instead of inserting a duplicate, which would double
    count revenue in financial reporting.

    verified_at / verified_by are set only when the order is marked PAID.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_transactions_order"),
        db.Index("ix_transactions_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(24), nullable=False)
    provider = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    # PENDING, COMPLETED, FAILED
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    verified_by = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    order = db.relationship("Order", backref=db.backref("transaction", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "provider": self.provider,
            "reference": self.reference,
            "status": self.status,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Refund(db.Model):
    """
    Refund issued for a cancelled order.

    LIFECYCLE:
        PENDING     created inside the cancellation transaction
        PROCESSING  payment gateway accepted the refund request
        FAILED      gateway rejected / errored; order stays cancelled,
                    needs manual follow-up
        COMPLETED   confirmed by an administrator
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.Index("ix_refunds_order", "order_id"),
        db.Index("ix_refunds_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")

    # MOBILE_MONEY, CASH, STORE_CREDIT
    refund_method = db.Column(db.String(24), nullable=False)

    processed_by = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    gateway_message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "status": self.status,
            "refund_method": self.refund_method,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "notes": self.notes,
            "gateway_message": self.gateway_message,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
