from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class InventoryLog(db.Model):
    """
    Inventory ledger entry: one immutable stock-quantity change.

    INVARIANTS (enforced at write time, never re-derived):
    - new_quantity == previous_quantity + quantity_change
    - new_quantity >= 0
    - the variant's stock counter equals new_quantity of its latest entry

    IMMUTABLE: only `reason` may be annotated after the fact. Deleting a row
    is an admin escape hatch that breaks the audit chain and is reported as
    such by the service layer.

    created_at uses a Python-side default so entries written in the same
    second still order correctly (ties broken by id).
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.CheckConstraint(
            "new_quantity = previous_quantity + quantity_change",
            name="ck_inventory_logs_balanced",
        ),
        db.CheckConstraint("new_quantity >= 0", name="ck_inventory_logs_non_negative"),
        db.Index("ix_inventory_logs_variant_created", "variant_id", "created_at"),
        db.Index("ix_inventory_logs_order", "order_id"),
        db.Index("ix_inventory_logs_change_type", "change_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    # SALE, RESTOCK, ADJUSTMENT, RETURN
    change_type = db.Column(db.String(16), nullable=False)

    quantity_change = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.Integer, nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("ProductVariant", backref=db.backref("inventory_logs", lazy="dynamic"))
    order = db.relationship("Order", backref=db.backref("inventory_logs", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<InventoryLog id={self.id} variant_id={self.variant_id} {self.change_type} "
            f"{self.previous_quantity}{self.quantity_change:+d}={self.new_quantity}>"
        )

    def is_balanced(self) -> bool:
        return self.new_quantity == self.previous_quantity + self.quantity_change

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "change_type": self.change_type,
            "quantity_change": self.quantity_change,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "performed_by": self.performed_by,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order_id and self.order else None,
            "created_at": to_utc_z(self.created_at),
        }
