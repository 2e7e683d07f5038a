from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Catalog product, kept only as far as the order engine needs it.

    Catalog CRUD lives in the storefront; this table is read for item
    snapshots (name, base price) when an order is created.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    base_price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} slug={self.slug!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "base_price_cents": self.base_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """
    Sellable SKU variant and its stock counter.

    STOCK COUNTER:
    stock_quantity is the current absolute quantity on hand. It is written
    ONLY by services/inventory_ledger.py, in the same DB transaction as the
    InventoryLog row that explains the change. The version_id column makes
    a concurrent read-modify-write fail with StaleDataError instead of
    silently losing an update.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_variants_stock_non_negative"),
        db.Index("ix_variants_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    additional_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    @property
    def unit_price_cents(self) -> int:
        return self.product.base_price_cents + (self.additional_price_cents or 0)

    @property
    def details(self) -> str | None:
        parts = [p for p in (self.size, self.color) if p]
        return " / ".join(parts) if parts else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "stock_quantity": self.stock_quantity,
            "additional_price_cents": self.additional_price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
