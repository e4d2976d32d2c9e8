from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"

MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


def _num(value):
    return float(value) if value is not None else None


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to stores via store_id.

    stock_quantity is the materialized running total of the product's
    StockMovement rows. It is only ever changed through an atomic
    increment/decrement (stock = stock - :qty) or, for an adjustment,
    an absolute set, inside the caller's transaction.

    purchase_price is the weighted-average cost. It moves on stock entries
    only; reversals and adjustments leave it untouched.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "reference", name="uq_products_store_reference"),
        db.Index("ix_products_store_name", "store_id", "name"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="unit")

    purchase_price = db.Column(db.Numeric(14, 4), nullable=True)
    sale_price = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    stock_quantity = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    min_stock_threshold = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} store_id={self.store_id}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.min_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "reference": self.reference,
            "barcode": self.barcode,
            "description": self.description,
            "unit": self.unit,
            "purchase_price": _num(self.purchase_price),
            "sale_price": _num(self.sale_price),
            "stock_quantity": _num(self.stock_quantity),
            "min_stock_threshold": _num(self.min_stock_threshold),
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock log.

    IMMUTABLE: rows are never updated or deleted.

    quantity is positive for in/out (direction given by type) and is the
    signed delta for adjustments. unit_price is the entry price for `in`
    movements (not the resulting average). is_reversal marks movements
    written by a cancellation; they never touch the average cost.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_store_product_created", "store_id", "product_id", "created_at"),
        db.Index("ix_stock_movements_store_type_created", "store_id", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Numeric(14, 4), nullable=False)
    unit_price = db.Column(db.Numeric(14, 4), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    reference_document = db.Column(db.String(64), nullable=True)
    supplier_reference = db.Column(db.String(128), nullable=True)
    is_reversal = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "type": self.type,
            "quantity": _num(self.quantity),
            "unit_price": _num(self.unit_price),
            "reason": self.reason,
            "reference_document": self.reference_document,
            "supplier_reference": self.supplier_reference,
            "is_reversal": self.is_reversal,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
