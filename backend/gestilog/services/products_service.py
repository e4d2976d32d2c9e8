# backend/gestilog/services/products_service.py
"""
Products Service

All product operations are tenant-scoped through store_id. stock_quantity is
never patched directly: it moves only through the stock ledger
(inventory_service), including the optional opening stock given at creation.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..exceptions import ConflictError
from ..models import Product
from .activity_service import record_activity
from .concurrency import run_in_transaction
from .inventory_service import _stock_in_inner
from .tenant_service import get_scoped, paginate, require_store, scoped

PRODUCT_MUTABLE_FIELDS = {
    "name", "reference", "barcode", "description", "unit",
    "purchase_price", "sale_price", "min_stock_threshold", "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_unique_reference(store_id: int, reference: str | None, exclude_id: int | None = None) -> None:
    if not reference:
        return
    query = scoped(Product, store_id).filter(Product.reference == reference)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Reference already used: {reference}", details={"reference": reference})


def list_products(
    store_id: int,
    *,
    search: str | None = None,
    active: bool | None = None,
    low_stock: bool = False,
    page: int = 1,
    limit: int = 50,
) -> dict:
    query = scoped(Product, store_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.reference.ilike(pattern),
            Product.barcode.ilike(pattern),
        ))
    if active is not None:
        query = query.filter(Product.is_active == active)
    if low_stock:
        query = query.filter(Product.stock_quantity <= Product.min_stock_threshold)
    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page, limit)


def get_product(store_id: int, product_id: int) -> Product:
    return get_scoped(Product, store_id, product_id, label="Product")


def create_product(store_id: int, patch: dict, *, initial_quantity=None, user_id: int | None = None) -> Product:
    """Create a product; a positive initial_quantity is booked as a stock entry."""
    def _op():
        require_store(store_id)
        _ensure_unique_reference(store_id, patch.get("reference"))
        product = Product(store_id=store_id, stock_quantity=0)
        apply_product_patch(product, patch)
        db.session.add(product)
        db.session.flush()
        if initial_quantity:
            _stock_in_inner(
                store_id,
                product.id,
                initial_quantity,
                patch.get("purchase_price"),
                "Initial stock",
                user_id=user_id,
            )
        return product

    product = run_in_transaction(_op)
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="product.created",
        entity_type="product",
        entity_id=product.id,
        payload={"name": product.name},
    )
    return product


def update_product(store_id: int, product_id: int, patch: dict, *, user_id: int | None = None) -> Product:
    def _op():
        product = get_scoped(Product, store_id, product_id, lock=True, label="Product")
        if "reference" in patch:
            _ensure_unique_reference(store_id, patch["reference"], exclude_id=product.id)
        apply_product_patch(product, patch)
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="product.updated",
        entity_type="product",
        entity_id=product.id,
        payload={"fields": sorted(patch)},
    )
    return product


def list_low_stock(store_id: int) -> list[Product]:
    """Active products still in stock but at or under their reorder threshold."""
    return (
        scoped(Product, store_id)
        .filter(
            Product.is_active.is_(True),
            Product.stock_quantity > 0,
            Product.stock_quantity <= Product.min_stock_threshold,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )
