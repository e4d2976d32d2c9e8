# Overview: Stock ledger operations; every change to stock_quantity writes a StockMovement row.

"""
Stock ledger invariants (authoritative)

- Product.stock_quantity is the materialized running total of StockMovement
  rows. It is changed only by the functions in this module, always in the
  same transaction as the movement row that explains the change.
- Increments and decrements are single UPDATE statements
  (stock = stock +/- :qty). A decrement carries the guard stock >= :qty, so
  two concurrent stock-outs can never drive stock below zero.
- Entries (`in`) update the weighted-average purchase_price; reversals and
  adjustments never do.
- Adjustments set the quantity absolutely and record the signed delta.

Every public function commits; the _inner variants run inside the caller's
transaction and never commit.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from ..extensions import db
from ..exceptions import (
    InsufficientStockError,
    MissingReasonError,
    ValidationError,
)
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_TYPES
from ..pricing import ZERO, compute_weighted_average_cost, to_decimal
from ..time_utils import utcnow
from .concurrency import run_in_transaction
from .tenant_service import get_scoped, paginate, scoped


def _get_product(store_id: int, product_id: int, *, lock: bool = False) -> Product:
    return get_scoped(Product, store_id, product_id, lock=lock, label="Product")


def _require_quantity(quantity) -> Decimal:
    try:
        qty = to_decimal(quantity, "quantity")
    except ValidationError:
        raise ValidationError("Quantity must be a number", details={"quantity": quantity})
    if not qty.is_finite() or qty <= 0:
        raise ValidationError("Quantity must be greater than 0", details={"quantity": str(quantity)})
    return qty


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise MissingReasonError("A reason is required for this stock movement")
    return reason


def _record_movement(product: Product, movement_type: str, quantity, **fields) -> StockMovement:
    movement = StockMovement(
        store_id=product.store_id,
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        created_at=utcnow(),
        **fields,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _increment(product: Product, qty: Decimal, **values) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.store_id == product.store_id)
        .values(stock_quantity=Product.stock_quantity + qty, **values)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    db.session.refresh(product)


def _decrement(product: Product, qty: Decimal) -> None:
    """Atomic guarded decrement; raises InsufficientStockError when the guard fails."""
    stmt = (
        update(Product)
        .where(
            Product.id == product.id,
            Product.store_id == product.store_id,
            Product.stock_quantity >= qty,
        )
        .values(stock_quantity=Product.stock_quantity - qty)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    db.session.refresh(product)
    if result.rowcount == 0:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name}. Available: {product.stock_quantity}",
            details={
                "product_id": product.id,
                "available": float(product.stock_quantity),
                "requested": float(qty),
            },
        )


# =============================================================================
# INNER OPERATIONS (caller owns the transaction)
# =============================================================================

def _stock_in_inner(
    store_id: int,
    product_id: int,
    quantity,
    unit_price=None,
    reason: str | None = None,
    *,
    reference_document: str | None = None,
    supplier_reference: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    qty = _require_quantity(quantity)
    product = _get_product(store_id, product_id, lock=True)

    # Entry price: explicit price, else the current cost, else 0
    if unit_price is not None:
        entry_price = to_decimal(unit_price, "unit_price")
        if not entry_price.is_finite() or entry_price < 0:
            raise ValidationError(
                "Unit price must be a valid number greater than or equal to 0",
                details={"unit_price": str(unit_price)},
            )
    elif product.purchase_price is not None:
        entry_price = product.purchase_price
    else:
        entry_price = ZERO

    new_cost = compute_weighted_average_cost(
        product.stock_quantity, product.purchase_price, qty, entry_price
    )
    _increment(product, qty, purchase_price=new_cost)

    return _record_movement(
        product,
        MOVEMENT_IN,
        qty,
        unit_price=entry_price,
        reason=(reason or "").strip() or None,
        reference_document=reference_document,
        supplier_reference=supplier_reference,
        created_by_user_id=user_id,
    )


def _stock_out_inner(
    store_id: int,
    product_id: int,
    quantity,
    reason: str | None,
    *,
    reference_document: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    qty = _require_quantity(quantity)
    reason = _require_reason(reason)
    product = _get_product(store_id, product_id, lock=True)

    _decrement(product, qty)

    return _record_movement(
        product,
        MOVEMENT_OUT,
        qty,
        reason=reason,
        reference_document=reference_document,
        created_by_user_id=user_id,
    )


def _stock_adjust_inner(
    store_id: int,
    product_id: int,
    new_quantity,
    reason: str | None,
    *,
    user_id: int | None = None,
) -> StockMovement:
    target = to_decimal(new_quantity, "new_quantity")
    if not target.is_finite() or target < 0:
        raise ValidationError(
            "New quantity must be greater than or equal to 0",
            details={"new_quantity": str(new_quantity)},
        )
    reason = _require_reason(reason)
    product = _get_product(store_id, product_id, lock=True)

    delta = target - product.stock_quantity
    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.store_id == store_id)
        .values(stock_quantity=target)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    db.session.refresh(product)

    return _record_movement(
        product,
        MOVEMENT_ADJUSTMENT,
        delta,
        reason=reason,
        created_by_user_id=user_id,
    )


def _reverse_in_inner(
    store_id: int,
    product_id: int,
    quantity,
    reason: str,
    *,
    reference_document: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """Put stock back (e.g. a cancelled sale). Average cost is left as is."""
    qty = _require_quantity(quantity)
    product = _get_product(store_id, product_id, lock=True)
    _increment(product, qty)
    return _record_movement(
        product,
        MOVEMENT_IN,
        qty,
        reason=_require_reason(reason),
        reference_document=reference_document,
        is_reversal=True,
        created_by_user_id=user_id,
    )


def _reverse_out_inner(
    store_id: int,
    product_id: int,
    quantity,
    reason: str,
    *,
    reference_document: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """Take back a stock entry. Average cost is left as is."""
    qty = _require_quantity(quantity)
    reason = _require_reason(reason)
    product = _get_product(store_id, product_id, lock=True)
    _decrement(product, qty)
    return _record_movement(
        product,
        MOVEMENT_OUT,
        qty,
        reason=reason,
        reference_document=reference_document,
        is_reversal=True,
        created_by_user_id=user_id,
    )


# =============================================================================
# PUBLIC OPERATIONS (commit)
# =============================================================================

def stock_in(store_id: int, product_id: int, quantity, unit_price=None, reason: str | None = None, **kwargs) -> StockMovement:
    return run_in_transaction(
        lambda: _stock_in_inner(store_id, product_id, quantity, unit_price, reason, **kwargs)
    )


def stock_out(store_id: int, product_id: int, quantity, reason: str | None, **kwargs) -> StockMovement:
    return run_in_transaction(
        lambda: _stock_out_inner(store_id, product_id, quantity, reason, **kwargs)
    )


def stock_adjust(store_id: int, product_id: int, new_quantity, reason: str | None, **kwargs) -> StockMovement:
    return run_in_transaction(
        lambda: _stock_adjust_inner(store_id, product_id, new_quantity, reason, **kwargs)
    )


def reverse_in(store_id: int, product_id: int, quantity, reason: str, **kwargs) -> StockMovement:
    return run_in_transaction(
        lambda: _reverse_in_inner(store_id, product_id, quantity, reason, **kwargs)
    )


def reverse_out(store_id: int, product_id: int, quantity, reason: str, **kwargs) -> StockMovement:
    return run_in_transaction(
        lambda: _reverse_out_inner(store_id, product_id, quantity, reason, **kwargs)
    )


def list_movements(
    store_id: int,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Movement history, newest first. date_to is exclusive."""
    query = scoped(StockMovement, store_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Unknown movement type: {movement_type}")
        query = query.filter(StockMovement.type == movement_type)
    if date_from is not None:
        query = query.filter(StockMovement.created_at >= date_from)
    if date_to is not None:
        query = query.filter(StockMovement.created_at < date_to)

    query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    return paginate(query, page, limit)
