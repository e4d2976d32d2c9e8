# Overview: Sale documents: creation, lookup, listing and cancellation.

"""
Sale invariants (authoritative)

- A sale, its lines, its stock movements, its customer-balance change and its
  document-number allocation are committed together or not at all.
- Every precondition (line validity, product existence, stock, credit limit,
  payment details) is checked before the first write. The stock and credit
  writes re-check atomically, so a concurrent writer turns into an error
  plus a full rollback, never into negative stock or a passed limit.
- Deferred payments (check, credit) store amount_untaxed = amount_tax = 0 and
  the nominal amount_total; revenue arrives through settlement documents.
- Cancellation is the only way a valid sale ends; it restores stock and
  unwinds the credit it created.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, time, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import case, or_

from ..extensions import db
from ..exceptions import (
    AlreadyCancelledError,
    InsufficientStockError,
    ValidationError,
)
from ..models import Customer, Product, Sale, SaleLine
from ..models.sales import (
    DEFERRED_METHODS,
    DOC_CREDIT_PAYMENT,
    DOC_EXPENSE,
    DOCUMENT_TYPES,
    METHOD_CHECK,
    METHOD_CREDIT,
    NON_STOCK_DOCUMENT_TYPES,
    SALE_STATUSES,
    SETTLEMENT_DOCUMENT_TYPES,
    STATUS_CANCELLED,
    STATUS_VALID,
    CHECK_PENDING,
)
from ..pricing import NO_AMOUNTS, ZERO, apply_global_discount, compute_line_total, to_decimal, validate_line
from ..time_utils import parse_iso_date, utcnow
from ..validation import SaleRequest, parse_sale_request
from . import credit_service
from .activity_service import record_activity
from .concurrency import run_in_transaction
from .document_service import next_number_for
from .inventory_service import _reverse_in_inner, _stock_out_inner
from .reporting_service import counts_as_revenue
from .tenant_service import get_scoped, paginate, require_store, scoped


def default_tax_rate() -> Decimal:
    return to_decimal(current_app.config.get("DEFAULT_TAX_RATE", 20), "tax_rate")


def _price_lines(store_id: int, request: SaleRequest, sale_rate: Decimal) -> list[dict]:
    """Validate and price every line; lock and stock-check the products involved."""
    moves_stock = request.document_type not in NON_STOCK_DOCUMENT_TYPES
    priced = []
    needed: "OrderedDict[int, Decimal]" = OrderedDict()
    products: dict[int, Product] = {}

    for index, line in enumerate(request.lines):
        qty, price = validate_line(line.quantity, line.unit_price)
        rate = line.tax_rate if line.tax_rate is not None else sale_rate
        product = None

        if request.document_type != DOC_EXPENSE and line.product_id is not None:
            product = products.get(line.product_id)
            if product is None:
                product = get_scoped(Product, store_id, line.product_id, lock=moves_stock, label="Product")
                products[product.id] = product
        elif moves_stock:
            raise ValidationError(
                f"Line {index + 1}: a product is required for this document type",
                details={"line": index + 1},
            )

        designation = line.designation or (product.name if product is not None else None)
        if not designation:
            raise ValidationError(f"Line {index + 1}: a designation is required", details={"line": index + 1})

        if moves_stock:
            needed[product.id] = needed.get(product.id, ZERO) + qty

        priced.append({
            "product": product,
            "designation": designation[:255],
            "quantity": qty,
            "unit_price": price,
            "tax_rate": rate,
            "line_discount_pct": line.line_discount_pct or ZERO,
            "amounts": compute_line_total(price, qty, line.line_discount_pct, rate),
        })

    for product_id, qty in needed.items():
        product = products[product_id]
        if product.stock_quantity < qty:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}. Available: {product.stock_quantity}",
                details={
                    "product_id": product.id,
                    "available": float(product.stock_quantity),
                    "requested": float(qty),
                },
            )

    return priced


def _check_payment_terms(store_id: int, request: SaleRequest, total: Decimal) -> Customer | None:
    customer = None
    if request.customer_id is not None:
        customer = credit_service.get_customer(store_id, request.customer_id)

    if request.payment_method == METHOD_CREDIT:
        if customer is None:
            raise ValidationError("A customer is required for a credit sale")
        paid = request.amount_paid or ZERO
        if paid > total:
            raise ValidationError(
                "Amount paid cannot exceed the document total",
                details={"amount_paid": float(paid), "amount_total": float(total)},
            )
        credit_service.check_limit(customer, total - paid)

    if request.payment_method == METHOD_CHECK:
        if customer is None:
            raise ValidationError("A customer is required for a check payment")
        if not request.payment_reference:
            raise ValidationError("A check reference is required for a check payment")
        if request.check_due_date is None:
            raise ValidationError("A due date is required for a check payment")

    return customer


def _create_sale_inner(store_id: int, request: SaleRequest, user_id: int | None) -> Sale:
    require_store(store_id)
    sale_rate = request.tax_rate if request.tax_rate is not None else default_tax_rate()

    priced = _price_lines(store_id, request, sale_rate)
    line_sum = NO_AMOUNTS
    for line in priced:
        line_sum = line_sum + line["amounts"]
    amounts = apply_global_discount(line_sum.untaxed, line_sum.tax, request.discount_pct, sale_rate)

    customer = _check_payment_terms(store_id, request, amounts.total)

    method = request.payment_method
    deferred = method in DEFERRED_METHODS
    now = utcnow()
    number = next_number_for(store_id, request.document_type, now.year)

    sale = Sale(
        store_id=store_id,
        document_number=number,
        document_type=request.document_type,
        status=STATUS_VALID,
        customer_id=customer.id if customer is not None else None,
        created_by_user_id=user_id,
        amount_untaxed=ZERO if deferred else amounts.untaxed,
        amount_tax=ZERO if deferred else amounts.tax,
        amount_total=amounts.total,
        discount_pct=request.discount_pct or ZERO,
        payment_method=method,
        payment_reference=request.payment_reference,
        check_due_date=request.check_due_date if method == METHOD_CHECK else None,
        check_status=CHECK_PENDING if method == METHOD_CHECK else None,
        amount_paid=request.amount_paid,
        notes=request.notes,
        recognized_at=now if counts_as_revenue(STATUS_VALID, request.document_type, method) else None,
        created_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    for line in priced:
        product = line["product"]
        db.session.add(SaleLine(
            sale_id=sale.id,
            product_id=product.id if product is not None else None,
            designation=line["designation"],
            quantity=line["quantity"],
            unit_price=line["unit_price"],
            tax_rate=line["tax_rate"],
            line_discount_pct=line["line_discount_pct"],
            line_total=line["amounts"].total,
            created_at=now,
        ))
    db.session.flush()

    if sale.moves_stock:
        for line in priced:
            _stock_out_inner(
                store_id,
                line["product"].id,
                line["quantity"],
                f"Sale {number}",
                reference_document=number,
                user_id=user_id,
            )

    if method == METHOD_CREDIT:
        remaining = amounts.total - (request.amount_paid or ZERO)
        if remaining > 0:
            credit_service.charge(store_id, customer.id, remaining)

    return sale


def create_sale(store_id: int, request, *, user_id: int | None = None) -> Sale:
    """
    Create a sale document with its lines in one transaction.

    request is a SaleRequest or the raw JSON dict it is parsed from.
    """
    if not isinstance(request, SaleRequest):
        request = parse_sale_request(request)

    sale = run_in_transaction(lambda: _create_sale_inner(store_id, request, user_id))

    current_app.logger.info(
        "Sale %s created (store=%s type=%s method=%s total=%s)",
        sale.document_number, store_id, sale.document_type, sale.payment_method, sale.amount_total,
    )
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="sale.created",
        entity_type="sale",
        entity_id=sale.id,
        payload={"document_number": sale.document_number, "amount_total": str(sale.amount_total)},
    )
    return sale


def get_sale(store_id: int, sale_id: int) -> Sale | None:
    return scoped(Sale, store_id).filter(Sale.id == sale_id).first()


def list_sales(
    store_id: int,
    *,
    search: str | None = None,
    document_type: str | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    payment_method: str | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """
    Paginated sale history.

    Newest first; within the same timestamp, customer-facing documents come
    before the settlement documents they produced. date_to is inclusive of
    the whole day.
    """
    query = scoped(Sale, store_id).outerjoin(Customer, Sale.customer_id == Customer.id)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.document_number.ilike(pattern),
            Customer.name.ilike(pattern),
            Sale.payment_reference.ilike(pattern),
        ))
    if document_type:
        if document_type not in DOCUMENT_TYPES:
            raise ValidationError(f"Invalid document type: {document_type}")
        query = query.filter(Sale.document_type == document_type)
    if status:
        if status not in SALE_STATUSES:
            raise ValidationError(f"Invalid status: {status}")
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)

    try:
        start = parse_iso_date(date_from)
        end = parse_iso_date(date_to)
    except ValueError:
        raise ValidationError("Dates must be ISO-8601 (YYYY-MM-DD)")
    if start is not None:
        query = query.filter(Sale.created_at >= datetime.combine(start, time.min))
    if end is not None:
        query = query.filter(Sale.created_at < datetime.combine(end + timedelta(days=1), time.min))

    settlement_last = case((Sale.document_type.in_(SETTLEMENT_DOCUMENT_TYPES), 2), else_=1)
    query = query.order_by(Sale.created_at.desc(), settlement_last, Sale.id.desc())
    return paginate(query, page, limit)


def _cancel_sale_inner(store_id: int, sale_id: int, reason: str | None, user_id: int | None) -> Sale:
    sale = get_scoped(Sale, store_id, sale_id, lock=True, label="Sale")
    if sale.status == STATUS_CANCELLED:
        raise AlreadyCancelledError(
            f"Sale {sale.document_number} is already cancelled",
            details={"sale_id": sale.id},
        )

    number = sale.document_number

    if sale.document_type == DOC_CREDIT_PAYMENT and sale.customer_id is not None:
        # The repayment is undone: the debt comes back
        credit_service.reinstate(store_id, sale.customer_id, sale.amount_total)

    if sale.moves_stock:
        for line in sale.lines:
            if line.product_id is None:
                continue
            _reverse_in_inner(
                store_id,
                line.product_id,
                line.quantity,
                f"Cancellation of sale {number}",
                reference_document=number,
                user_id=user_id,
            )

        if sale.payment_method == METHOD_CREDIT and sale.customer_id is not None:
            remaining = sale.amount_total - (sale.amount_paid or ZERO)
            if remaining > 0:
                credit_service.credit(store_id, sale.customer_id, remaining)

    sale.status = STATUS_CANCELLED
    sale.cancelled_at = utcnow()
    sale.cancelled_by_user_id = user_id
    sale.cancel_reason = (reason or "").strip() or None
    sale.recognized_at = None
    db.session.flush()
    return sale


def cancel_sale(store_id: int, sale_id: int, reason: str | None = None, *, user_id: int | None = None) -> Sale:
    sale = run_in_transaction(lambda: _cancel_sale_inner(store_id, sale_id, reason, user_id))

    current_app.logger.info("Sale %s cancelled (store=%s)", sale.document_number, store_id)
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="sale.cancelled",
        entity_type="sale",
        entity_id=sale.id,
        payload={"document_number": sale.document_number, "reason": sale.cancel_reason},
    )
    return sale
