# Overview: Check register and the check lifecycle (pending, deposited, paid, unpaid).

"""
Check status transitions (authoritative)

For a valid check-paid sale moving from `old` to `new`:

1. new == paid and old != paid
   A check_payment settlement document is created for the amount recomputed
   from the original lines (global discount ignored). That document carries
   the recognized revenue. Lines worth nothing untaxed produce no document.
2. new == unpaid and old != unpaid
   The customer (required) is charged the check amount, subject to the
   credit limit. The original sale's recognized amounts are zeroed.
3. old == paid and new not in (paid, unpaid)
   The original sale's recognized amounts are zeroed. The settlement
   document created by rule 1 is kept.
4. old == unpaid and new == paid
   If the balance still covers it, the bounced amount is taken back off the
   customer's balance, and the recomputed amounts are written back onto the
   original sale.

unpaid -> paid matches rules 1 and 4; both apply. Setting the status a sale
already has changes nothing.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..exceptions import BadRequestError, InvalidStatusError, ValidationError
from ..models import Customer, Sale, SaleLine
from ..models.sales import (
    CHECK_PAID,
    CHECK_PENDING,
    CHECK_STATUSES,
    CHECK_UNPAID,
    DOC_CHECK_PAYMENT,
    METHOD_CHECK,
    STATUS_VALID,
)
from ..pricing import NO_AMOUNTS, ZERO, Amounts
from ..time_utils import parse_iso_date, utcnow
from . import credit_service
from .activity_service import record_activity
from .concurrency import run_in_transaction
from .document_service import next_number_for
from .tenant_service import get_scoped, paginate, scoped


def amounts_from_lines(sale: Sale) -> Amounts:
    """Sum of the sale's lines after line discounts, before any global discount."""
    total = NO_AMOUNTS
    for line in sale.lines:
        total = total + line.amounts()
    return total


def _zero_recognized(sale: Sale) -> None:
    sale.amount_untaxed = ZERO
    sale.amount_tax = ZERO


def _create_check_payment(sale: Sale, amounts: Amounts, user_id: int | None) -> Sale:
    now = utcnow()
    number = next_number_for(sale.store_id, DOC_CHECK_PAYMENT, now.year)
    settlement = Sale(
        store_id=sale.store_id,
        document_number=number,
        document_type=DOC_CHECK_PAYMENT,
        status=STATUS_VALID,
        customer_id=sale.customer_id,
        created_by_user_id=user_id,
        amount_untaxed=amounts.untaxed,
        amount_tax=amounts.tax,
        amount_total=amounts.total,
        payment_method=METHOD_CHECK,
        payment_reference=sale.payment_reference,
        check_due_date=sale.check_due_date,
        check_status=CHECK_PAID,
        notes=f"Check payment - original sale: {sale.document_number}",
        settles_sale_id=sale.id,
        recognized_at=now,
        created_at=now,
    )
    db.session.add(settlement)
    db.session.flush()

    db.session.add(SaleLine(
        sale_id=settlement.id,
        product_id=None,
        designation=f"Check payment - {sale.payment_reference or 'N/A'}",
        quantity=1,
        unit_price=amounts.total,
        tax_rate=ZERO,
        line_discount_pct=ZERO,
        line_total=amounts.total,
        created_at=now,
    ))
    db.session.flush()
    return settlement


def _update_check_status_inner(store_id: int, sale_id: int, new_status: str, user_id: int | None):
    sale = get_scoped(
        Sale, store_id, sale_id,
        lock=True, label="Check",
        payment_method=METHOD_CHECK, status=STATUS_VALID,
    )
    if sale.document_type == DOC_CHECK_PAYMENT:
        raise BadRequestError(
            "A check settlement document has no lifecycle of its own",
            details={"sale_id": sale.id},
        )
    old_status = sale.check_status
    amount = sale.amount_total
    settlement = None

    if new_status == old_status:
        return sale, old_status, settlement

    if new_status == CHECK_PAID:
        recomputed = amounts_from_lines(sale)
        if recomputed.untaxed:
            settlement = _create_check_payment(sale, recomputed, user_id)

    if new_status == CHECK_UNPAID:
        if sale.customer_id is None:
            raise BadRequestError(
                "An unpaid check must be attached to a customer",
                details={"sale_id": sale.id},
            )
        credit_service.charge(store_id, sale.customer_id, amount)
        _zero_recognized(sale)

    if old_status == CHECK_PAID and new_status != CHECK_UNPAID:
        _zero_recognized(sale)

    if old_status == CHECK_UNPAID and new_status == CHECK_PAID:
        if sale.customer_id is not None:
            credit_service.try_settle(store_id, sale.customer_id, amount)
        recomputed = amounts_from_lines(sale)
        sale.amount_untaxed = recomputed.untaxed
        sale.amount_tax = recomputed.tax
        sale.amount_total = recomputed.total

    sale.check_status = new_status
    db.session.flush()
    return sale, old_status, settlement


def update_check_status(store_id: int, sale_id: int, new_status: str, *, user_id: int | None = None) -> Sale:
    """Move a check-paid sale to new_status and apply the matching settlement rules."""
    if new_status not in CHECK_STATUSES:
        raise InvalidStatusError(
            f"Invalid check status: {new_status}",
            details={"allowed": list(CHECK_STATUSES)},
        )

    sale, old_status, settlement = run_in_transaction(
        lambda: _update_check_status_inner(store_id, sale_id, new_status, user_id)
    )

    if old_status != new_status:
        current_app.logger.info(
            "Check on sale %s: %s -> %s (store=%s)", sale.document_number, old_status, new_status, store_id
        )
        payload = {"from": old_status, "to": new_status}
        if settlement is not None:
            payload["settlement_document"] = settlement.document_number
        record_activity(
            store_id=store_id,
            user_id=user_id,
            action="check.status_changed",
            entity_type="sale",
            entity_id=sale.id,
            payload=payload,
        )
    return sale


def _check_query(store_id: int):
    return (
        scoped(Sale, store_id)
        .outerjoin(Customer, Sale.customer_id == Customer.id)
        .filter(
            Sale.payment_method == METHOD_CHECK,
            Sale.status == STATUS_VALID,
            Sale.check_due_date.isnot(None),
            Sale.document_type != DOC_CHECK_PAYMENT,
        )
    )


def list_checks(
    store_id: int,
    *,
    check_status: str | None = None,
    search: str | None = None,
    date_from=None,
    date_to=None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Check register: valid check-paid sales by due date, earliest first."""
    query = _check_query(store_id)
    if check_status:
        if check_status not in CHECK_STATUSES:
            raise InvalidStatusError(f"Invalid check status: {check_status}")
        query = query.filter(Sale.check_status == check_status)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.payment_reference.ilike(pattern),
            Sale.document_number.ilike(pattern),
            Customer.name.ilike(pattern),
        ))
    try:
        start = parse_iso_date(date_from)
        end = parse_iso_date(date_to)
    except ValueError:
        raise ValidationError("Dates must be ISO-8601 (YYYY-MM-DD)")
    if start is not None:
        query = query.filter(Sale.check_due_date >= start)
    if end is not None:
        query = query.filter(Sale.check_due_date <= end)

    query = query.order_by(Sale.check_due_date.asc(), Sale.created_at.desc(), Sale.id.desc())
    return paginate(query, page, limit)


def checks_due_for_deposit(store_id: int, as_of=None) -> list[Sale]:
    """Pending checks whose due date falls on or before as_of (default: today)."""
    try:
        horizon = parse_iso_date(as_of) or utcnow().date()
    except ValueError:
        raise ValidationError("as_of must be an ISO-8601 date")
    return (
        _check_query(store_id)
        .filter(Sale.check_status == CHECK_PENDING, Sale.check_due_date <= horizon)
        .order_by(Sale.check_due_date.asc(), Sale.id.asc())
        .all()
    )
