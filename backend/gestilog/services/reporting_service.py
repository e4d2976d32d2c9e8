# Overview: Revenue (CA) recognition rule and period totals.

"""
Revenue recognition (authoritative)

A sale row counts toward revenue when it is valid, is neither an expense nor
a quote, and either
- is a check_payment settlement document, or
- is a credit_payment settlement document not paid by check, or
- is a customer-facing document paid by an immediate method (or none).

Deferred originals (check, credit) never count: their revenue arrives through
the settlement documents, so nothing is counted twice. Sale.recognized_at is
set exactly on the rows this rule selects; the SQL predicate below stays the
source of truth for reports.
"""

from __future__ import annotations

from sqlalchemy import and_, func, or_

from ..extensions import db
from ..models import Sale
from ..models.sales import (
    DEFERRED_METHODS,
    DOC_CHECK_PAYMENT,
    DOC_CREDIT_PAYMENT,
    DOC_EXPENSE,
    DOC_QUOTE,
    METHOD_CHECK,
    SETTLEMENT_DOCUMENT_TYPES,
    STATUS_VALID,
)
from ..pricing import ZERO


def counts_as_revenue(status: str, document_type: str, payment_method: str | None) -> bool:
    if status != STATUS_VALID or document_type in (DOC_EXPENSE, DOC_QUOTE):
        return False
    if document_type == DOC_CHECK_PAYMENT:
        return True
    if document_type == DOC_CREDIT_PAYMENT:
        return payment_method != METHOD_CHECK
    return payment_method is None or payment_method not in DEFERRED_METHODS


def revenue_predicate():
    """SQL form of counts_as_revenue()."""
    return and_(
        Sale.status == STATUS_VALID,
        Sale.document_type.notin_((DOC_EXPENSE, DOC_QUOTE)),
        or_(
            Sale.document_type == DOC_CHECK_PAYMENT,
            and_(
                Sale.document_type == DOC_CREDIT_PAYMENT,
                or_(Sale.payment_method.is_(None), Sale.payment_method != METHOD_CHECK),
            ),
            and_(
                Sale.document_type.notin_(SETTLEMENT_DOCUMENT_TYPES),
                or_(Sale.payment_method.is_(None), Sale.payment_method.notin_(DEFERRED_METHODS)),
            ),
        ),
    )


def _period(query, date_from=None, date_to=None):
    if date_from is not None:
        query = query.filter(Sale.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Sale.created_at < date_to)
    return query


def recognized_revenue(store_id: int, date_from=None, date_to=None) -> dict:
    """Revenue for [date_from, date_to): sums of the recognized rows."""
    query = db.session.query(
        func.coalesce(func.sum(Sale.amount_untaxed), 0),
        func.coalesce(func.sum(Sale.amount_tax), 0),
        func.coalesce(func.sum(Sale.amount_total), 0),
        func.count(Sale.id),
    ).filter(Sale.store_id == store_id, revenue_predicate())
    untaxed, tax, total, count = _period(query, date_from, date_to).one()
    return {
        "amount_untaxed": untaxed or ZERO,
        "amount_tax": tax or ZERO,
        "amount_total": total or ZERO,
        "document_count": int(count or 0),
    }


def expenses_total(store_id: int, date_from=None, date_to=None):
    query = db.session.query(func.coalesce(func.sum(Sale.amount_total), 0)).filter(
        Sale.store_id == store_id,
        Sale.status == STATUS_VALID,
        Sale.document_type == DOC_EXPENSE,
    )
    return _period(query, date_from, date_to).scalar() or ZERO
