from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

from ..extensions import db
from ..pricing import Amounts, compute_line_total, round_money
from ..time_utils import to_utc_z, to_iso_date


# =============================================================================
# DOCUMENT TYPES
# =============================================================================

DOC_TICKET = "ticket"
DOC_INVOICE = "invoice"
DOC_QUOTE = "quote"
DOC_DELIVERY_NOTE = "delivery_note"
DOC_EXPENSE = "expense"
# Synthetic settlement documents (never customer-facing)
DOC_CHECK_PAYMENT = "check_payment"
DOC_CREDIT_PAYMENT = "credit_payment"

CUSTOMER_DOCUMENT_TYPES = (DOC_TICKET, DOC_INVOICE, DOC_QUOTE, DOC_DELIVERY_NOTE, DOC_EXPENSE)
SETTLEMENT_DOCUMENT_TYPES = (DOC_CHECK_PAYMENT, DOC_CREDIT_PAYMENT)
DOCUMENT_TYPES = CUSTOMER_DOCUMENT_TYPES + SETTLEMENT_DOCUMENT_TYPES

# Document types whose lines never move stock
NON_STOCK_DOCUMENT_TYPES = (DOC_QUOTE, DOC_EXPENSE, DOC_CHECK_PAYMENT, DOC_CREDIT_PAYMENT)


# =============================================================================
# STATUS / PAYMENT
# =============================================================================

STATUS_DRAFT = "draft"
STATUS_VALID = "valid"
STATUS_CANCELLED = "cancelled"

SALE_STATUSES = (STATUS_DRAFT, STATUS_VALID, STATUS_CANCELLED)

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_CHECK = "check"
METHOD_TRANSFER = "transfer"
METHOD_CREDIT = "credit"

PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_CHECK, METHOD_TRANSFER, METHOD_CREDIT)
DEFERRED_METHODS = (METHOD_CHECK, METHOD_CREDIT)

CHECK_PENDING = "pending"
CHECK_DEPOSITED = "deposited"
CHECK_PAID = "paid"
CHECK_UNPAID = "unpaid"

CHECK_STATUSES = (CHECK_PENDING, CHECK_DEPOSITED, CHECK_PAID, CHECK_UNPAID)


# =============================================================================
# TAGGED STATE
# =============================================================================

class PaymentState(str, enum.Enum):
    IMMEDIATE = "immediate"
    CREDIT_PENDING = "credit_pending"
    CHECK_PENDING = "check_pending"
    CHECK_DEPOSITED = "check_deposited"
    CHECK_PAID = "check_paid"
    CHECK_UNPAID = "check_unpaid"


_CHECK_STATES = {
    CHECK_PENDING: PaymentState.CHECK_PENDING,
    CHECK_DEPOSITED: PaymentState.CHECK_DEPOSITED,
    CHECK_PAID: PaymentState.CHECK_PAID,
    CHECK_UNPAID: PaymentState.CHECK_UNPAID,
}


@dataclass(frozen=True)
class Draft:
    pass


@dataclass(frozen=True)
class Valid:
    payment: PaymentState


@dataclass(frozen=True)
class Cancelled:
    pass


SaleState = Union[Draft, Valid, Cancelled]


def derive_state(status: str, payment_method: str | None, check_status: str | None) -> SaleState:
    """
    Collapse the (status, payment_method, check_status) columns into one state.

    Raises ValueError on combinations the columns can hold but the domain
    cannot (check_status on a non-check sale, a check sale with no status).
    """
    if payment_method != METHOD_CHECK and check_status is not None:
        raise ValueError(f"check_status {check_status!r} on a {payment_method!r} sale")

    if status == STATUS_DRAFT:
        return Draft()
    if status == STATUS_CANCELLED:
        return Cancelled()
    if status != STATUS_VALID:
        raise ValueError(f"unknown sale status {status!r}")

    if payment_method == METHOD_CHECK:
        if check_status not in _CHECK_STATES:
            raise ValueError(f"check sale with check_status {check_status!r}")
        return Valid(_CHECK_STATES[check_status])
    if payment_method == METHOD_CREDIT:
        return Valid(PaymentState.CREDIT_PENDING)
    return Valid(PaymentState.IMMEDIATE)


def _money(value):
    return float(round_money(value)) if value is not None else None


class Sale(db.Model):
    """
    Sale document: ticket, invoice, quote, delivery note, expense, or a
    synthetic settlement document (check_payment / credit_payment).

    amount_total is always the nominal document value. amount_untaxed and
    amount_tax are the recognized components: they stay at 0 while the sale
    is paid by a deferred instrument (check, credit) that has not cleared.

    recognized_at is set exactly when the row counts toward revenue (CA), so
    recognition never has to be inferred from a zero amount.

    Synthetic settlement documents point at the document they settle through
    settles_sale_id (check_payment) and are created once, never updated.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("store_id", "document_number", name="uq_sales_store_docnum"),
        db.Index("ix_sales_document_number", "document_number"),
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        db.Index("ix_sales_store_method_check_status", "store_id", "payment_method", "check_status"),
        db.CheckConstraint(
            "check_status IS NULL OR payment_method = 'check'",
            name="ck_sales_check_status_requires_check",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # e.g. "FAC-2026-000042"
    document_number = db.Column(db.String(64), nullable=False)
    document_type = db.Column(db.String(32), nullable=False, default=DOC_TICKET, index=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_VALID, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    amount_untaxed = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    amount_tax = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    amount_total = db.Column(db.Numeric(14, 4), nullable=False, default=0)
    discount_pct = db.Column(db.Numeric(7, 4), nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=True, index=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    check_due_date = db.Column(db.Date, nullable=True)
    check_status = db.Column(db.String(16), nullable=True, index=True)
    amount_paid = db.Column(db.Numeric(14, 4), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    settles_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    recognized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_by_user_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    settles = db.relationship("Sale", remote_side=[id], backref=db.backref("settlements", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def state(self) -> SaleState:
        return derive_state(self.status, self.payment_method, self.check_status)

    @property
    def is_settlement_document(self) -> bool:
        return self.document_type in SETTLEMENT_DOCUMENT_TYPES

    @property
    def moves_stock(self) -> bool:
        return self.document_type not in NON_STOCK_DOCUMENT_TYPES

    def to_dict(self, include_lines: bool = False) -> dict:
        state = self.state
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "document_number": self.document_number,
            "document_type": self.document_type,
            "status": self.status,
            "payment_state": state.payment.value if isinstance(state, Valid) else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "created_by_user_id": self.created_by_user_id,
            "amount_untaxed": _money(self.amount_untaxed),
            "amount_tax": _money(self.amount_tax),
            "amount_total": _money(self.amount_total),
            "discount_pct": float(self.discount_pct or 0),
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "check_due_date": to_iso_date(self.check_due_date),
            "check_status": self.check_status,
            "amount_paid": _money(self.amount_paid),
            "notes": self.notes,
            "settles_sale_id": self.settles_sale_id,
            "recognized_at": to_utc_z(self.recognized_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Individual line on a sale document; product_id is null for expense and payment lines."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    designation = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(14, 4), nullable=False)
    unit_price = db.Column(db.Numeric(14, 4), nullable=False)
    tax_rate = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    line_discount_pct = db.Column(db.Numeric(7, 4), nullable=False, default=0)

    # Tax included, after line discount
    line_total = db.Column(db.Numeric(14, 4), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.id"),
    )
    product = db.relationship("Product")

    def amounts(self) -> Amounts:
        return compute_line_total(self.unit_price, self.quantity, self.line_discount_pct, self.tax_rate)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "designation": self.designation,
            "quantity": float(self.quantity),
            "unit_price": _money(self.unit_price),
            "tax_rate": float(self.tax_rate),
            "line_discount_pct": float(self.line_discount_pct),
            "line_total": _money(self.line_total),
            "created_at": to_utc_z(self.created_at),
        }
