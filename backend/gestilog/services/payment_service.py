# Overview: Customer credit repayments, recorded as credit_payment settlement documents.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..exceptions import ValidationError
from ..models import Sale, SaleLine
from ..models.sales import (
    CHECK_PENDING,
    DOC_CREDIT_PAYMENT,
    METHOD_CASH,
    METHOD_CHECK,
    METHOD_CREDIT,
    PAYMENT_METHODS,
    STATUS_VALID,
)
from ..pricing import ZERO, round_money, to_decimal
from ..time_utils import parse_iso_date, utcnow
from . import credit_service
from .activity_service import record_activity
from .concurrency import run_in_transaction
from .document_service import next_number_for
from .reporting_service import counts_as_revenue


@dataclass(frozen=True)
class CreditPaymentResult:
    new_balance: Decimal
    sale: Sale

    def to_dict(self) -> dict:
        return {"new_balance": float(self.new_balance), "sale": self.sale.to_dict(include_lines=True)}


def _validate_payment(amount, method, reference, due_date, cash_received):
    try:
        amount = to_decimal(amount, "amount")
    except ValidationError:
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than 0", details={"amount": str(amount)})

    method = method or METHOD_CASH
    if method not in PAYMENT_METHODS or method == METHOD_CREDIT:
        raise ValidationError(f"Invalid payment method for a credit repayment: {method}")

    if method == METHOD_CASH and cash_received is not None:
        received = to_decimal(cash_received, "cash_received")
        if not received.is_finite():
            raise ValidationError(
                "Cash received must be a finite number",
                details={"cash_received": str(cash_received)},
            )
        if received < amount:
            raise ValidationError(
                "Cash received is less than the amount paid",
                details={"cash_received": float(received), "amount": float(amount)},
            )

    if method == METHOD_CHECK:
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("A check reference is required for a check payment")
        try:
            due_date = parse_iso_date(due_date)
        except ValueError:
            raise ValidationError("check_due_date must be an ISO-8601 date")
        if due_date is None:
            raise ValidationError("A due date is required for a check payment")
    else:
        due_date = None

    return amount, method, (reference or None), due_date


def _pay_inner(store_id, customer_id, amount, method, reference, due_date, user_id) -> CreditPaymentResult:
    customer = credit_service.get_customer(store_id, customer_id, lock=True)
    balance_before = customer.balance
    new_balance = credit_service.settle(store_id, customer_id, amount)

    cur = current_app.config.get("CURRENCY_CODE", "MAD")
    now = utcnow()
    by_check = method == METHOD_CHECK
    sale = Sale(
        store_id=store_id,
        document_number=next_number_for(store_id, DOC_CREDIT_PAYMENT, now.year),
        document_type=DOC_CREDIT_PAYMENT,
        status=STATUS_VALID,
        customer_id=customer.id,
        created_by_user_id=user_id,
        amount_untaxed=ZERO if by_check else amount,
        amount_tax=ZERO,
        amount_total=amount,
        payment_method=method,
        payment_reference=reference,
        check_due_date=due_date,
        check_status=CHECK_PENDING if by_check else None,
        amount_paid=amount,
        notes=(
            f"Credit payment - balance before: {round_money(balance_before)} {cur}, "
            f"balance after: {round_money(new_balance)} {cur}"
        ),
        recognized_at=now if counts_as_revenue(STATUS_VALID, DOC_CREDIT_PAYMENT, method) else None,
        created_at=now,
    )
    db.session.add(sale)
    db.session.flush()

    db.session.add(SaleLine(
        sale_id=sale.id,
        product_id=None,
        designation=f"Credit payment - {customer.name}"[:255],
        quantity=1,
        unit_price=amount,
        tax_rate=ZERO,
        line_discount_pct=ZERO,
        line_total=amount,
        created_at=now,
    ))
    db.session.flush()
    return CreditPaymentResult(new_balance=new_balance, sale=sale)


def pay_customer_credit(
    store_id: int,
    customer_id: int,
    amount,
    *,
    method: str | None = None,
    reference: str | None = None,
    due_date=None,
    cash_received=None,
    user_id: int | None = None,
) -> CreditPaymentResult:
    """
    Record a repayment against a customer's outstanding balance.

    The balance decrement and the credit_payment document commit together.
    A repayment by check is not revenue until the check clears.
    """
    amount, method, reference, due_date = _validate_payment(amount, method, reference, due_date, cash_received)

    result = run_in_transaction(
        lambda: _pay_inner(store_id, customer_id, amount, method, reference, due_date, user_id)
    )

    current_app.logger.info(
        "Credit repayment %s for customer %s: %s (store=%s)",
        result.sale.document_number, customer_id, amount, store_id,
    )
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="customer.credit_payment",
        entity_type="customer",
        entity_id=customer_id,
        payload={"document_number": result.sale.document_number, "amount": str(amount)},
    )
    return result
