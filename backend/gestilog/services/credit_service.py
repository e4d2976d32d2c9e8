# Overview: Customer balance mutations; the credit limit is enforced inside the UPDATE itself.

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..exceptions import CreditLimitExceededError, ExceedsBalanceError, ValidationError
from ..models import Customer
from ..pricing import ZERO, round_money, to_decimal
from .tenant_service import get_scoped


def _currency() -> str:
    return current_app.config.get("CURRENCY_CODE", "MAD")


def _amount(value) -> Decimal:
    amount = to_decimal(value, "amount")
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Amount must be greater than or equal to 0", details={"amount": str(value)})
    return amount


def get_customer(store_id: int, customer_id: int, *, lock: bool = False) -> Customer:
    return get_scoped(Customer, store_id, customer_id, lock=lock, label="Customer")


def credit_limit_error(customer: Customer, amount: Decimal) -> CreditLimitExceededError:
    cur = _currency()
    limit = customer.authorized_credit_limit
    balance = customer.balance
    projected = balance + amount
    available = limit - balance
    return CreditLimitExceededError(
        f"Authorized credit ({round_money(limit)} {cur}) would be exceeded. "
        f"Current balance: {round_money(balance)} {cur}, "
        f"new balance: {round_money(projected)} {cur}. "
        f"Available credit: {round_money(available)} {cur}.",
        details={
            "customer_id": customer.id,
            "authorized_credit_limit": float(limit),
            "balance": float(balance),
            "new_balance": float(projected),
            "available_credit": float(available),
        },
    )


def check_limit(customer: Customer, amount) -> None:
    """Pre-check before any mutation; charge() repeats the check atomically."""
    amount = _amount(amount)
    limit = customer.authorized_credit_limit
    if limit > 0 and customer.balance + amount > limit:
        raise credit_limit_error(customer, amount)


def charge(store_id: int, customer_id: int, amount) -> Decimal:
    """
    Increase the customer's balance by amount, refusing to pass the limit.

    The limit test and the increment are one conditional UPDATE, so two
    concurrent charges cannot both pass a check made against a stale
    balance. Runs inside the caller's transaction. Returns the new balance.
    """
    amount = _amount(amount)
    stmt = (
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.store_id == store_id,
            or_(
                Customer.authorized_credit_limit <= 0,
                Customer.balance + amount <= Customer.authorized_credit_limit,
            ),
        )
        .values(balance=Customer.balance + amount)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    customer = get_customer(store_id, customer_id)
    db.session.refresh(customer)
    if result.rowcount == 0:
        raise credit_limit_error(customer, amount)
    return customer.balance


def reinstate(store_id: int, customer_id: int, amount) -> Decimal:
    """Increase the balance without a limit check (undoing a repayment)."""
    amount = _amount(amount)
    customer = get_customer(store_id, customer_id)
    db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.store_id == store_id)
        .values(balance=Customer.balance + amount)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(customer)
    return customer.balance


def credit(store_id: int, customer_id: int, amount) -> Decimal:
    """Decrease the balance; no limit check. The balance may go negative."""
    amount = _amount(amount)
    customer = get_customer(store_id, customer_id)
    db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.store_id == store_id)
        .values(balance=Customer.balance - amount)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(customer)
    return customer.balance


reverse_charge = credit


def _settle_stmt(store_id: int, customer_id: int, amount: Decimal):
    return (
        update(Customer)
        .where(
            Customer.id == customer_id,
            Customer.store_id == store_id,
            Customer.balance >= amount,
        )
        .values(balance=Customer.balance - amount)
        .execution_options(synchronize_session=False)
    )


def settle(store_id: int, customer_id: int, amount) -> Decimal:
    """Repayment: decrease the balance, refusing to go below zero."""
    amount = _amount(amount)
    customer = get_customer(store_id, customer_id)
    result = db.session.execute(_settle_stmt(store_id, customer_id, amount))
    db.session.refresh(customer)
    if result.rowcount == 0:
        cur = _currency()
        raise ExceedsBalanceError(
            f"Payment amount ({round_money(amount)} {cur}) exceeds the outstanding "
            f"balance ({round_money(customer.balance)} {cur})",
            details={"amount": float(amount), "balance": float(customer.balance)},
        )
    return customer.balance


def try_settle(store_id: int, customer_id: int, amount) -> bool:
    """Like settle(), but a balance smaller than amount is left untouched instead of raising."""
    amount = _amount(amount)
    if amount == ZERO:
        return False
    customer = get_customer(store_id, customer_id)
    result = db.session.execute(_settle_stmt(store_id, customer_id, amount))
    db.session.refresh(customer)
    return result.rowcount > 0
