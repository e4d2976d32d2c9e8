# Overview: Customer master data. The balance is owned by credit_service and is never patched here.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer
from .activity_service import record_activity
from .concurrency import run_in_transaction
from .tenant_service import get_scoped, paginate, require_store, scoped

CUSTOMER_MUTABLE_FIELDS = {
    "name", "phone", "email", "address", "tax_id", "notes", "authorized_credit_limit",
}


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(c, k, v)


def list_customers(
    store_id: int,
    *,
    search: str | None = None,
    with_balance: bool = False,
    page: int = 1,
    limit: int = 50,
) -> dict:
    query = scoped(Customer, store_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(pattern),
            Customer.phone.ilike(pattern),
            Customer.email.ilike(pattern),
        ))
    if with_balance:
        query = query.filter(Customer.balance > 0)
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page, limit)


def get_customer(store_id: int, customer_id: int) -> Customer:
    return get_scoped(Customer, store_id, customer_id, label="Customer")


def create_customer(store_id: int, patch: dict, *, user_id: int | None = None) -> Customer:
    def _op():
        require_store(store_id)
        customer = Customer(store_id=store_id, balance=0, authorized_credit_limit=0)
        apply_customer_patch(customer, patch)
        db.session.add(customer)
        db.session.flush()
        return customer

    customer = run_in_transaction(_op)
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="customer.created",
        entity_type="customer",
        entity_id=customer.id,
        payload={"name": customer.name},
    )
    return customer


def update_customer(store_id: int, customer_id: int, patch: dict, *, user_id: int | None = None) -> Customer:
    """
    Update master data. Lowering the limit below the current balance is
    allowed; it only blocks further charges.
    """
    def _op():
        customer = get_scoped(Customer, store_id, customer_id, lock=True, label="Customer")
        apply_customer_patch(customer, patch)
        db.session.flush()
        return customer

    customer = run_in_transaction(_op)
    record_activity(
        store_id=store_id,
        user_id=user_id,
        action="customer.updated",
        entity_type="customer",
        entity_id=customer.id,
        payload={"fields": sorted(patch)},
    )
    return customer
