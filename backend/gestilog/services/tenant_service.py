"""
Tenant scoping helpers.

Every service reaches tenant data through these functions, which always add
the store_id predicate. A row that exists in another store is reported
exactly like a row that does not exist at all.
"""

from __future__ import annotations

from ..extensions import db
from ..exceptions import NotFoundError
from ..models import Store
from .concurrency import lock_for_update


def require_store(store_id: int) -> Store:
    """Return the active store or raise NotFoundError."""
    store = db.session.query(Store).filter_by(id=store_id).first()
    if store is None or not store.is_active:
        raise NotFoundError("Store not found")
    return store


def scoped(model, store_id: int):
    """Query for model restricted to one store."""
    if store_id is None:
        raise NotFoundError("Tenant context not established")
    return db.session.query(model).filter(model.store_id == store_id)


def get_scoped(model, store_id: int, entity_id, *, lock: bool = False, label: str | None = None, **criteria):
    """
    Load one row of model by id inside store_id, optionally locked FOR UPDATE.

    Extra keyword criteria are applied as equality filters. Raises
    NotFoundError when nothing matches.
    """
    query = scoped(model, store_id).filter(model.id == entity_id)
    if criteria:
        query = query.filter_by(**criteria)
    if lock:
        query = lock_for_update(query)
    row = query.first()
    if row is None:
        name = label or model.__name__
        raise NotFoundError(f"{name} not found", details={"id": entity_id})
    return row


def paginate(query, page: int = 1, limit: int = 50) -> dict:
    """Apply offset pagination and return items with totals."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 50), 1), 500)
    total = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }
