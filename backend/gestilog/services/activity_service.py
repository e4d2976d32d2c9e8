# Overview: Best-effort audit trail of user actions, written after the business commit.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ActivityLog
from ..time_utils import utcnow


def record_activity(
    *,
    store_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    user_id: int | None = None,
    payload: dict | None = None,
) -> ActivityLog | None:
    """
    Append an activity row in its own small transaction.

    Call only after the business transaction committed. A failure here is
    logged and swallowed: the business change it describes is already durable.
    """
    entry = ActivityLog(
        store_id=store_id,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload,
        created_at=utcnow(),
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Activity log write failed: %s %s#%s", action, entity_type, entity_id, exc_info=True
        )
        return None
    return entry


def list_activity(store_id: int, *, entity_type: str | None = None, entity_id: int | None = None, limit: int = 100):
    query = db.session.query(ActivityLog).filter(ActivityLog.store_id == store_id)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    return query.order_by(ActivityLog.id.desc()).limit(limit).all()
