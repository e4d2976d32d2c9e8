# Overview: Numbering authority for sale and settlement documents.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..exceptions import ValidationError
from ..models import DocumentSequence
from ..models.sales import (
    DOC_TICKET,
    DOC_INVOICE,
    DOC_QUOTE,
    DOC_DELIVERY_NOTE,
    DOC_EXPENSE,
    DOC_CHECK_PAYMENT,
    DOC_CREDIT_PAYMENT,
)
from ..time_utils import utcnow


DOCUMENT_PREFIXES = {
    DOC_TICKET: "TKT",
    DOC_INVOICE: "FAC",
    DOC_QUOTE: "DEV",
    DOC_DELIVERY_NOTE: "BL",
    DOC_EXPENSE: "DEP",
    DOC_CHECK_PAYMENT: "PAY-CHEQUE",
    DOC_CREDIT_PAYMENT: "PAY-CREDIT",
}


def prefix_for(document_type: str) -> str:
    try:
        return DOCUMENT_PREFIXES[document_type]
    except KeyError:
        raise ValidationError(f"Unknown document type: {document_type}")


def format_document_number(prefix: str, year: int, number: int) -> str:
    return f"{prefix}-{year}-{number:06d}"


def _ensure_sequence_row(store_id: int, prefix: str, year: int) -> None:
    values = {"store_id": store_id, "prefix": prefix, "year": year, "next_number": 1}
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        exists = (
            db.session.query(DocumentSequence.id)
            .filter_by(store_id=store_id, prefix=prefix, year=year)
            .first()
        )
        if exists is None:
            db.session.add(DocumentSequence(**values))
            db.session.flush()
        return

    stmt = insert(DocumentSequence).values(**values).on_conflict_do_nothing(
        index_elements=["store_id", "prefix", "year"]
    )
    db.session.execute(stmt)


def next_document_number(*, store_id: int, prefix: str, year: int | None = None) -> str:
    """
    Allocate the next number for (store, prefix, year) inside the caller's transaction.

    The increment is a single UPDATE ... SET next_number = next_number + 1, so
    two concurrent allocations serialize on the sequence row. A rollback of
    the caller's transaction releases the number.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not prefix:
        raise ValidationError("prefix is required")
    if year is None:
        year = utcnow().year

    _ensure_sequence_row(store_id, prefix, year)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.prefix == prefix,
            DocumentSequence.year == year,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, prefix=prefix, year=year)
        .scalar()
    )
    return format_document_number(prefix, year, current - 1)


def next_number_for(store_id: int, document_type: str, year: int | None = None) -> str:
    return next_document_number(store_id=store_id, prefix=prefix_for(document_type), year=year)
