# Overview: Pytest coverage for document numbering.

import pytest

from gestilog.exceptions import ValidationError
from gestilog.extensions import db
from gestilog.models import DocumentSequence
from gestilog.services.document_service import (
    DOCUMENT_PREFIXES,
    format_document_number,
    next_document_number,
    next_number_for,
    prefix_for,
)


class TestDocumentNumbers:
    def test_format(self):
        assert format_document_number("FAC", 2026, 42) == "FAC-2026-000042"

    def test_prefixes(self):
        assert prefix_for("ticket") == "TKT"
        assert prefix_for("invoice") == "FAC"
        assert prefix_for("quote") == "DEV"
        assert prefix_for("delivery_note") == "BL"
        assert prefix_for("expense") == "DEP"
        assert prefix_for("check_payment") == "PAY-CHEQUE"
        assert prefix_for("credit_payment") == "PAY-CREDIT"
        assert len(DOCUMENT_PREFIXES) == 7

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            prefix_for("receipt")

    def test_monotonic_per_prefix(self, db_session, store_a):
        """Each prefix keeps its own counter."""
        numbers = [next_document_number(store_id=store_a.id, prefix="FAC", year=2026) for _ in range(3)]
        other = next_document_number(store_id=store_a.id, prefix="TKT", year=2026)
        db.session.commit()

        assert numbers == ["FAC-2026-000001", "FAC-2026-000002", "FAC-2026-000003"]
        assert other == "TKT-2026-000001"

    def test_scoped_by_store_and_year(self, db_session, store_a, store_b):
        """Stores and years do not share counters."""
        a = next_number_for(store_a.id, "invoice", 2026)
        b = next_number_for(store_b.id, "invoice", 2026)
        a_next_year = next_number_for(store_a.id, "invoice", 2027)
        db.session.commit()

        assert a == "FAC-2026-000001"
        assert b == "FAC-2026-000001"
        assert a_next_year == "FAC-2027-000001"
        assert db_session.query(DocumentSequence).count() == 3

    def test_rollback_releases_number(self, db_session, store_a):
        """A number allocated in a rolled-back transaction is handed out again."""
        next_number_for(store_a.id, "ticket", 2026)
        db.session.rollback()

        assert next_number_for(store_a.id, "ticket", 2026) == "TKT-2026-000001"
        db.session.commit()
