# Overview: Pytest coverage for the tagged sale state.

import pytest
from sqlalchemy.exc import IntegrityError

from gestilog.models import Sale
from gestilog.models.sales import (
    Cancelled,
    Draft,
    PaymentState,
    Valid,
    derive_state,
)


class TestDeriveState:
    def test_cash_sale_is_immediate(self):
        assert derive_state("valid", "cash", None) == Valid(PaymentState.IMMEDIATE)

    def test_no_method_is_immediate(self):
        assert derive_state("valid", None, None) == Valid(PaymentState.IMMEDIATE)

    def test_credit_sale_is_pending(self):
        assert derive_state("valid", "credit", None) == Valid(PaymentState.CREDIT_PENDING)

    @pytest.mark.parametrize("check_status,expected", [
        ("pending", PaymentState.CHECK_PENDING),
        ("deposited", PaymentState.CHECK_DEPOSITED),
        ("paid", PaymentState.CHECK_PAID),
        ("unpaid", PaymentState.CHECK_UNPAID),
    ])
    def test_check_states(self, check_status, expected):
        assert derive_state("valid", "check", check_status) == Valid(expected)

    def test_draft_and_cancelled(self):
        assert derive_state("draft", "cash", None) == Draft()
        assert derive_state("cancelled", "check", "paid") == Cancelled()

    def test_check_status_on_cash_sale_is_illegal(self):
        """check_status only exists on check-paid sales."""
        with pytest.raises(ValueError):
            derive_state("valid", "cash", "paid")

    def test_check_sale_without_status_is_illegal(self):
        with pytest.raises(ValueError):
            derive_state("valid", "check", None)


class TestCheckConstraint:
    def test_db_rejects_check_status_on_cash_sale(self, db_session, store_a):
        """The table refuses the combination the state type cannot express."""
        sale = Sale(
            store_id=store_a.id,
            document_number="TKT-2026-000001",
            document_type="ticket",
            status="valid",
            payment_method="cash",
            check_status="paid",
        )
        db_session.add(sale)
        with pytest.raises(IntegrityError):
            db_session.flush()
        db_session.rollback()
