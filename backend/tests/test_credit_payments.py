# Overview: Pytest coverage for customer balances and credit repayments.

from decimal import Decimal

import pytest

from gestilog.exceptions import (
    CreditLimitExceededError,
    ExceedsBalanceError,
    NotFoundError,
    ValidationError,
)
from gestilog.extensions import db
from gestilog.models import Sale, SaleLine
from gestilog.services import check_service, credit_service, payment_service, sales_service
from gestilog.time_utils import utcnow


class TestCreditAccount:
    def test_charge_within_limit(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=80, limit=100)

        new_balance = credit_service.charge(store_a.id, customer.id, Decimal("20"))
        db.session.commit()

        assert new_balance == Decimal("100")

    def test_charge_over_limit_leaves_balance(self, db_session, store_a, make_customer):
        """The limit is checked inside the UPDATE itself."""
        customer = make_customer(store_a, balance=80, limit=100)

        with pytest.raises(CreditLimitExceededError) as exc:
            credit_service.charge(store_a.id, customer.id, Decimal("25"))
        db.session.rollback()

        assert exc.value.details["available_credit"] == 20.0
        assert exc.value.details["new_balance"] == 105.0
        db_session.refresh(customer)
        assert customer.balance == Decimal("80")

    def test_credit_may_go_negative(self, db_session, store_a, make_customer):
        """Store credit (negative balance) is allowed."""
        customer = make_customer(store_a, balance=10)

        assert credit_service.credit(store_a.id, customer.id, Decimal("25")) == Decimal("-15")
        db.session.commit()

    def test_charge_unknown_customer(self, db_session, store_a):
        with pytest.raises(NotFoundError):
            credit_service.charge(store_a.id, 4242, Decimal("1"))
        db.session.rollback()


class TestPayCustomerCredit:
    def test_cash_repayment(self, db_session, store_a, make_customer):
        """Cash repayment lowers the balance and is recognized at once."""
        customer = make_customer(store_a, name="Youssef", balance=300)

        result = payment_service.pay_customer_credit(
            store_a.id, customer.id, 120, method="cash", cash_received=200, user_id=3
        )

        assert result.new_balance == Decimal("180")
        sale = result.sale
        assert sale.document_type == "credit_payment"
        assert sale.document_number == f"PAY-CREDIT-{utcnow().year}-000001"
        assert sale.amount_untaxed == Decimal("120")
        assert sale.amount_tax == 0
        assert sale.amount_total == Decimal("120")
        assert sale.recognized_at is not None
        assert "300.00" in sale.notes and "180.00" in sale.notes

        payment_line = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert payment_line.designation == "Credit payment - Youssef"
        assert payment_line.quantity == 1

    def test_default_method_is_cash(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=50)
        result = payment_service.pay_customer_credit(store_a.id, customer.id, 50)
        assert result.sale.payment_method == "cash"
        assert result.new_balance == 0

    def test_check_repayment_is_deferred(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=300)

        result = payment_service.pay_customer_credit(
            store_a.id, customer.id, 100, method="check", reference="CHK-77", due_date="2026-12-01"
        )

        sale = result.sale
        assert result.new_balance == Decimal("200")
        assert sale.amount_untaxed == 0
        assert sale.amount_total == Decimal("100")
        assert sale.check_status == "pending"
        assert sale.recognized_at is None

        # The repayment check appears in the register and clears like any check
        register = check_service.list_checks(store_a.id)
        assert [s.id for s in register["items"]] == [sale.id]
        check_service.update_check_status(store_a.id, sale.id, "paid")
        settlement = db_session.query(Sale).filter_by(settles_sale_id=sale.id).one()
        assert settlement.amount_untaxed == Decimal("100")

    def test_exceeds_balance(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=40)

        with pytest.raises(ExceedsBalanceError):
            payment_service.pay_customer_credit(store_a.id, customer.id, 41)

        db_session.refresh(customer)
        assert customer.balance == Decimal("40")
        assert db_session.query(Sale).count() == 0

    @pytest.mark.parametrize("amount", [0, -5, "abc"])
    def test_amount_must_be_positive(self, db_session, store_a, make_customer, amount):
        customer = make_customer(store_a, balance=40)
        with pytest.raises(ValidationError):
            payment_service.pay_customer_credit(store_a.id, customer.id, amount)

    def test_cash_received_too_low(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=100)
        with pytest.raises(ValidationError):
            payment_service.pay_customer_credit(store_a.id, customer.id, 60, cash_received=50)

    @pytest.mark.parametrize("cash_received", ["NaN", "Infinity"])
    def test_cash_received_must_be_finite(self, db_session, store_a, make_customer, cash_received):
        customer = make_customer(store_a, balance=100)

        with pytest.raises(ValidationError):
            payment_service.pay_customer_credit(store_a.id, customer.id, 60, cash_received=cash_received)

        db_session.refresh(customer)
        assert customer.balance == Decimal("100")

    @pytest.mark.parametrize("reference,due_date", [(None, "2026-12-01"), ("CHK-1", None)])
    def test_check_needs_reference_and_date(self, db_session, store_a, make_customer, reference, due_date):
        customer = make_customer(store_a, balance=100)
        with pytest.raises(ValidationError):
            payment_service.pay_customer_credit(
                store_a.id, customer.id, 10, method="check", reference=reference, due_date=due_date
            )

    def test_credit_is_not_a_repayment_method(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=100)
        with pytest.raises(ValidationError):
            payment_service.pay_customer_credit(store_a.id, customer.id, 10, method="credit")

    def test_other_store_customer(self, db_session, store_a, store_b, make_customer):
        customer_b = make_customer(store_b, balance=100)
        with pytest.raises(NotFoundError):
            payment_service.pay_customer_credit(store_a.id, customer_b.id, 10)

    def test_cancel_repayment_restores_debt(self, db_session, store_a, make_customer):
        customer = make_customer(store_a, balance=100)
        result = payment_service.pay_customer_credit(store_a.id, customer.id, 70)

        sales_service.cancel_sale(store_a.id, result.sale.id, "Wrong customer")

        db_session.refresh(customer)
        assert customer.balance == Decimal("100")
