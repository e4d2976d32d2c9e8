# Overview: Pytest coverage for sale creation, listing and cancellation.

from decimal import Decimal

import pytest

from gestilog.exceptions import (
    AlreadyCancelledError,
    CreditLimitExceededError,
    InsufficientStockError,
    InvalidLineError,
    NotFoundError,
    ValidationError,
)
from gestilog.models import ActivityLog, Sale, SaleLine, StockMovement
from gestilog.models.sales import PaymentState, Valid, Cancelled
from gestilog.services import credit_service, sales_service
from gestilog.time_utils import utcnow

from conftest import line


class TestCreateSale:
    def test_ticket_moves_stock_and_totals(self, db_session, store_a, make_product):
        """A cash ticket decrements stock, logs the movement and is recognized."""
        product = make_product(store_a, stock=10)

        sale = sales_service.create_sale(store_a.id, {
            "document_type": "ticket",
            "payment_method": "cash",
            "lines": [line(product, quantity=3, unit_price=10, tax_rate=20, line_discount_pct=10)],
        }, user_id=5)

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("7")
        assert sale.document_number == f"TKT-{utcnow().year}-000001"
        assert sale.amount_untaxed == Decimal("27")
        assert sale.amount_tax == Decimal("5.4")
        assert sale.amount_total == Decimal("32.4")
        assert sale.state == Valid(PaymentState.IMMEDIATE)
        assert sale.recognized_at is not None
        assert sale.created_by_user_id == 5

        movement = db_session.query(StockMovement).one()
        assert movement.type == "out"
        assert movement.reason == f"Sale {sale.document_number}"
        assert movement.reference_document == sale.document_number

    def test_line_defaults(self, db_session, store_a, make_product):
        """Designation defaults to the product name, tax to the sale rate."""
        product = make_product(store_a, name="Cement bag")

        sale = sales_service.create_sale(store_a.id, {
            "lines": [{"product_id": product.id, "quantity": 1, "unit_price": 100}],
        })

        sale_line = sale.lines[0]
        assert sale_line.designation == "Cement bag"
        assert sale_line.tax_rate == Decimal("20")
        assert sale.amount_tax == Decimal("20")
        assert sale.amount_total == Decimal("120")

    def test_global_discount(self, db_session, store_a, make_product):
        """10% global discount rescales the base; tax is recomputed at the sale rate."""
        product = make_product(store_a)

        sale = sales_service.create_sale(store_a.id, {
            "document_type": "invoice",
            "discount_pct": 10,
            "tax_rate": 20,
            "lines": [line(product, quantity=1, unit_price=100, tax_rate=20)],
        })

        assert sale.amount_untaxed == Decimal("90")
        assert sale.amount_tax == Decimal("18")
        assert sale.amount_total == Decimal("108")

    def test_same_product_on_two_lines_checks_combined_stock(self, db_session, store_a, make_product):
        product = make_product(store_a, stock=5)

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(store_a.id, {
                "lines": [line(product, quantity=3), line(product, quantity=3)],
            })

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("5")

    def test_insufficient_stock_names_product(self, db_session, store_a, make_product):
        product = make_product(store_a, name="Paint 5L", stock=1)

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.create_sale(store_a.id, {"lines": [line(product, quantity=2)]})

        assert "Paint 5L" in exc.value.message
        assert db_session.query(Sale).count() == 0

    def test_quote_does_not_touch_stock(self, db_session, store_a, make_product):
        """Quotes skip the stock check and never move stock."""
        product = make_product(store_a, stock=1)

        sale = sales_service.create_sale(store_a.id, {
            "document_type": "quote",
            "lines": [line(product, quantity=50)],
        })

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("1")
        assert sale.document_number.startswith("DEV-")
        assert sale.recognized_at is None
        assert db_session.query(StockMovement).count() == 0

    def test_expense_without_product(self, db_session, store_a):
        sale = sales_service.create_sale(store_a.id, {
            "document_type": "expense",
            "payment_method": "cash",
            "lines": [{"designation": "Electricity bill", "quantity": 1, "unit_price": 450, "tax_rate": 0}],
        })

        assert sale.document_number.startswith("DEP-")
        assert sale.amount_total == Decimal("450")
        assert sale.lines[0].product_id is None
        assert sale.recognized_at is None

    def test_ticket_requires_product(self, db_session, store_a):
        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, {
                "lines": [{"designation": "Loose item", "quantity": 1, "unit_price": 5}],
            })

    def test_empty_lines_rejected(self, db_session, store_a):
        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, {"lines": []})

    def test_invalid_line_rejected(self, db_session, store_a, make_product):
        product = make_product(store_a)
        with pytest.raises(InvalidLineError):
            sales_service.create_sale(store_a.id, {"lines": [line(product, quantity=0)]})

    def test_settlement_types_not_creatable(self, db_session, store_a, make_product):
        product = make_product(store_a)
        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, {
                "document_type": "check_payment",
                "lines": [line(product)],
            })

    def test_activity_recorded(self, db_session, store_a, make_product):
        product = make_product(store_a)
        sale = sales_service.create_sale(store_a.id, {"lines": [line(product)]}, user_id=9)

        entry = db_session.query(ActivityLog).filter_by(action="sale.created").one()
        assert entry.entity_id == sale.id
        assert entry.user_id == 9


class TestDeferredPayments:
    def test_check_sale_is_deferred(self, db_session, store_a, make_product, make_customer):
        """A check sale keeps its total but recognizes nothing yet."""
        product = make_product(store_a)
        customer = make_customer(store_a)

        sale = sales_service.create_sale(store_a.id, {
            "payment_method": "check",
            "customer_id": customer.id,
            "payment_reference": "CHK-001",
            "check_due_date": "2026-11-30",
            "lines": [line(product, quantity=1, unit_price=100, tax_rate=18)],
        })

        assert sale.amount_untaxed == 0
        assert sale.amount_tax == 0
        assert sale.amount_total == Decimal("118")
        assert sale.check_status == "pending"
        assert sale.state == Valid(PaymentState.CHECK_PENDING)
        assert sale.recognized_at is None

    @pytest.mark.parametrize("missing", ["customer_id", "payment_reference", "check_due_date"])
    def test_check_requires_details(self, db_session, store_a, make_product, make_customer, missing):
        product = make_product(store_a)
        customer = make_customer(store_a)
        payload = {
            "payment_method": "check",
            "customer_id": customer.id,
            "payment_reference": "CHK-001",
            "check_due_date": "2026-11-30",
            "lines": [line(product)],
        }
        payload.pop(missing)

        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, payload)

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("10")

    def test_credit_limit_enforced(self, db_session, store_a, make_product, make_customer):
        """Balance 80, limit 100: 25 on credit fails, 20 succeeds."""
        product = make_product(store_a, stock=10)
        customer = make_customer(store_a, balance=80, limit=100)

        with pytest.raises(CreditLimitExceededError) as exc:
            sales_service.create_sale(store_a.id, {
                "payment_method": "credit",
                "customer_id": customer.id,
                "lines": [line(product, unit_price=25)],
            })
        message = exc.value.message
        assert "80.00" in message and "105.00" in message and "20.00" in message
        assert "MAD" in message

        db_session.refresh(customer)
        db_session.refresh(product)
        assert customer.balance == Decimal("80")
        assert product.stock_quantity == Decimal("10")

        sale = sales_service.create_sale(store_a.id, {
            "payment_method": "credit",
            "customer_id": customer.id,
            "lines": [line(product, unit_price=20)],
        })
        db_session.refresh(customer)
        assert customer.balance == Decimal("100")
        assert sale.amount_untaxed == 0
        assert sale.state == Valid(PaymentState.CREDIT_PENDING)

    def test_no_limit_when_zero(self, db_session, store_a, make_product, make_customer):
        product = make_product(store_a)
        customer = make_customer(store_a, balance=1000, limit=0)

        sales_service.create_sale(store_a.id, {
            "payment_method": "credit",
            "customer_id": customer.id,
            "lines": [line(product, unit_price=5000)],
        })

        db_session.refresh(customer)
        assert customer.balance == Decimal("6000")

    def test_credit_requires_customer(self, db_session, store_a, make_product):
        product = make_product(store_a)
        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, {"payment_method": "credit", "lines": [line(product)]})

    def test_amount_paid_above_total_rejected(self, db_session, store_a, make_product, make_customer):
        product = make_product(store_a)
        customer = make_customer(store_a)
        with pytest.raises(ValidationError):
            sales_service.create_sale(store_a.id, {
                "payment_method": "credit",
                "customer_id": customer.id,
                "amount_paid": 150,
                "lines": [line(product, unit_price=100)],
            })

    def test_failure_after_stock_write_rolls_back_everything(
        self, db_session, store_a, make_product, make_customer, monkeypatch
    ):
        """A late failure undoes stock, the sale row and the number allocation."""
        product = make_product(store_a, stock=10)
        customer = make_customer(store_a)

        def _refuse(store_id, customer_id, amount):
            raise CreditLimitExceededError("Limit reached concurrently")

        monkeypatch.setattr(credit_service, "charge", _refuse)

        with pytest.raises(CreditLimitExceededError):
            sales_service.create_sale(store_a.id, {
                "payment_method": "credit",
                "customer_id": customer.id,
                "lines": [line(product, quantity=4)],
            })

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("10")
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).count() == 0

        monkeypatch.undo()
        sale = sales_service.create_sale(store_a.id, {"lines": [line(product)]})
        assert sale.document_number.endswith("-000001")


class TestCancelSale:
    def test_stock_restored(self, db_session, store_a, make_product):
        """Cancelling gives back exactly what the sale took."""
        first = make_product(store_a, name="A", stock=10, purchase_price=5)
        second = make_product(store_a, name="B", stock=4)

        sale = sales_service.create_sale(store_a.id, {
            "lines": [line(first, quantity=3), line(second, quantity=4)],
        })
        cancelled = sales_service.cancel_sale(store_a.id, sale.id, "Customer changed mind", user_id=2)

        db_session.refresh(first)
        db_session.refresh(second)
        assert first.stock_quantity == Decimal("10")
        assert second.stock_quantity == Decimal("4")
        assert first.purchase_price == Decimal("5")
        assert cancelled.status == "cancelled"
        assert cancelled.state == Cancelled()
        assert cancelled.cancel_reason == "Customer changed mind"
        assert cancelled.recognized_at is None

        reversals = db_session.query(StockMovement).filter_by(is_reversal=True).all()
        assert len(reversals) == 2
        assert all(m.reason == f"Cancellation of sale {sale.document_number}" for m in reversals)

    def test_credit_unwound(self, db_session, store_a, make_product, make_customer):
        """Credit 150 with 50 paid: balance 100, back to 0 on cancel."""
        product = make_product(store_a, stock=5)
        customer = make_customer(store_a, balance=0, limit=1000)

        sale = sales_service.create_sale(store_a.id, {
            "payment_method": "credit",
            "customer_id": customer.id,
            "amount_paid": 50,
            "lines": [line(product, quantity=1, unit_price=150)],
        })
        db_session.refresh(customer)
        assert customer.balance == Decimal("100")

        sales_service.cancel_sale(store_a.id, sale.id, "Error")

        db_session.refresh(customer)
        db_session.refresh(product)
        assert customer.balance == 0
        assert product.stock_quantity == Decimal("5")

    def test_quote_cancel_leaves_stock(self, db_session, store_a, make_product):
        product = make_product(store_a, stock=2)
        quote = sales_service.create_sale(store_a.id, {"document_type": "quote", "lines": [line(product, quantity=1)]})

        sales_service.cancel_sale(store_a.id, quote.id)

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("2")

    def test_already_cancelled(self, db_session, store_a, make_product):
        product = make_product(store_a)
        sale = sales_service.create_sale(store_a.id, {"lines": [line(product)]})
        sales_service.cancel_sale(store_a.id, sale.id)

        with pytest.raises(AlreadyCancelledError):
            sales_service.cancel_sale(store_a.id, sale.id)

        db_session.refresh(product)
        assert product.stock_quantity == Decimal("10")

    def test_other_store_sale_not_found(self, db_session, store_a, store_b, make_product):
        product = make_product(store_b)
        sale_b = sales_service.create_sale(store_b.id, {"lines": [line(product)]})

        with pytest.raises(NotFoundError):
            sales_service.cancel_sale(store_a.id, sale_b.id)


class TestListSales:
    def test_newest_first_with_filters(self, db_session, store_a, make_product, make_customer):
        product = make_product(store_a, stock=100)
        customer = make_customer(store_a, name="Atlas Build")
        first = sales_service.create_sale(store_a.id, {"lines": [line(product)]})
        second = sales_service.create_sale(store_a.id, {
            "document_type": "invoice",
            "customer_id": customer.id,
            "lines": [line(product)],
        })

        result = sales_service.list_sales(store_a.id)
        assert [s.id for s in result["items"]] == [second.id, first.id]
        assert result["total"] == 2
        assert result["pages"] == 1

        invoices = sales_service.list_sales(store_a.id, document_type="invoice")
        assert [s.id for s in invoices["items"]] == [second.id]

        by_customer = sales_service.list_sales(store_a.id, search="atlas")
        assert [s.id for s in by_customer["items"]] == [second.id]

        by_number = sales_service.list_sales(store_a.id, search=first.document_number)
        assert [s.id for s in by_number["items"]] == [first.id]

    def test_date_range(self, db_session, store_a, make_product):
        product = make_product(store_a)
        sales_service.create_sale(store_a.id, {"lines": [line(product)]})
        today = utcnow().date().isoformat()

        assert sales_service.list_sales(store_a.id, date_from=today, date_to=today)["total"] == 1
        assert sales_service.list_sales(store_a.id, date_to="2000-01-01")["total"] == 0

    def test_settlement_after_original_on_same_timestamp(self, db_session, store_a):
        """At equal timestamps the customer-facing document is listed first."""
        moment = utcnow()
        settlement = Sale(
            store_id=store_a.id, document_number="PAY-CREDIT-2026-000001",
            document_type="credit_payment", payment_method="cash", created_at=moment,
        )
        original = Sale(
            store_id=store_a.id, document_number="TKT-2026-000001",
            document_type="ticket", payment_method="cash", created_at=moment,
        )
        db_session.add_all([original, settlement])
        db_session.commit()

        result = sales_service.list_sales(store_a.id)
        assert [s.document_type for s in result["items"]] == ["ticket", "credit_payment"]

    def test_get_sale_scoped(self, db_session, store_a, store_b, make_product):
        product = make_product(store_a)
        sale = sales_service.create_sale(store_a.id, {"lines": [line(product)]})

        assert sales_service.get_sale(store_a.id, sale.id).id == sale.id
        assert sales_service.get_sale(store_b.id, sale.id) is None

    def test_lines_persisted(self, db_session, store_a, make_product):
        product = make_product(store_a)
        sale = sales_service.create_sale(store_a.id, {
            "lines": [line(product, quantity=2, unit_price=10, tax_rate=20)],
        })
        stored = db_session.query(SaleLine).filter_by(sale_id=sale.id).one()
        assert stored.line_total == Decimal("24")
