"""Ledger operations against a real Postgres database.

Set TEST_DATABASE_URL to a disposable database to run these; every table is
truncated before each test.
"""
import os

import pytest

from oilmart.core.config import settings
from oilmart.core.database import close_pg_pool, init_schema, pg_cursor, row_to_dict
from oilmart.core.exceptions import ConflictError, InsufficientStockError, ValidationFailed
from oilmart.models.models import (
    BillCreate,
    CustomBillCreate,
    MarketCreditCreate,
    OrderCreate,
    SaleCreate,
    StockAdjustmentCreate,
)
from oilmart.services import credit, transactions

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not TEST_DATABASE_URL, reason="TEST_DATABASE_URL is not set")

TABLES = [
    "refresh_tokens", "pending_payments", "credit_transactions", "customer_credits",
    "market_credit_collections", "market_credits", "credit_requests", "order_items", "orders",
    "bill_items", "bills", "custom_bill_items", "custom_bills", "stock_adjustments",
    "transfer_requests", "sales", "products", "users",
]


@pytest.fixture(scope="module")
def database():
    previous = settings.database_url
    settings.database_url = TEST_DATABASE_URL
    close_pg_pool()
    init_schema()
    yield
    close_pg_pool()
    settings.database_url = previous


@pytest.fixture(autouse=True)
def clean_tables(database, owner, staff, customer):
    with pg_cursor(commit=True) as cur:
        cur.execute(f"TRUNCATE {', '.join(TABLES)} RESTART IDENTITY CASCADE")
        for user, phone in ((owner, "9000000001"), (staff, "9000000002"), (customer, "9876543210")):
            cur.execute(
                "INSERT INTO users (email, hashed_password, role, name, phone) VALUES (%s, 'x', %s, %s, %s)",
                (user.email, user.role.value, user.name, phone),
            )


def add_product(name="Sunflower Oil 1L", price=100, stock=10, category="sunflower"):
    with pg_cursor(commit=True) as cur:
        cur.execute(
            """
            INSERT INTO products (name, category, type, packaging, base_price, stock, unit, lowstock_alert)
            VALUES (%s, %s, 'edible', 'bottle', %s, %s, 'L', 2)
            RETURNING id
            """,
            (name, category, price, stock),
        )
        return cur.fetchone()[0]


def stock_of(product_id):
    with pg_cursor() as cur:
        cur.execute("SELECT stock FROM products WHERE id = %s", (product_id,))
        return float(cur.fetchone()[0])


def count(table):
    with pg_cursor() as cur:
        cur.execute(f"SELECT count(*) FROM {table}")
        return cur.fetchone()[0]


def sell(user, product_id, quantity, method="cash", paid_amount=None):
    payload = SaleCreate(
        product_id=product_id,
        customer_name="Ravi",
        customer_phone="987-654-3210",
        quantity=quantity,
        payment_method=method,
        paid_amount=paid_amount,
    )
    with pg_cursor(commit=True) as cur:
        return transactions.record_sale(cur, payload, user)


class TestSales:
    def test_cash_sale_takes_stock(self, staff):
        product_id = add_product()
        sale = sell(staff, product_id, 3)
        assert float(sale["total_amount"]) == 300.0
        assert float(sale["paid_amount"]) == 300.0
        assert float(sale["credit_amount"]) == 0.0
        assert sale["customer_phone"] == "9876543210"
        assert stock_of(product_id) == 7.0
        assert count("pending_payments") == 0

    def test_credit_sale_opens_ledger_entries(self, staff):
        product_id = add_product()
        sale = sell(staff, product_id, 5, method="credit")
        assert float(sale["credit_amount"]) == 500.0
        with pg_cursor() as cur:
            account = credit.fetch_customer_credit(cur, "9876543210")
            cur.execute("SELECT * FROM pending_payments WHERE sale_id = %s", (sale["id"],))
            pending = row_to_dict(cur)
        assert float(account["total_credit"]) == 500.0
        assert [t["type"] for t in account["transactions"]] == ["debit"]
        assert float(pending["pending_amount"]) == 500.0
        assert pending["status"] == "pending"

    def test_partial_cash_sale(self, staff):
        product_id = add_product(price=125)
        sale = sell(staff, product_id, 4, method="gpay", paid_amount=300)
        assert float(sale["credit_amount"]) == 200.0
        with pg_cursor() as cur:
            cur.execute("SELECT status, pending_amount FROM pending_payments WHERE sale_id = %s", (sale["id"],))
            status, pending = cur.fetchone()
        assert status == "partial"
        assert float(pending) == 200.0

    def test_short_stock_writes_nothing(self, staff):
        product_id = add_product(stock=10)
        with pytest.raises(InsufficientStockError) as exc:
            sell(staff, product_id, 11, method="credit")
        assert exc.value.extra["available"] == 10.0
        assert stock_of(product_id) == 10.0
        assert count("sales") == 0
        assert count("customer_credits") == 0


class TestBills:
    def test_bill_takes_every_line_out_of_stock(self, staff):
        oil = add_product(price=50, stock=10)
        coconut = add_product(name="Coconut Oil 500ml", price=30, stock=5, category="coconut")
        payload = BillCreate(
            customer_name="Ravi",
            payment_method="credit",
            discount_amount=10,
            items=[{"product_id": oil, "quantity": 2}, {"product_id": coconut, "quantity": 1}],
        )
        with pg_cursor(commit=True) as cur:
            bill = transactions.create_bill(cur, payload, staff)
        assert float(bill["subtotal"]) == 130.0
        assert float(bill["total_amount"]) == 120.0
        assert bill["payment_status"] == "pending"
        assert len(bill["items"]) == 2
        assert (stock_of(oil), stock_of(coconut)) == (8.0, 4.0)
        assert count("pending_payments") == 1

    def test_short_line_rolls_back_the_whole_bill(self, staff):
        oil = add_product(stock=10)
        coconut = add_product(name="Coconut Oil 500ml", stock=1, category="coconut")
        payload = BillCreate(
            customer_name="Ravi",
            payment_method="cash",
            items=[{"product_id": oil, "quantity": 3}, {"product_id": coconut, "quantity": 2}],
        )
        with pytest.raises(InsufficientStockError):
            with pg_cursor(commit=True) as cur:
                transactions.create_bill(cur, payload, staff)
        assert stock_of(oil) == 10.0
        assert count("bills") == 0
        assert count("bill_items") == 0

    def test_void_restores_stock_and_drops_pending_payment(self, staff, owner):
        oil = add_product(stock=10)
        payload = BillCreate(customer_name="Ravi", payment_method="credit", items=[{"product_id": oil, "quantity": 4}])
        with pg_cursor(commit=True) as cur:
            bill = transactions.create_bill(cur, payload, staff)
        with pg_cursor(commit=True) as cur:
            voided = transactions.void_bill(cur, bill["id"], "Wrong customer", owner)
        assert voided["voided_at"] is not None
        assert stock_of(oil) == 10.0
        assert count("pending_payments") == 0
        with pytest.raises(ConflictError):
            with pg_cursor(commit=True) as cur:
                transactions.void_bill(cur, bill["id"], "Again", owner)


    def test_back_to_back_bills_get_distinct_numbers(self, staff):
        oil = add_product(stock=100)
        numbers = set()
        with pg_cursor(commit=True) as cur:
            for _ in range(20):
                regular = BillCreate(customer_name="Ravi", payment_method="cash", items=[{"product_id": oil, "quantity": 1}])
                custom = CustomBillCreate(
                    customer_name="Ravi",
                    payment_method="cash",
                    items=[{"product_name": "Loose Oil", "quantity": 1, "unit_price": 20}],
                )
                numbers.add(transactions.create_bill(cur, regular, staff)["bill_number"])
                numbers.add(transactions.create_custom_bill(cur, custom, staff)["bill_number"])
        assert len(numbers) == 40
        assert count("bills") == 20
        assert count("custom_bills") == 20


class TestMarketCredits:
    def test_collections_reduce_outstanding(self, owner):
        payload = MarketCreditCreate(
            customer_name="Kumar Stores", customer_phone="9123456780", amount=1000, collection_amount=300
        )
        with pg_cursor(commit=True) as cur:
            created = credit.create_market_credit(cur, payload, owner)
        assert float(created["outstanding"]) == 700.0

        with pg_cursor(commit=True) as cur:
            credit.add_collection(cur, created["id"], 200, owner)
        with pg_cursor() as cur:
            current = credit.fetch_market_credit(cur, created["id"])
            collections = credit.fetch_collections(cur, [created["id"]])
        assert float(current["outstanding"]) == 500.0
        assert {c["notes"] for c in collections} == {"Initial collection", "Manual collection"}

    def test_over_collection_is_refused(self, owner):
        payload = MarketCreditCreate(customer_name="Kumar Stores", customer_phone="9123456780", amount=1000)
        with pg_cursor(commit=True) as cur:
            created = credit.create_market_credit(cur, payload, owner)
        with pytest.raises(ValidationFailed):
            with pg_cursor(commit=True) as cur:
                credit.add_collection(cur, created["id"], 1000.01, owner)
        assert count("market_credit_collections") == 0


class TestCreditRequests:
    def place_credit_order(self, customer, product_id):
        payload = OrderCreate(items=[{"product_id": product_id, "quantity": 2}], payment_method="credit")
        with pg_cursor(commit=True) as cur:
            return transactions.place_order(cur, payload, customer)

    def order_status(self, order_id):
        with pg_cursor() as cur:
            cur.execute("SELECT status FROM orders WHERE id = %s", (order_id,))
            return cur.fetchone()[0]

    def test_approval_confirms_order_and_opens_pending_payment(self, customer, owner):
        order, request = self.place_credit_order(customer, add_product())
        assert request["status"] == "pending"
        assert float(request["requested_amount"]) == 200.0

        with pg_cursor(commit=True) as cur:
            approved = credit.approve_credit_request(cur, request["id"], owner, "Regular customer")
        assert approved["status"] == "approved"
        assert approved["approved_by"] == owner.id
        assert self.order_status(order["id"]) == "confirmed"
        with pg_cursor() as cur:
            cur.execute("SELECT pending_amount FROM pending_payments WHERE order_id = %s", (order["id"],))
            assert float(cur.fetchone()[0]) == 200.0

    def test_rejection_cancels_order_and_is_final(self, customer, owner):
        order, request = self.place_credit_order(customer, add_product())
        with pg_cursor(commit=True) as cur:
            rejected = credit.reject_credit_request(cur, request["id"], "Limit reached", owner)
        assert rejected["rejection_reason"] == "Limit reached"
        assert self.order_status(order["id"]) == "cancelled"
        with pytest.raises(ConflictError):
            with pg_cursor(commit=True) as cur:
                credit.approve_credit_request(cur, request["id"], owner)

    def test_delivery_takes_stock(self, customer, staff):
        product_id = add_product(stock=5)
        order, _ = self.place_credit_order(customer, product_id)
        with pg_cursor(commit=True) as cur:
            delivered = transactions.deliver_order(cur, order["id"], staff)
        assert delivered["status"] == "delivered"
        assert stock_of(product_id) == 3.0


def test_pending_payment_partial_then_full(staff):
    product_id = add_product()
    sale = sell(staff, product_id, 5, method="credit")
    with pg_cursor() as cur:
        cur.execute("SELECT id FROM pending_payments WHERE sale_id = %s", (sale["id"],))
        payment_id = cur.fetchone()[0]

    with pg_cursor(commit=True) as cur:
        first = credit.record_pending_payment(cur, payment_id, 200, staff)
    assert first["status"] == "partial"
    assert float(first["pending_amount"]) == 300.0

    with pg_cursor(commit=True) as cur:
        second = credit.record_pending_payment(cur, payment_id, 300, staff)
    assert second["status"] == "paid"
    assert second["paid_at"] is not None

    with pytest.raises(ConflictError):
        with pg_cursor(commit=True) as cur:
            credit.record_pending_payment(cur, payment_id, 1, staff)


def test_decimal_stock_adjustments(staff):
    product_id = add_product(stock=10)
    decrease = StockAdjustmentCreate(
        product_id=product_id, adjustment_type="decrease", quantity=0.5, reason="Spilled", reason_code="damaged"
    )
    recount = StockAdjustmentCreate(
        product_id=product_id, adjustment_type="correction", quantity=12.5, reason="Recount", reason_code="recount"
    )
    with pg_cursor(commit=True) as cur:
        first = transactions.adjust_stock(cur, decrease, staff)
    assert float(first["previous_stock"]) == 10.0
    assert float(first["new_stock"]) == 9.5
    with pg_cursor(commit=True) as cur:
        second = transactions.adjust_stock(cur, recount, staff)
    assert float(second["quantity"]) == 12.5
    assert stock_of(product_id) == 12.5
