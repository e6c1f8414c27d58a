from datetime import date, datetime, timedelta, timezone

import pytest

from oilmart.core.config import settings
from oilmart.models.models import DateRange, PaymentStatus, SalePaymentMethod
from oilmart.services import reporting


WEDNESDAY = datetime(2024, 5, 15, 12, 0)


class TestWindows:
    def test_week_runs_sunday_to_saturday(self):
        start, end = reporting.date_window(DateRange.WEEK, WEDNESDAY)
        assert start == datetime(2024, 5, 12)
        assert end.date() == datetime(2024, 5, 18).date()
        assert (end.hour, end.minute, end.second) == (23, 59, 59)

    def test_sunday_starts_its_own_week(self):
        assert reporting.start_of_week(datetime(2024, 5, 12, 9)) == datetime(2024, 5, 12)

    def test_today_window(self):
        start, end = reporting.date_window(DateRange.TODAY, WEDNESDAY)
        assert start == datetime(2024, 5, 15)
        assert end.date() == WEDNESDAY.date()

    def test_today_is_cut_at_shop_midnight(self, monkeypatch):
        monkeypatch.setattr(settings, "shop_timezone", "Asia/Kolkata")
        # 01:30 on the 15th in the shop is still the 14th in UTC
        now = datetime(2024, 5, 14, 20, 0, tzinfo=timezone.utc).astimezone(reporting.shop_timezone())
        start, end = reporting.date_window(DateRange.TODAY, now)
        assert start == datetime(2024, 5, 14, 18, 30, tzinfo=timezone.utc)
        assert start <= datetime(2024, 5, 14, 19, 0, tzinfo=timezone.utc) <= end
        assert end.date() == date(2024, 5, 15)

    def test_shop_clock_and_day_start(self, monkeypatch):
        monkeypatch.setattr(settings, "shop_timezone", "Asia/Kolkata")
        assert reporting.shop_now().utcoffset() == timedelta(hours=5, minutes=30)
        assert reporting.shop_day_start(date(2024, 5, 15)) == datetime(2024, 5, 14, 18, 30, tzinfo=timezone.utc)

    def test_month_window_in_leap_year(self):
        start, end = reporting.date_window(DateRange.MONTH, datetime(2024, 2, 10))
        assert start == datetime(2024, 2, 1)
        assert end.date() == datetime(2024, 2, 29).date()

    def test_previous_month_clamps_day(self):
        start, end = reporting.previous_window(DateRange.MONTH, datetime(2024, 3, 31))
        assert start == datetime(2024, 2, 1)
        assert end.date() == datetime(2024, 2, 29).date()

    def test_shift_months_clamps_to_month_end(self):
        assert reporting.shift_months(datetime(2024, 2, 29), -12) == datetime(2023, 2, 28)
        assert reporting.shift_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert reporting.shift_months(datetime(2024, 11, 15), 3) == datetime(2025, 2, 15)


class TestRevenueSeries:
    def test_month_has_one_bucket_per_day(self):
        start, end = reporting.date_window(DateRange.MONTH, datetime(2024, 2, 10))
        sales = [
            {"created_at": datetime(2024, 2, 3, 10), "total_amount": 100},
            {"created_at": datetime(2024, 2, 3, 18), "total_amount": 50},
        ]
        series = reporting.revenue_series(sales, start, end, DateRange.MONTH)
        assert len(series) == 29
        assert series[0]["date"] == "Feb 01"
        assert series[2] == {"date": "Feb 03", "sales": 150.0, "transactions": 2}
        assert series[-1] == {"date": "Feb 29", "sales": 0.0, "transactions": 0}

    def test_year_has_one_bucket_per_month(self):
        start, end = reporting.date_window(DateRange.YEAR, WEDNESDAY)
        sales = [{"created_at": datetime(2024, 3, 9), "total_amount": 75.5}]
        series = reporting.revenue_series(sales, start, end, DateRange.YEAR)
        assert [b["date"] for b in series][:3] == ["Jan", "Feb", "Mar"]
        assert len(series) == 12
        assert series[2]["sales"] == 75.5


def test_summarize_sales():
    sales = [
        {"total_amount": 300, "paid_amount": 300, "credit_amount": 0},
        {"total_amount": 500, "paid_amount": 0, "credit_amount": 500},
    ]
    assert reporting.summarize_sales(sales) == {
        "total_revenue": 800.0,
        "transaction_count": 2,
        "average_order_value": 400.0,
        "total_paid": 300.0,
        "total_credit": 500.0,
    }


def test_summarize_no_sales():
    summary = reporting.summarize_sales([])
    assert summary["average_order_value"] == 0.0
    assert summary["total_revenue"] == 0.0


def test_payment_method_breakdown():
    sales = [
        {"payment_method": SalePaymentMethod.CASH, "total_amount": 100},
        {"payment_method": "cash", "total_amount": 20},
        {"payment_method": SalePaymentMethod.CREDIT, "total_amount": 500},
    ]
    breakdown = {b["name"]: b["value"] for b in reporting.payment_method_breakdown(sales)}
    assert breakdown == {"CASH": 120.0, "CREDIT": 500.0}


def test_category_prefers_stored_category_then_product_name():
    sales = [
        {"product_category": "sunflower", "product_name": "House blend", "total_amount": 300},
        {"product_name": "Groundnut Oil 1L", "total_amount": 100},
        {"product_name": "Rice Bran Oil", "total_amount": 100},
    ]
    rows = {r["category"]: r for r in reporting.category_breakdown(sales)}
    assert rows["Sunflower"]["sales"] == 300.0
    assert rows["Sunflower"]["percentage"] == 60.0
    assert rows["Groundnut"]["percentage"] == 20.0
    assert rows["Other"]["sales"] == 100.0


def test_top_products_ranked_by_quantity():
    sales = [
        {"product_id": 1, "product_name": "Sunflower 1L", "quantity": 2, "total_amount": 300},
        {"product_id": 2, "product_name": "Coconut 500ml", "quantity": 5, "total_amount": 400},
        {"product_id": 1, "product_name": "Sunflower 1L", "quantity": 1, "total_amount": 150},
    ]
    top = reporting.top_products(sales, limit=1)
    assert top == [{"product_id": 2, "product_name": "Coconut 500ml", "quantity": 5.0, "revenue": 400.0}]


def test_sales_analytics_compares_with_previous_period():
    sales = [{"created_at": datetime(2024, 5, 14), "total_amount": 150, "payment_method": "cash", "product_name": "Mustard Oil"}]
    result = reporting.sales_analytics(sales, DateRange.WEEK, WEDNESDAY, previous_total=100)
    assert result["range"] == "week"
    assert len(result["series"]) == 7
    assert result["previous_revenue"] == 100.0
    assert result["revenue_change"] == 50.0


class TestKpis:
    SALES = [
        (datetime(2024, 5, 10, 11), 100.0),
        (datetime(2024, 5, 14, 16), 25.0),
        (datetime(2024, 4, 20, 9), 50.0),
        (datetime(2023, 3, 1, 9), 40.0),
        (datetime(2023, 5, 20, 9), 1000.0),
    ]

    @classmethod
    def total_between(cls, start, end):
        return sum(amount for created, amount in cls.SALES if start <= created <= end)

    def test_monthly_figures(self):
        monthly = reporting.compute_kpis(self.total_between, WEDNESDAY)["monthly_sales"]
        assert monthly["current"] == 125.0
        assert monthly["previous"] == 50.0
        assert monthly["change"] == 150.0

    def test_year_to_date_stops_at_same_day_last_year(self):
        monthly = reporting.compute_kpis(self.total_between, WEDNESDAY)["monthly_sales"]
        assert monthly["ytd"] == 175.0
        assert monthly["last_year"] == 40.0
        assert monthly["ytd_change"] == 337.5

    def test_trend_covers_twelve_months(self):
        trend = reporting.compute_kpis(self.total_between, WEDNESDAY)["monthly_sales"]["trend"]
        assert len(trend) == 12
        assert trend[0] == {"month": "Jun 2023", "sales": 0.0}
        assert trend[-1] == {"month": "May 2024", "sales": 125.0}

    def test_weekly_figures(self):
        weekly = reporting.compute_kpis(self.total_between, WEDNESDAY)["weekly_sales"]
        assert weekly["current"] == 25.0
        assert weekly["previous"] == 100.0
        assert weekly["change"] == -75.0
        assert [d["day"] for d in weekly["chart"]] == ["Thu", "Fri", "Sat", "Sun", "Mon", "Tue", "Wed"]
        assert weekly["chart"][1]["sales"] == 100.0
        assert weekly["chart"][5]["sales"] == 25.0

    def test_no_sales_gives_no_change(self):
        kpis = reporting.compute_kpis(lambda start, end: 0.0, WEDNESDAY)
        assert kpis["monthly_sales"]["change"] == 0.0


class TestMarketCreditBalances:
    CREDITS = [
        {"id": 1, "customer_phone": "9876543210", "amount": 1000, "paid": False},
        {"id": 2, "customer_phone": "9876543210", "amount": 500, "paid": True},
        {"id": 3, "customer_phone": "9123456780", "amount": 100, "paid": False},
    ]
    COLLECTIONS = [
        {"id": 10, "credit_id": 1, "amount": 300, "collected_at": datetime(2024, 5, 1)},
        {"id": 11, "credit_id": 1, "amount": 200, "collected_at": datetime(2024, 5, 3)},
        {"id": 12, "credit_id": 2, "amount": 100, "collected_at": datetime(2024, 5, 2)},
    ]

    def grouped(self):
        return reporting.group_collections(self.COLLECTIONS)

    def test_total_outstanding_skips_paid_entries(self):
        assert reporting.total_outstanding(self.CREDITS, self.grouped()) == 600.0

    def test_customer_balance(self):
        credits = [c for c in self.CREDITS if c["customer_phone"] == "9876543210"]
        balance = reporting.customer_balance(credits, self.grouped(), "9876543210")
        assert balance["credit_amount"] == 1500.0
        assert balance["total_collected"] == 600.0
        assert balance["outstanding"] == 900.0
        assert [c["id"] for c in balance["collections"]] == [11, 12, 10]

    def test_summary_flags_negative_outstanding(self):
        collections = self.COLLECTIONS + [
            {"id": 13, "credit_id": 3, "amount": 150, "collected_at": datetime(2024, 5, 4)},
        ]
        summary = reporting.market_credit_summary(self.CREDITS, reporting.group_collections(collections))
        assert summary["unique_customers"] == 2
        assert summary["total_credits"] == 3
        assert summary["negative_balances"] == [3]


def test_inventory_summary():
    products = [
        {"stock": 0, "lowstock_alert": 5, "base_price": 100},
        {"stock": 10, "lowstock_alert": 5, "base_price": 150.5},
        {"stock": 3, "lowstock_alert": 5, "base_price": 10},
    ]
    assert reporting.inventory_summary(products) == {
        "total_products": 3,
        "low_stock_products": 2,
        "out_of_stock_products": 1,
        "total_inventory_value": 1535.0,
    }


class TestPendingPaymentStatus:
    TODAY = datetime(2024, 5, 15)

    @pytest.mark.parametrize(
        "status, due, expected",
        [
            (PaymentStatus.PENDING, datetime(2024, 5, 10), "overdue"),
            ("pending", datetime(2024, 5, 20), "due_soon"),
            ("pending", datetime(2024, 6, 30), "pending"),
            (PaymentStatus.PARTIAL, datetime(2024, 5, 1), "partial"),
            ("paid", datetime(2024, 5, 1), "paid"),
        ],
    )
    def test_display_status(self, status, due, expected):
        payment = {"status": status, "due_date": due}
        assert reporting.pending_payment_display_status(payment, self.TODAY) == expected

    def test_summary_excludes_paid(self):
        payments = [
            {"status": "pending", "due_date": datetime(2024, 5, 10), "pending_amount": 100},
            {"status": "pending", "due_date": datetime(2024, 5, 20), "pending_amount": 200},
            {"status": "partial", "due_date": datetime(2024, 6, 20), "pending_amount": 50.5},
            {"status": "paid", "due_date": datetime(2024, 5, 1), "pending_amount": 0},
        ]
        assert reporting.pending_payment_summary(payments, self.TODAY) == {
            "total_pending_amount": 350.5,
            "pending_count": 2,
            "partial_count": 1,
            "overdue_count": 1,
            "due_soon_count": 1,
        }
