"""
Analytics engine tests: windowed aggregates, gap-filled trend and the
agreement between per-product and total revenue.
"""

from datetime import date, timedelta

import pytest

from stockledger.errors import ValidationError
from stockledger.services import analytics_service, sales_service
from stockledger.services.analytics_service import AnalyticsWindow

from conftest import make_product, stock_in


@pytest.fixture
def seeded_sales(db_session, product_p, product_q):
    """
    Sales spread over May 2024 across two categories:

    P (Proteins):    05-01 2 x 20.00, 05-03 1 x 20.00 @10%, 05-07 4 x 20.00
    Q (Supplements): 05-01 3 x 15.00, 05-05 1 x 15.00
    R (Proteins):    05-03 2 x 20.00
    """
    product_r = make_product(db_session, sku="VS-ISO-001", name="Isolate 1lb", category="Proteins")
    for p in (product_p, product_q, product_r):
        stock_in(p.id, 50)

    def sell(product, qty, unit, day, discount=0):
        return sales_service.record_sale(
            product_id=product.id,
            quantity=qty,
            unit_price_cents=unit,
            discount_pct=discount,
            sale_date=date(2024, 5, day),
        )

    sell(product_p, 2, 2000, 1)
    sell(product_p, 1, 2000, 3, discount=10)
    sell(product_p, 4, 2000, 7)
    sell(product_q, 3, 1500, 1)
    sell(product_q, 1, 1500, 5)
    sell(product_r, 2, 2000, 3)
    return {"p": product_p, "q": product_q, "r": product_r}


WINDOWS = [
    AnalyticsWindow(),
    AnalyticsWindow(start_date=date(2024, 5, 2)),
    AnalyticsWindow(end_date=date(2024, 5, 3)),
    AnalyticsWindow(start_date=date(2024, 5, 3), end_date=date(2024, 5, 5)),
    AnalyticsWindow(category="Proteins"),
    AnalyticsWindow(start_date=date(2024, 5, 1), end_date=date(2024, 5, 1), category="Supplements"),
    AnalyticsWindow(start_date=date(2023, 1, 1), end_date=date(2023, 1, 31)),
]


class TestCrossConsistency:

    @pytest.mark.parametrize("window", WINDOWS)
    def test_per_product_revenue_sums_to_total(self, seeded_sales, window):
        rows = analytics_service.sales_by_product(window, limit=None)
        totals = analytics_service.sales_totals(window)
        assert sum(r["total_revenue"] for r in rows) == totals["total_revenue"]
        assert sum(r["total_qty"] for r in rows) == totals["total_units"]

    def test_totals_match_hand_computed_values(self, seeded_sales):
        totals = analytics_service.sales_totals(AnalyticsWindow(category="Proteins"))
        # P: 4000 + 1800 + 8000, R: 4000
        assert totals == {"total_units": 9, "total_revenue": 17800}

    def test_empty_window_is_zero_not_error(self, db_session):
        assert analytics_service.sales_totals(AnalyticsWindow()) == {
            "total_units": 0,
            "total_revenue": 0,
        }
        assert analytics_service.sales_by_product(AnalyticsWindow()) == []


class TestSalesByProduct:

    def test_sorted_by_revenue_desc(self, seeded_sales):
        rows = analytics_service.sales_by_product(AnalyticsWindow(), limit=None)
        assert [r["product_id"] for r in rows] == [
            seeded_sales["p"].id,
            seeded_sales["q"].id,
            seeded_sales["r"].id,
        ]
        assert rows[0] == {
            "product_id": seeded_sales["p"].id,
            "name": "Whey Protein 2lb",
            "total_qty": 7,
            "total_revenue": 13800,
        }

    def test_sorted_by_qty(self, seeded_sales):
        rows = analytics_service.sales_by_product(AnalyticsWindow(), order_by="qty", limit=2)
        assert [r["total_qty"] for r in rows] == [7, 4]

    def test_window_restricts_ranking(self, seeded_sales):
        window = AnalyticsWindow(start_date=date(2024, 5, 3), end_date=date(2024, 5, 3))
        rows = analytics_service.sales_by_product(window, order_by="qty", limit=None)
        # 05-03: P sold 1, R sold 2
        assert [r["product_id"] for r in rows] == [seeded_sales["r"].id, seeded_sales["p"].id]

        tie_window = AnalyticsWindow(start_date=date(2024, 5, 1), end_date=date(2024, 5, 1))
        rows = analytics_service.sales_by_product(tie_window, order_by="revenue", limit=None)
        # 05-01: P 4000, Q 4500
        assert [r["product_id"] for r in rows] == [seeded_sales["q"].id, seeded_sales["p"].id]

    def test_equal_revenue_orders_by_product_id(self, db_session, product_p, product_q):
        for p in (product_p, product_q):
            stock_in(p.id, 5)
        for p in (product_q, product_p):
            sales_service.record_sale(product_id=p.id, quantity=1, unit_price_cents=1000)
        rows = analytics_service.sales_by_product(AnalyticsWindow(), limit=None)
        assert [r["product_id"] for r in rows] == sorted([product_p.id, product_q.id])

    def test_default_limit_is_five(self, db_session):
        for i in range(7):
            p = make_product(db_session, sku=f"SKU-{i}", name=f"Product {i}")
            stock_in(p.id, 1)
            sales_service.record_sale(product_id=p.id, quantity=1, unit_price_cents=100 * (i + 1))
        assert len(analytics_service.sales_by_product(AnalyticsWindow())) == 5

    def test_invalid_order_by(self, db_session):
        with pytest.raises(ValidationError):
            analytics_service.sales_by_product(AnalyticsWindow(), order_by="margin")


class TestSalesTrend:

    def test_seven_gap_filled_days(self, seeded_sales):
        trend = analytics_service.sales_trend(7, today=date(2024, 5, 7))
        assert len(trend) == 7

        days = [date.fromisoformat(row["date"]) for row in trend]
        assert days[0] == date(2024, 5, 1)
        assert days[-1] == date(2024, 5, 7)
        for earlier, later in zip(days, days[1:]):
            assert later - earlier == timedelta(days=1)

        by_day = {row["date"]: row for row in trend}
        assert by_day["2024-05-02"] == {"date": "2024-05-02", "sales_count": 0, "total_revenue": 0}
        assert by_day["2024-05-01"]["sales_count"] == 2
        assert by_day["2024-05-01"]["total_revenue"] == 8500
        assert by_day["2024-05-03"]["total_revenue"] == 5800

    def test_sales_outside_range_ignored(self, seeded_sales):
        trend = analytics_service.sales_trend(3, today=date(2024, 5, 5))
        assert [row["date"] for row in trend] == ["2024-05-03", "2024-05-04", "2024-05-05"]
        assert sum(row["sales_count"] for row in trend) == 3

    def test_empty_history_still_returns_every_day(self, db_session):
        trend = analytics_service.sales_trend(7)
        assert len(trend) == 7
        assert all(row["sales_count"] == 0 for row in trend)

    @pytest.mark.parametrize("days", [0, -1, "x"])
    def test_invalid_days(self, db_session, days):
        with pytest.raises(ValidationError):
            analytics_service.sales_trend(days)


class TestWindow:

    def test_inverted_window_rejected(self):
        with pytest.raises(ValidationError):
            AnalyticsWindow(start_date=date(2024, 5, 2), end_date=date(2024, 5, 1))

    def test_from_args(self):
        window = AnalyticsWindow.from_args(
            {"start_date": "2024-05-01", "end_date": "", "category": " Proteins "}
        )
        assert window == AnalyticsWindow(start_date=date(2024, 5, 1), category="Proteins")

    def test_from_args_bad_date(self):
        with pytest.raises(ValidationError):
            AnalyticsWindow.from_args({"start_date": "05/01/2024"})


class TestDerivedViews:

    def test_top_products_carries_catalog_fields(self, seeded_sales):
        rows = analytics_service.top_products(AnalyticsWindow(), limit=1)
        assert rows == [{
            "product_id": seeded_sales["p"].id,
            "sku": "VS-WHEY-001",
            "name": "Whey Protein 2lb",
            "category": "Proteins",
            "total_qty": 7,
            "total_revenue": 13800,
        }]

    def test_profitability(self, seeded_sales):
        rows = {r["product_id"]: r for r in analytics_service.profitability()}
        q = rows[seeded_sales["q"].id]
        # 4 sold at 15.00, unit cost 7.00
        assert q["total_qty_sold"] == 4
        assert q["total_revenue"] == 6000
        assert q["estimated_total_cost_cents"] == 2800
        assert q["gross_profit_cents"] == 3200
        assert q["margin_percent"] == 53

    def test_profitability_lists_unsold_products(self, db_session, product_p):
        rows = analytics_service.profitability()
        assert rows[0]["product_id"] == product_p.id
        assert rows[0]["total_qty_sold"] == 0
        assert rows[0]["margin_percent"] is None

    def test_low_stock_and_dashboard(self, db_session, product_p, product_q):
        stock_in(product_p.id, 5)   # == min_stock 5 -> low
        stock_in(product_q.id, 10)  # > min_stock 2
        sales_service.record_sale(product_id=product_q.id, quantity=1, unit_price_cents=1500)

        low = analytics_service.low_stock_products()
        assert [row["product_id"] for row in low] == [product_p.id]

        summary = analytics_service.dashboard_summary()
        assert summary == {
            "total_products": 2,
            "active_products": 2,
            "low_stock_products": 1,
            "total_sales": 1,
            "total_units": 1,
            "total_revenue": 1500,
        }
