# Overview: Analytics engine; windowed sales aggregates shared by the dashboard and report exports.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select

from ..errors import ValidationError
from ..extensions import db
from ..models import Product, SaleTransaction
from ..validation import coerce_int
from stockledger.time_utils import days_ending, parse_iso_date, to_iso_date, utctoday
from .balance_service import balances_for_all, is_low_stock

ORDER_KEYS = ("revenue", "qty")
MAX_TREND_DAYS = 366


@dataclass(frozen=True)
class AnalyticsWindow:
    """Inclusive [start_date, end_date] over sale_date; None means unbounded."""

    start_date: date | None = None
    end_date: date | None = None
    category: str | None = None

    def __post_init__(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError(
                "start_date must be on or before end_date",
                details={"start_date": to_iso_date(self.start_date), "end_date": to_iso_date(self.end_date)},
            )

    @classmethod
    def from_args(cls, args) -> "AnalyticsWindow":
        """Build a window from query-string/JSON style arguments."""
        args = args or {}
        try:
            start = parse_iso_date(args.get("start_date"))
            end = parse_iso_date(args.get("end_date"))
        except (TypeError, ValueError):
            raise ValidationError("start_date/end_date must be ISO-8601 dates (YYYY-MM-DD)")
        category = args.get("category")
        category = str(category).strip() if category is not None else None
        return cls(start_date=start, end_date=end, category=category or None)

    def to_dict(self) -> dict:
        return {
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "category": self.category,
        }


def apply_window(query, window: AnalyticsWindow | None):
    """Restrict a SaleTransaction query to the window (dates inclusive, category via the product)."""
    if window is None:
        return query
    if window.start_date:
        query = query.filter(SaleTransaction.sale_date >= window.start_date)
    if window.end_date:
        query = query.filter(SaleTransaction.sale_date <= window.end_date)
    if window.category:
        in_category = select(Product.id).where(Product.category == window.category)
        query = query.filter(SaleTransaction.product_id.in_(in_category))
    return query


def _percent(numerator: int, denominator: int) -> int | None:
    if not denominator:
        return None
    value = Decimal(numerator) * 100 / Decimal(denominator)
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _product_sales_rows(window, order_by: str, limit: int | None):
    if order_by not in ORDER_KEYS:
        raise ValidationError(f"order_by must be one of: {', '.join(ORDER_KEYS)}")
    if limit is not None:
        limit = coerce_int("limit", limit)
        if limit < 0:
            raise ValidationError("limit must be >= 0")

    total_qty = func.coalesce(func.sum(SaleTransaction.quantity), 0).label("total_qty")
    total_revenue = func.coalesce(func.sum(SaleTransaction.sale_price_cents), 0).label("total_revenue")
    sort_key = total_revenue if order_by == "revenue" else total_qty

    query = db.session.query(
        SaleTransaction.product_id.label("product_id"),
        Product.sku,
        Product.name,
        Product.category,
        total_qty,
        total_revenue,
    ).join(Product, Product.id == SaleTransaction.product_id)
    query = apply_window(query, window)
    query = query.group_by(
        SaleTransaction.product_id, Product.sku, Product.name, Product.category
    ).order_by(sort_key.desc(), SaleTransaction.product_id.asc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def sales_by_product(
    window: AnalyticsWindow | None = None,
    order_by: str = "revenue",
    limit: int | None = 5,
) -> list[dict]:
    """
    Per-product quantity and revenue (total_revenue, in cents) in the window,
    sorted descending by `order_by` with ties broken by product_id ascending.
    limit=None returns every product that sold.
    """
    return [
        {
            "product_id": row.product_id,
            "name": row.name or "",
            "total_qty": int(row.total_qty or 0),
            "total_revenue": int(row.total_revenue or 0),
        }
        for row in _product_sales_rows(window, order_by, limit)
    ]


def top_products(window: AnalyticsWindow | None = None, limit: int | None = 50) -> list[dict]:
    return [
        {
            "product_id": row.product_id,
            "sku": row.sku or "",
            "name": row.name or "",
            "category": row.category or "",
            "total_qty": int(row.total_qty or 0),
            "total_revenue": int(row.total_revenue or 0),
        }
        for row in _product_sales_rows(window, "revenue", limit)
    ]


def sales_trend(days=7, today: date | None = None) -> list[dict]:
    """
    Daily sales for the `days` calendar days ending `today` (UTC), oldest first.

    Every day in the range appears, with zeros when nothing sold.
    """
    days = coerce_int("days", days)
    if days < 1:
        raise ValidationError("days must be >= 1")
    if days > MAX_TREND_DAYS:
        raise ValidationError(f"days cannot exceed {MAX_TREND_DAYS}")

    end = today or utctoday()
    calendar = list(days_ending(end, days))

    rows = (
        db.session.query(
            SaleTransaction.sale_date,
            func.count(SaleTransaction.id),
            func.coalesce(func.sum(SaleTransaction.sale_price_cents), 0),
        )
        .filter(SaleTransaction.sale_date >= calendar[0], SaleTransaction.sale_date <= end)
        .group_by(SaleTransaction.sale_date)
        .all()
    )
    by_day = {sale_day: (int(count or 0), int(revenue or 0)) for sale_day, count, revenue in rows}

    trend = []
    for day in calendar:
        count, revenue = by_day.get(day, (0, 0))
        trend.append({"date": day.isoformat(), "sales_count": count, "total_revenue": revenue})
    return trend


def sales_totals(window: AnalyticsWindow | None = None) -> dict:
    query = db.session.query(
        func.coalesce(func.sum(SaleTransaction.quantity), 0),
        func.coalesce(func.sum(SaleTransaction.sale_price_cents), 0),
    )
    total_units, total_revenue = apply_window(query, window).one()
    return {"total_units": int(total_units or 0), "total_revenue": int(total_revenue or 0)}


def profitability(window: AnalyticsWindow | None = None) -> list[dict]:
    """
    Estimated gross profit per catalog product.

    Cost is the product's current unit cost times units sold in the window;
    products that did not sell are listed with zeros.
    """
    sold = apply_window(
        db.session.query(
            SaleTransaction.product_id.label("product_id"),
            func.sum(SaleTransaction.quantity).label("qty"),
            func.sum(SaleTransaction.sale_price_cents).label("revenue"),
        ),
        window,
    ).group_by(SaleTransaction.product_id).subquery()

    qty = func.coalesce(sold.c.qty, 0)
    revenue = func.coalesce(sold.c.revenue, 0)
    query = (
        db.session.query(Product, qty.label("qty"), revenue.label("revenue"))
        .outerjoin(sold, sold.c.product_id == Product.id)
    )
    if window is not None and window.category:
        query = query.filter(Product.category == window.category)
    rows = query.order_by(revenue.desc(), Product.id.asc()).all()

    report = []
    for product, total_qty, total_revenue in rows:
        unit_cost = product.cost_price_cents or 0
        total_qty = int(total_qty or 0)
        total_revenue = int(total_revenue or 0)
        estimated_cost = unit_cost * total_qty
        gross_profit = total_revenue - estimated_cost
        report.append({
            "product_id": product.id,
            "sku": product.sku or "",
            "name": product.name,
            "unit_cost_cents": unit_cost,
            "total_qty_sold": total_qty,
            "total_revenue": total_revenue,
            "estimated_total_cost_cents": estimated_cost,
            "gross_profit_cents": gross_profit,
            "margin_percent": _percent(gross_profit, total_revenue) if total_revenue > 0 else None,
        })
    return report


def low_stock_products(balances: dict[int, int] | None = None) -> list[dict]:
    """Products at or below their minimum stock (min_stock unset counts as 0)."""
    balances = balances if balances is not None else balances_for_all()
    products = db.session.query(Product).order_by(Product.id.asc()).all()
    rows = []
    for product in products:
        current = balances.get(product.id, 0)
        if is_low_stock(current, product.min_stock):
            rows.append({
                "product_id": product.id,
                "sku": product.sku,
                "name": product.name,
                "category": product.category,
                "current_stock": current,
                "min_stock": product.min_stock or 0,
                "max_stock": product.max_stock,
            })
    return rows


def dashboard_summary(window: AnalyticsWindow | None = None) -> dict:
    total_products = db.session.query(func.count(Product.id)).scalar() or 0
    active_products = (
        db.session.query(func.count(Product.id)).filter(Product.status == "Active").scalar() or 0
    )
    sales_count = apply_window(db.session.query(func.count(SaleTransaction.id)), window).scalar() or 0
    totals = sales_totals(window)
    return {
        "total_products": int(total_products),
        "active_products": int(active_products),
        "low_stock_products": len(low_stock_products()),
        "total_sales": int(sales_count),
        "total_units": totals["total_units"],
        "total_revenue": totals["total_revenue"],
    }
