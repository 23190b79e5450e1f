# Overview: Flask API routes for dashboard analytics; thin wrappers over analytics_service.

# backend/stockledger/routes/analytics.py
"""
Analytics routes.

All date params are calendar dates (YYYY-MM-DD), inclusive; absent means
unbounded. Money is reported in cents.
"""
from flask import Blueprint, request

from ..services import analytics_service
from ..services.analytics_service import AnalyticsWindow

analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("/sales-by-product")
def sales_by_product_route():
    """
    Query params: start_date, end_date, category, order_by (revenue|qty),
    limit (default 5; "all" or 0 for every product).
    """
    window = AnalyticsWindow.from_args(request.args)
    raw_limit = request.args.get("limit")
    if raw_limit in (None, ""):
        limit = 5
    elif raw_limit.strip().lower() == "all" or raw_limit.strip() == "0":
        limit = None
    else:
        limit = raw_limit
    rows = analytics_service.sales_by_product(
        window,
        order_by=request.args.get("order_by", "revenue"),
        limit=limit,
    )
    return {"window": window.to_dict(), "items": rows}


@analytics_bp.get("/sales-trend")
def sales_trend_route():
    rows = analytics_service.sales_trend(days=request.args.get("days", "7"))
    return {"days": len(rows), "items": rows}


@analytics_bp.get("/sales-totals")
def sales_totals_route():
    window = AnalyticsWindow.from_args(request.args)
    totals = analytics_service.sales_totals(window)
    totals["window"] = window.to_dict()
    return totals


@analytics_bp.get("/dashboard")
def dashboard_route():
    window = AnalyticsWindow.from_args(request.args)
    return analytics_service.dashboard_summary(window)


@analytics_bp.get("/low-stock")
def low_stock_route():
    rows = analytics_service.low_stock_products()
    return {"items": rows, "count": len(rows)}
