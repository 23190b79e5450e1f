# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/stockledger/routes/sales.py
from flask import Blueprint, current_app, request

from ..services import sales_service
from ..services.analytics_service import AnalyticsWindow
from ..services.balance_service import balance_of
from ..validation import ValidationError

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
def list_sales_route():
    """
    Recent sales, newest first.

    Query params:
    - start_date, end_date: YYYY-MM-DD (optional, inclusive)
    - category: str (optional)
    - limit: int (default RECENT_ROWS_LIMIT)
    """
    window = AnalyticsWindow.from_args(request.args)
    limit = request.args.get("limit", default=current_app.config.get("RECENT_ROWS_LIMIT", 100), type=int)
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")
    sales = sales_service.list_sales(limit=limit, window=window)
    return {"items": [s.to_dict() for s in sales], "count": len(sales)}


@sales_bp.post("")
def add_sale_route():
    """
    Record a sale and its stock egress atomically.

    Body: {product_id, quantity, unit_price_cents (or sale_price_cents),
           discount_pct (or discount), channel?, sale_date?, created_by?}
    """
    payload = request.get_json(silent=True)
    sale = sales_service.add_sale(payload)
    data = sale.to_dict()
    data["current_stock"] = balance_of(sale.product_id).current_stock
    return data, 201
