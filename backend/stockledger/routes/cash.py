# Overview: Flask API routes for the cash book (non-sale income and expenses).

# backend/stockledger/routes/cash.py
from flask import Blueprint, current_app, request

from ..services import cash_service
from ..services.analytics_service import AnalyticsWindow
from ..validation import ValidationError

cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


@cash_bp.get("/movements")
def list_cash_movements_route():
    limit = request.args.get("limit", default=current_app.config.get("RECENT_ROWS_LIMIT", 100), type=int)
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")
    movements = cash_service.list_cash_movements(limit=limit)
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@cash_bp.post("/movements")
def add_cash_movement_route():
    """Body: {movement_type: income|expense (or ingreso|egreso), amount_cents, category?, description?, movement_date?}"""
    payload = request.get_json(silent=True)
    movement = cash_service.add_cash_movement(payload)
    return movement.to_dict(), 201


@cash_bp.get("/summary")
def cash_summary_route():
    window = AnalyticsWindow.from_args(request.args)
    summary = cash_service.cash_summary(window)
    summary["window"] = window.to_dict()
    return summary
