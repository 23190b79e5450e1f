# Overview: Cash book; non-sale income and expenses that feed the financial report.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..errors import ValidationError
from ..extensions import db
from ..models import CashMovement, CASH_MOVEMENT_TYPES
from ..validation import coerce_date, coerce_int, optional_text
from stockledger.time_utils import utctoday
from .analytics_service import AnalyticsWindow, sales_totals
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)

_TYPE_ALIASES = {
    "income": "income",
    "ingreso": "income",
    "expense": "expense",
    "egreso": "expense",
}


def normalize_cash_type(value) -> str:
    key = str(value or "").strip().lower()
    if key not in _TYPE_ALIASES:
        raise ValidationError(f"movement_type must be one of: {', '.join(CASH_MOVEMENT_TYPES)}")
    return _TYPE_ALIASES[key]


def add_cash_movement(payload: dict) -> CashMovement:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    movement_type = normalize_cash_type(payload.get("movement_type"))
    if payload.get("amount_cents") is None:
        raise ValidationError("amount_cents is required")
    amount = coerce_int("amount_cents", payload.get("amount_cents"))
    if amount <= 0:
        raise ValidationError("amount_cents must be > 0")

    raw_date = payload.get("movement_date")
    movement_date = coerce_date("movement_date", raw_date) if raw_date not in (None, "") else utctoday()

    created_by = payload.get("created_by")
    if created_by is not None:
        created_by = coerce_int("created_by", created_by)

    def _op():
        begin_write()
        movement = CashMovement(
            movement_type=movement_type,
            amount_cents=amount,
            category=optional_text(payload.get("category"), "category", max_length=120),
            description=optional_text(payload.get("description"), "description"),
            movement_date=movement_date,
            created_by=created_by,
        )
        db.session.add(movement)
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info("cash %s of %d cents recorded (id %d)", movement_type, amount, movement.id)
    return movement


def list_cash_movements(limit: int | None = 100) -> list[CashMovement]:
    query = db.session.query(CashMovement).order_by(
        CashMovement.movement_date.desc(), CashMovement.id.desc()
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def _cash_total(movement_type: str, window: AnalyticsWindow | None) -> int:
    query = db.session.query(func.coalesce(func.sum(CashMovement.amount_cents), 0)).filter(
        CashMovement.movement_type == movement_type
    )
    if window is not None:
        if window.start_date:
            query = query.filter(CashMovement.movement_date >= window.start_date)
        if window.end_date:
            query = query.filter(CashMovement.movement_date <= window.end_date)
    return int(query.scalar() or 0)


def cash_summary(window: AnalyticsWindow | None = None) -> dict:
    """
    Income vs expense for the window.

    Sales income comes from the same aggregate the analytics endpoints use.
    The window's category (if any) applies to sales only; cash entries are
    not tied to products.
    """
    sales_income = sales_totals(window)["total_revenue"]
    other_income = _cash_total("income", window)
    expense = _cash_total("expense", window)
    total_income = sales_income + other_income
    return {
        "sales_income_cents": sales_income,
        "other_income_cents": other_income,
        "expense_cents": expense,
        "total_income_cents": total_income,
        "balance_cents": total_income - expense,
    }
