"""
Sale Recorder - one sale, one egress, one transaction.

A SaleTransaction and the egress StockMovement that consumes its stock are
written in the same DB transaction, under the product lock. Any failure
between the two writes (stock check, flush, commit) rolls both back, so the
ledger never holds a sale movement without its sale or a sale without its
movement.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import SaleTransaction
from ..validation import (
    coerce_date,
    coerce_int,
    optional_text,
    require_non_negative_cents,
    require_positive_quantity,
)
from stockledger.time_utils import utctoday
from . import ledger_service
from .concurrency import begin_write, product_lock, run_with_retry

logger = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


def clamp_discount(value) -> Decimal:
    """
    Discount percentage clamped to [0, 100].

    Missing or unparseable values count as no discount. This is the only
    input the sale path coerces instead of rejecting.
    """
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        pct = Decimal(str(value).strip())
    except (ArithmeticError, ValueError):
        return Decimal(0)
    if not pct.is_finite():
        return Decimal(0)
    return max(Decimal(0), min(_HUNDRED, pct))


def compute_sale_total(unit_price_cents: int, quantity: int, discount_pct=0) -> int:
    """
    Final sale total in cents.

    subtotal = unit x qty, less the discount, floored at zero, then rounded
    half away from zero to a whole currency unit. Rounding happens once on the
    total, never per unit.
    """
    discount = clamp_discount(discount_pct)
    subtotal = Decimal(unit_price_cents) * quantity
    net = max(Decimal(0), subtotal * (_HUNDRED - discount) / _HUNDRED)
    whole_units = (net / _HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(whole_units) * 100


def _discount_bps(discount: Decimal) -> int:
    return int((discount * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def record_sale(
    *,
    product_id,
    quantity,
    unit_price_cents,
    discount_pct=0,
    channel: str | None = None,
    sale_date=None,
    created_by: int | None = None,
) -> SaleTransaction:
    product_id = coerce_int("product_id", product_id)
    quantity = require_positive_quantity(quantity)
    unit_price_cents = require_non_negative_cents(unit_price_cents, "unit_price_cents")
    if created_by is not None:
        created_by = coerce_int("created_by", created_by)
    discount = clamp_discount(discount_pct)
    total_cents = compute_sale_total(unit_price_cents, quantity, discount)
    sale_day = coerce_date("sale_date", sale_date) if sale_date not in (None, "") else utctoday()
    channel = optional_text(channel, "channel", max_length=64) or current_app.config.get(
        "DEFAULT_SALES_CHANNEL", "Tienda"
    )

    def _op():
        begin_write()
        ledger_service.get_product_for_write(product_id)

        sale = SaleTransaction(
            product_id=product_id,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
            discount_bps=_discount_bps(discount),
            sale_price_cents=total_cents,
            channel=channel,
            sale_date=sale_day,
            created_by=created_by,
        )
        db.session.add(sale)
        db.session.flush()

        # occurred_at is the recording time, not sale_date
        ledger_service.append_movement(
            product_id=product_id,
            movement_type="egress",
            quantity=quantity,
            source="sale",
            sale_id=sale.id,
            note=f"Sale #{sale.id}",
            created_by=created_by,
        )
        db.session.commit()
        return sale

    with product_lock(product_id):
        sale = run_with_retry(_op)

    logger.info(
        "sale %d recorded: product %d qty %d total %d cents",
        sale.id, product_id, quantity, total_cents,
    )
    return sale


def add_sale(payload: dict, *, created_by: int | None = None) -> SaleTransaction:
    """
    Record a sale from an API payload.

    Accepts `unit_price_cents` (or the older `sale_price_cents`, which callers
    send as the unit price) and `discount_pct` (or `discount`).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unit_price = payload.get("unit_price_cents")
    if unit_price is None:
        unit_price = payload.get("sale_price_cents")

    discount = payload.get("discount_pct")
    if discount is None:
        discount = payload.get("discount", 0)

    return record_sale(
        product_id=payload.get("product_id"),
        quantity=payload.get("quantity"),
        unit_price_cents=unit_price,
        discount_pct=discount,
        channel=payload.get("channel"),
        sale_date=payload.get("sale_date"),
        created_by=payload.get("created_by", created_by),
    )


def list_sales(limit: int | None = 100, window=None) -> list[SaleTransaction]:
    from .analytics_service import apply_window

    query = db.session.query(SaleTransaction)
    if window is not None:
        query = apply_window(query, window)
    query = query.order_by(SaleTransaction.sale_date.desc(), SaleTransaction.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()
