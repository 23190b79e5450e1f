# Overview: Ledger store; append-only stock movements and ledger integrity checks.

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from ..errors import InsufficientStock, ValidationError
from ..extensions import db
from ..models import Product, SaleTransaction, StockMovement, MOVEMENT_SOURCES
from ..validation import require_positive_quantity, optional_text, coerce_int
from stockledger.time_utils import utcnow, parse_iso_datetime
from .concurrency import begin_write, lock_for_update, product_lock, run_with_retry
"""
Stock Ledger Invariants (authoritative)

- Append-only: there is no update or delete path. Corrections are new movements.
- quantity > 0 always; direction is the `type` (ingress/egress), never the sign.
- Ordering: (occurred_at, id). Ties on occurred_at resolve by insertion order.
- An egress is rejected if, inserted at its position in that order, any
  prefix of the product's ledger would fold to a negative balance.
- Every append invalidates the cached balance for its product before the
  call returns; the product stays uncacheable until the transaction ends.
- Writers hold product_lock(product_id) and an open write transaction while
  checking and appending.
"""

logger = logging.getLogger(__name__)

_TYPE_ALIASES = {
    "ingress": "ingress",
    "ingreso": "ingress",
    "in": "ingress",
    "egress": "egress",
    "egreso": "egress",
    "out": "egress",
}

# Clock skew allowance for client-supplied timestamps
FUTURE_TOLERANCE = timedelta(minutes=2)


def normalize_movement_type(value) -> str:
    key = str(value or "").strip().lower()
    if key not in _TYPE_ALIASES:
        raise ValidationError("movement_type must be 'ingress' or 'egress' (or 'ingreso'/'egreso')")
    return _TYPE_ALIASES[key]


def _as_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _parse_occurred_at(value) -> datetime:
    """
    Normalize occurred_at to canonical UTC-naive datetime.

    Accepts:
    - None -> utcnow() (UTC-naive)
    - datetime (aware -> converted to UTC; naive -> treated as UTC)
    - str -> parse_iso_datetime (accepts Z/offsets)
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        return _as_utc_naive(value)

    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            dt = None
        if dt is None:
            raise ValidationError("invalid occurred_at")
        return dt

    raise ValidationError("invalid occurred_at")


def get_product_for_write(product_id, *, lock: bool = True) -> Product:
    """Load a product referenced by a ledger write; unknown ids are a ValidationError."""
    product_id = coerce_int("product_id", product_id)
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ValidationError(f"product {product_id} not found", details={"product_id": product_id})
    return product


def movements_for(product_id: int) -> list[StockMovement]:
    """All movements for a product in ledger order (occurred_at, then insertion)."""
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
        .all()
    )


def _ensure_egress_allowed(product_id: int, quantity: int, occurred_at: datetime) -> None:
    """
    Fold the ledger with the candidate egress spliced in at its position.

    Rejects when any running balance would dip below zero, which covers both
    the plain "not enough stock now" case and back-dated egress that would
    overdraw history ahead of later movements.
    """
    running = 0
    lowest = 0
    spliced = False
    for movement in movements_for(product_id):
        if not spliced and _as_utc_naive(movement.occurred_at) > occurred_at:
            running -= quantity
            lowest = min(lowest, running)
            spliced = True
        running += movement.signed_quantity
        lowest = min(lowest, running)
    if not spliced:
        running -= quantity
        lowest = min(lowest, running)

    if lowest < 0:
        available = running + quantity
        logger.info(
            "rejected egress of %d for product %d (available %d)", quantity, product_id, available
        )
        raise InsufficientStock(product_id, quantity, available)


def append_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity,
    occurred_at=None,
    note: str | None = None,
    created_by: int | None = None,
    source: str = "manual",
    sale_id: int | None = None,
) -> StockMovement:
    """Core append without locking, retry, or commit.

    Callers own the unit of work: add_stock_movement() for standalone
    movements, sales_service.record_sale() for sale-driven egress.
    """
    movement_type = normalize_movement_type(movement_type)
    quantity = require_positive_quantity(quantity)
    product_id = get_product_for_write(product_id, lock=False).id
    if created_by is not None:
        created_by = coerce_int("created_by", created_by)
    if source not in MOVEMENT_SOURCES:
        raise ValidationError(f"source must be one of: {', '.join(MOVEMENT_SOURCES)}")

    occurred_dt = _parse_occurred_at(occurred_at)
    if occurred_dt > utcnow() + FUTURE_TOLERANCE:
        raise ValidationError("occurred_at cannot be in the future")

    if movement_type == "egress":
        _ensure_egress_allowed(product_id, quantity, occurred_dt)

    from .balance_service import hold_for_session

    hold_for_session(product_id)

    movement = StockMovement(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        source=source,
        sale_id=sale_id,
        note=optional_text(note, "note"),
        created_by=created_by,
        occurred_at=occurred_dt,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def add_stock_movement(
    *,
    product_id,
    movement_type: str,
    quantity,
    occurred_at=None,
    note: str | None = None,
    created_by: int | None = None,
    source: str = "manual",
) -> StockMovement:
    """
    Record a standalone ingress/egress movement and commit it.

    Sale-driven egress never comes through here; use sales_service.record_sale.
    """
    if source == "sale":
        raise ValidationError("sale movements are created by recording a sale")
    product_id = coerce_int("product_id", product_id)

    def _op():
        begin_write()
        get_product_for_write(product_id)
        movement = append_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            occurred_at=occurred_at,
            note=note,
            created_by=created_by,
            source=source,
        )
        db.session.commit()
        return movement

    with product_lock(product_id):
        movement = run_with_retry(_op)
    logger.info(
        "stock movement %d recorded: %s %d of product %d",
        movement.id, movement.type, movement.quantity, movement.product_id,
    )
    return movement


def list_recent_movements(limit: int = 100) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def verify_ledger() -> dict:
    """
    Integrity audit over the whole ledger.

    Reports sales without their egress movement, sale movements whose
    product/quantity/type disagree with the sale (or that lost their sale),
    and products whose ordered ledger dips below zero at any point.
    """
    orphaned_sales = [
        sale_id
        for (sale_id,) in db.session.query(SaleTransaction.id)
        .outerjoin(StockMovement, StockMovement.sale_id == SaleTransaction.id)
        .filter(StockMovement.id.is_(None))
        .order_by(SaleTransaction.id.asc())
        .all()
    ]

    mismatched = []
    sale_movements = (
        db.session.query(StockMovement, SaleTransaction)
        .outerjoin(SaleTransaction, StockMovement.sale_id == SaleTransaction.id)
        .filter((StockMovement.source == "sale") | StockMovement.sale_id.isnot(None))
        .order_by(StockMovement.id.asc())
        .all()
    )
    for movement, sale in sale_movements:
        if (
            sale is None
            or movement.type != "egress"
            or movement.product_id != sale.product_id
            or movement.quantity != sale.quantity
        ):
            mismatched.append(movement.id)

    negative = []
    product_ids = [pid for (pid,) in db.session.query(func.distinct(StockMovement.product_id)).all()]
    for product_id in sorted(product_ids):
        running = 0
        for movement in movements_for(product_id):
            running += movement.signed_quantity
            if running < 0:
                negative.append(product_id)
                break

    return {
        "ok": not (orphaned_sales or mismatched or negative),
        "orphaned_sales": orphaned_sales,
        "mismatched_movements": mismatched,
        "negative_balances": negative,
    }
