# Overview: Balance resolver; derives stock on hand by folding the movement ledger.

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterable

from flask import current_app
from sqlalchemy import case, event, func
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import Product, StockMovement
from . import ledger_service
"""
Balance Invariants (authoritative)

- current_stock = SUM(ingress.quantity) - SUM(egress.quantity), starting at 0.
- Balances are never stored as a mutable counter; the cache below only
  memoizes the fold and can always be rebuilt from the ledger.
- A product with an uncommitted append is "held": cache reads miss and
  stores are refused until the writing transaction ends, so a cached value
  can never be older than the last committed movement.
- Low stock: current_stock <= min_stock (min_stock defaults to 0).
"""

_CACHE_EXTENSION_KEY = "stockledger.balance_cache"
_SESSION_HOLDS_KEY = "stockledger.balance_holds"


@dataclass(frozen=True)
class StockBalance:
    product_id: int
    current_stock: int

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "current_stock": self.current_stock}


class BalanceCache:
    """Write-through memo of folded balances, keyed by product id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._values: dict[int, int] = {}
        self._generations: dict[int, int] = {}
        self._pending: dict[int, int] = {}

    def get(self, product_id: int) -> int | None:
        with self._lock:
            if self._pending.get(product_id):
                return None
            return self._values.get(product_id)

    def generation(self, product_id: int) -> int:
        with self._lock:
            return self._generations.get(product_id, 0)

    def store(self, product_id: int, value: int, generation: int) -> bool:
        """Store a folded value unless the product changed since `generation` was read."""
        with self._lock:
            if self._pending.get(product_id):
                return False
            if self._generations.get(product_id, 0) != generation:
                return False
            self._values[product_id] = value
            return True

    def _invalidate_locked(self, product_id: int) -> None:
        self._values.pop(product_id, None)
        self._generations[product_id] = self._generations.get(product_id, 0) + 1

    def invalidate(self, product_id: int) -> None:
        with self._lock:
            self._invalidate_locked(product_id)

    def hold(self, product_id: int) -> None:
        with self._lock:
            self._pending[product_id] = self._pending.get(product_id, 0) + 1
            self._invalidate_locked(product_id)

    def release(self, product_id: int) -> None:
        with self._lock:
            remaining = self._pending.get(product_id, 0) - 1
            if remaining > 0:
                self._pending[product_id] = remaining
            else:
                self._pending.pop(product_id, None)
            self._invalidate_locked(product_id)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._generations.clear()
            self._pending.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


def init_balance_cache(app) -> BalanceCache:
    cache = BalanceCache()
    app.extensions[_CACHE_EXTENSION_KEY] = cache
    return cache


def get_balance_cache() -> BalanceCache:
    return current_app.extensions[_CACHE_EXTENSION_KEY]


def hold_for_session(product_id: int, session=None) -> None:
    """
    Invalidate `product_id` now and keep it uncacheable until the session's
    current transaction commits or rolls back.
    """
    session = session or db.session()
    cache = get_balance_cache()
    holds = session.info.setdefault(_SESSION_HOLDS_KEY, {})
    key = (id(cache), product_id)
    if key in holds:
        cache.invalidate(product_id)
        return
    cache.hold(product_id)
    holds[key] = cache


@event.listens_for(Session, "after_transaction_end")
def _release_holds(session, transaction):
    if transaction.parent is not None:
        return
    holds = session.info.pop(_SESSION_HOLDS_KEY, None)
    if not holds:
        return
    for (_, product_id), cache in holds.items():
        cache.release(product_id)


def fold_movements(movements: Iterable[StockMovement]) -> int:
    balance = 0
    for movement in movements:
        balance += movement.signed_quantity
    return balance


def balance_of(product_id: int, *, use_cache: bool = True) -> StockBalance:
    """
    Current stock for one product.

    use_cache=False always folds the ledger; write paths use it inside their
    critical section.
    """
    if not use_cache:
        return StockBalance(product_id, fold_movements(ledger_service.movements_for(product_id)))

    cache = get_balance_cache()
    cached = cache.get(product_id)
    if cached is not None:
        return StockBalance(product_id, cached)

    generation = cache.generation(product_id)
    current = fold_movements(ledger_service.movements_for(product_id))
    cache.store(product_id, current, generation)
    return StockBalance(product_id, current)


def balances_for_all() -> dict[int, int]:
    """
    Mapping product_id -> current_stock for every catalog product.

    Same fold as balance_of, pushed into one aggregate query; products with
    no movements report 0.
    """
    signed = case(
        (StockMovement.type == "ingress", StockMovement.quantity),
        else_=-StockMovement.quantity,
    )
    rows = (
        db.session.query(Product.id, func.coalesce(func.sum(signed), 0))
        .outerjoin(StockMovement, StockMovement.product_id == Product.id)
        .group_by(Product.id)
        .order_by(Product.id.asc())
        .all()
    )
    return {product_id: int(total or 0) for product_id, total in rows}


def list_stock_balances() -> list[dict]:
    return [
        StockBalance(product_id, current).to_dict()
        for product_id, current in balances_for_all().items()
    ]


def is_low_stock(current_stock: int, min_stock: int | None) -> bool:
    return current_stock <= (min_stock or 0)
