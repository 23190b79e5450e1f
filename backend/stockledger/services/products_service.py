# backend/stockledger/services/products_service.py
"""
Catalog Store

Product master data. Stock is never written here: creating a product with
an opening quantity and restocking both go through the ledger.

- create_product: SKU unique when present; optional initial_stock becomes an
  "initial" ingress in the same transaction
- update_product / delete_product: serialized per product
- delete_product refuses products that any movement or sale references
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import Product, SaleTransaction, StockMovement
from ..validation import enforce_rules_product
from . import ledger_service
from .balance_service import balance_of
from .concurrency import begin_write, lock_for_update, product_lock, run_with_retry

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "brand",
    "category",
    "presentation",
    "flavor",
    "weight",
    "location",
    "image_path",
    "expiry_date",
    "lot_number",
    "sale_price_cents",
    "cost_price_cents",
    "min_stock",
    "max_stock",
    "status",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_sku_available(sku: str | None, *, exclude_id: int | None = None) -> None:
    if sku is None:
        return
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("SKU already exists.", details={"sku": sku})


def list_products(*, category: str | None = None, status: str | None = None) -> list[Product]:
    query = db.session.query(Product)
    if category:
        query = query.filter(Product.category == category)
    if status:
        query = query.filter(Product.status == status)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    return product


def create_product(*, patch: dict, created_by: int | None = None) -> Product:
    """
    Create a product from a validated patch.

    Raises:
        ValidationError: business rule violation (prices, thresholds, status)
        ConflictError: SKU already exists
    """
    patch = dict(patch)
    enforce_rules_product(patch)
    if not patch.get("name"):
        raise ValidationError("name is required")
    initial_stock = patch.pop("initial_stock", None) or 0

    def _op():
        begin_write()
        _ensure_sku_available(patch.get("sku"))

        p = Product()
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the opening movement

        if initial_stock > 0:
            ledger_service.append_movement(
                product_id=p.id,
                movement_type="ingress",
                quantity=initial_stock,
                source="initial",
                note="Initial stock",
                created_by=created_by,
            )
        db.session.commit()
        return p

    try:
        product = run_with_retry(_op)
    except IntegrityError as exc:
        raise ConflictError("SKU already exists.", details={"sku": patch.get("sku")}) from exc

    logger.info("product %d created (sku=%s, initial_stock=%d)", product.id, product.sku, initial_stock)
    return product


def update_product(*, product_id: int, patch: dict) -> Product:
    """
    Update catalog fields. Stock cannot be edited here; record a movement.

    Raises:
        NotFound: unknown product
        ConflictError: new SKU already exists
        ValidationError: business rule violation (checked against merged values)
    """
    patch = dict(patch)
    if "initial_stock" in patch:
        raise ValidationError("initial_stock can only be set on create")

    def _op():
        begin_write()
        p = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if p is None:
            raise NotFound("Product not found", details={"product_id": product_id})

        enforce_rules_product(patch, current=p)
        if "name" in patch and not patch["name"]:
            raise ValidationError("name cannot be blank")
        if "sku" in patch and patch["sku"] != p.sku:
            _ensure_sku_available(patch["sku"], exclude_id=p.id)

        apply_product_patch(p, patch)
        db.session.commit()
        return p

    with product_lock(product_id):
        try:
            return run_with_retry(_op)
        except IntegrityError as exc:
            raise ConflictError("SKU already exists.", details={"sku": patch.get("sku")}) from exc


def delete_product(*, product_id: int) -> None:
    """
    Hard-delete a product that has no history.

    Products referenced by the ledger or by sales are kept; deactivate them
    via update_product(status="Inactive") instead.
    """
    def _op():
        begin_write()
        p = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if p is None:
            raise NotFound("Product not found", details={"product_id": product_id})

        movements = db.session.query(StockMovement.id).filter(StockMovement.product_id == product_id).count()
        sales = db.session.query(SaleTransaction.id).filter(SaleTransaction.product_id == product_id).count()
        if movements or sales:
            raise ConflictError(
                "Product has stock or sales history and cannot be deleted; set status to Inactive instead.",
                details={"product_id": product_id, "movements": movements, "sales": sales},
            )

        db.session.delete(p)
        db.session.commit()

    with product_lock(product_id):
        run_with_retry(_op)
    logger.info("product %d deleted", product_id)


def restock_to_max(*, product_id: int, created_by: int | None = None) -> StockMovement:
    """
    Bring a product up to its max_stock with one ingress.

    Raises:
        NotFound: unknown product
        ValidationError: no max_stock configured, or stock already at/above it
    """
    def _op():
        begin_write()
        p = lock_for_update(db.session.query(Product).filter(Product.id == product_id)).first()
        if p is None:
            raise NotFound("Product not found", details={"product_id": product_id})
        if p.max_stock is None:
            raise ValidationError("Product has no max_stock configured", details={"product_id": product_id})

        current = balance_of(product_id, use_cache=False).current_stock
        needed = p.max_stock - current
        if needed <= 0:
            raise ValidationError(
                "Stock is already at or above max_stock",
                details={"product_id": product_id, "current_stock": current, "max_stock": p.max_stock},
            )

        movement = ledger_service.append_movement(
            product_id=product_id,
            movement_type="ingress",
            quantity=needed,
            source="restock",
            note=f"Restock to max ({p.max_stock})",
            created_by=created_by,
        )
        db.session.commit()
        return movement

    with product_lock(product_id):
        movement = run_with_retry(_op)
    logger.info("product %d restocked by %d", product_id, movement.quantity)
    return movement
