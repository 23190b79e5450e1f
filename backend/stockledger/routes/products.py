# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
"""
Product catalog routes.

Stock is not a product field. GET responses carry `current_stock` derived
from the ledger; creating with `initial_stock` records an opening ingress.
"""
from flask import Blueprint, request

from ..models import Product
from ..validation import ModelValidationPolicy, validate_payload
from ..services import products_service
from ..services.balance_service import balances_for_all, is_low_stock

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
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
        "initial_stock",
    },
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _with_stock(product: Product, balances: dict[int, int]) -> dict:
    data = product.to_dict()
    current = balances.get(product.id, 0)
    data["current_stock"] = current
    data["margin_percent"] = product.margin_percent
    data["low_stock"] = is_low_stock(current, product.min_stock)
    return data


@products_bp.get("")
def list_products():
    """
    List products with their ledger-derived stock.

    Query params:
    - category: str (optional)
    - status: Active | Inactive | Discontinued (optional)
    """
    products = products_service.list_products(
        category=request.args.get("category"),
        status=request.args.get("status"),
    )
    balances = balances_for_all()
    items = [_with_stock(p, balances) for p in products]
    return {"items": items, "count": len(items)}


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    product = products_service.get_product(product_id)
    return _with_stock(product, balances_for_all())


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    created = products_service.create_product(patch=patch)
    return _with_stock(created, balances_for_all()), 201


@products_bp.put("/<int:product_id>")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    updated = products_service.update_product(product_id=product_id, patch=patch)
    return _with_stock(updated, balances_for_all()), 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """Hard delete; 409 when the product has stock or sales history."""
    products_service.delete_product(product_id=product_id)
    return {"ok": True}, 200


@products_bp.post("/<int:product_id>/restock")
def restock_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    movement = products_service.restock_to_max(
        product_id=product_id,
        created_by=payload.get("created_by"),
    )
    return movement.to_dict(), 201
