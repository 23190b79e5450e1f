# Overview: Flask API routes for stock balances and ledger movements.

# backend/stockledger/routes/inventory.py
"""
Stock routes.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Movements are listed newest first; a product's own history is in ledger order.
"""
from flask import Blueprint, current_app, request

from ..services import ledger_service, products_service
from ..services.balance_service import balance_of, list_stock_balances
from ..validation import ModelValidationPolicy, ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/stock")

STOCK_MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "movement_type", "type", "quantity", "occurred_at", "note", "created_by"},
    required_on_create={"product_id", "quantity"},
)


def _limit_arg() -> int:
    default = current_app.config.get("RECENT_ROWS_LIMIT", 100)
    limit = request.args.get("limit", default=default, type=int)
    if limit is None or limit < 1:
        raise ValidationError("limit must be a positive integer")
    return limit


@inventory_bp.get("/balances")
def list_balances():
    """Every catalog product with its ledger-derived stock ([{product_id, current_stock}])."""
    return list_stock_balances()


@inventory_bp.get("/balances/<int:product_id>")
def get_balance(product_id: int):
    products_service.get_product(product_id)
    return balance_of(product_id).to_dict()


@inventory_bp.post("/movements")
def add_stock_movement_route():
    """
    Record an ingress/egress movement.

    Body: {product_id, movement_type: "ingress"|"egress" (or "ingreso"|"egreso"),
           quantity, occurred_at?, note?, created_by?}
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(k for k in payload if k not in STOCK_MOVEMENT_POLICY.writable_fields)
    if unknown:
        raise ValidationError(f"Field not allowed: {unknown[0]}")
    missing = sorted(k for k in STOCK_MOVEMENT_POLICY.required_on_create if payload.get(k) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    movement = ledger_service.add_stock_movement(
        product_id=payload["product_id"],
        movement_type=payload.get("movement_type", payload.get("type")),
        quantity=payload["quantity"],
        occurred_at=payload.get("occurred_at"),
        note=payload.get("note"),
        created_by=payload.get("created_by"),
    )
    data = movement.to_dict()
    data["current_stock"] = balance_of(movement.product_id).current_stock
    return data, 201


@inventory_bp.get("/movements")
def list_movements():
    movements = ledger_service.list_recent_movements(limit=_limit_arg())
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@inventory_bp.get("/products/<int:product_id>/movements")
def list_product_movements(product_id: int):
    products_service.get_product(product_id)
    movements = ledger_service.movements_for(product_id)
    return {
        "product_id": product_id,
        "items": [m.to_dict() for m in movements],
        "current_stock": balance_of(product_id).current_stock,
    }
