from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, to_iso_date

PRODUCT_STATUSES = ("Active", "Inactive", "Discontinued")


class Product(db.Model):
    """
    Product master data (catalog).

    Stock is NOT stored here. Quantity on hand is always derived from
    StockMovement rows (see services/balance_service.py).

    SKU is optional, but unique when present. NULLs do not collide under the
    unique constraint, so many SKU-less products may coexist.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_category", "category"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    brand = db.Column(db.String(120), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    presentation = db.Column(db.String(120), nullable=True)
    flavor = db.Column(db.String(120), nullable=True)
    weight = db.Column(db.String(64), nullable=True)
    location = db.Column(db.String(120), nullable=True)
    image_path = db.Column(db.String(512), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    lot_number = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    sale_price_cents = db.Column(db.Integer, nullable=True)
    cost_price_cents = db.Column(db.Integer, nullable=True)

    min_stock = db.Column(db.Integer, nullable=True)
    max_stock = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="Active", index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "Active"

    @property
    def margin_percent(self) -> int | None:
        """Unit margin over sale price, rounded to a whole percent."""
        sale, cost = self.sale_price_cents, self.cost_price_cents
        if not sale or not cost or sale <= 0 or cost <= 0:
            return None
        return round((sale - cost) * 100 / sale)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "presentation": self.presentation,
            "flavor": self.flavor,
            "weight": self.weight,
            "location": self.location,
            "image_path": self.image_path,
            "expiry_date": to_iso_date(self.expiry_date),
            "lot_number": self.lot_number,
            "sale_price_cents": self.sale_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
