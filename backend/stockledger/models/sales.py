from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, to_iso_date


class SaleTransaction(db.Model):
    """
    One recorded sale of a single product.

    `sale_price_cents` is the final total (unit price x quantity, net of
    discount, rounded once). The matching egress StockMovement is written in
    the same DB transaction and points back here via StockMovement.sale_id.
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_transactions_quantity_positive"),
        db.CheckConstraint("sale_price_cents >= 0", name="ck_sale_transactions_total_nonnegative"),
        db.CheckConstraint(
            "discount_bps >= 0 AND discount_bps <= 10000",
            name="ck_sale_transactions_discount_range",
        ),
        db.Index("ix_sale_transactions_date_product", "sale_date", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    sale_price_cents = db.Column(db.Integer, nullable=False)

    channel = db.Column(db.String(64), nullable=True)
    sale_date = db.Column(db.Date, nullable=False, index=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("sales", lazy="dynamic"))
    movement = db.relationship("StockMovement", uselist=False, viewonly=True)

    @property
    def discount_pct(self) -> float:
        return self.discount_bps / 100

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_pct": self.discount_pct,
            "sale_price_cents": self.sale_price_cents,
            "channel": self.channel,
            "sale_date": to_iso_date(self.sale_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
