from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from stockledger.time_utils import to_utc_z

MOVEMENT_TYPES = ("ingress", "egress")
MOVEMENT_SOURCES = ("manual", "sale", "initial", "restock")


class LedgerImmutableError(RuntimeError):
    """Raised when code tries to UPDATE or DELETE a ledger row."""


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    - quantity is always > 0; direction is carried by `type`, never by sign.
    - Rows are never updated or deleted. Corrections are compensating movements.
    - A sale-driven egress references its SaleTransaction through `sale_id`
      (unique), so a sale can own at most one movement.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_positive"),
        db.CheckConstraint("type IN ('ingress', 'egress')", name="ck_stock_movements_type"),
        db.UniqueConstraint("sale_id", name="uq_stock_movements_sale"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    source = db.Column(db.String(16), nullable=False, default="manual")
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)

    # Business time (ordering key) vs. system time
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == "ingress" else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.type,
            "quantity": self.quantity,
            "source": self.source,
            "sale_id": self.sale_id,
            "note": self.note,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise LedgerImmutableError(f"stock movement {target.id} is immutable; append a compensating movement")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise LedgerImmutableError(f"stock movement {target.id} cannot be deleted")
