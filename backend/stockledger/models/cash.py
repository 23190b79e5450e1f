from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, to_iso_date

CASH_MOVEMENT_TYPES = ("income", "expense")


class CashMovement(db.Model):
    """Non-sale money in/out (other income, expenses). Feeds the financial report."""
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_cash_movements_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    movement_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    movement_date = db.Column(db.Date, nullable=False, index=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "movement_type": self.movement_type,
            "amount_cents": self.amount_cents,
            "category": self.category,
            "description": self.description,
            "movement_date": to_iso_date(self.movement_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
