"""
Report Exporter - CSV snapshots of catalog, ledger and analytics views.

Every report is rendered from the same service functions the API serves
(analytics_service, balance_service, cash_service), so what the dashboard
shows and what gets exported cannot drift apart.

File handling:
- Written to a temp file inside REPORTS_DIR, then moved into place with
  os.replace, so a reader never sees a half-written report
- Names are <kind>_report_<UTC timestamp>_<random suffix>.csv; an existing
  report is never overwritten
- Text cells that start with a formula character (=, +, -, @, tab, carriage
  return) are prefixed with a single quote and logged; sku is written
  verbatim, its character set is restricted when the product is saved
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

from flask import current_app

from ..errors import PartialExportFailure, ServiceError, StorageError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from stockledger.time_utils import to_iso_date, to_utc_z, utcnow
from . import analytics_service, cash_service, sales_service
from .analytics_service import AnalyticsWindow
from .balance_service import balances_for_all

logger = logging.getLogger(__name__)

REPORT_KINDS = (
    "inventory",
    "sales",
    "top_products",
    "stock_movements",
    "profitability",
    "financial",
)

_FORMULA_PREFIXES = {"=", "+", "-", "@", "\t", "\r"}
_VERBATIM_COLUMNS = {"sku"}


@dataclass(frozen=True)
class ReportArtifact:
    kind: str
    path: str
    generated_at: datetime
    row_count: int
    columns: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "path": self.path,
            "generated_at": to_utc_z(self.generated_at),
            "row_count": self.row_count,
            "columns": list(self.columns),
        }


@dataclass
class ExportBatch:
    """Outcome of export_all: successful artifacts plus {kind: reason} failures."""

    artifacts: list[ReportArtifact] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def paths(self) -> list[str]:
        return [a.path for a in self.artifacts]

    def raise_for_failures(self) -> "ExportBatch":
        if self.failures:
            raise PartialExportFailure(self.artifacts, self.failures)
        return self


def sanitize_csv_field(value, field_name: str = "unknown"):
    """
    Neutralize spreadsheet formula injection in a text cell.

    A text cell that starts with a formula character gets a leading single
    quote; nothing is removed, so the original value is the cell minus its
    first character. Non-string values (ids, quantities, cents) pass through
    untouched so negative numbers stay negative.
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        return value
    if field_name in _VERBATIM_COLUMNS or not value or value[0] not in _FORMULA_PREFIXES:
        return value

    logger.warning(
        "CSV formula prefix neutralized in field '%s'",
        field_name,
        extra={
            "field_name": field_name,
            "leading_character": value[0],
            "original_value": value[:100],
        },
    )
    return "'" + value


# --- report builders: each returns (columns, rows) -------------------------

def _inventory_rows(window):
    columns = (
        "id", "sku", "name", "sale_price_cents", "cost_price_cents", "brand", "category",
        "presentation", "flavor", "weight", "expiry_date", "lot_number", "min_stock",
        "max_stock", "location", "status", "current_stock", "margin_percent",
    )
    balances = balances_for_all()
    rows = []
    for p in db.session.query(Product).order_by(Product.id.asc()).all():
        rows.append({
            "id": p.id,
            "sku": p.sku,
            "name": p.name,
            "sale_price_cents": p.sale_price_cents,
            "cost_price_cents": p.cost_price_cents,
            "brand": p.brand,
            "category": p.category,
            "presentation": p.presentation,
            "flavor": p.flavor,
            "weight": p.weight,
            "expiry_date": to_iso_date(p.expiry_date),
            "lot_number": p.lot_number,
            "min_stock": p.min_stock,
            "max_stock": p.max_stock,
            "location": p.location,
            "status": p.status,
            "current_stock": balances.get(p.id, 0),
            "margin_percent": p.margin_percent,
        })
    return columns, rows


def _sales_rows(window):
    columns = (
        "id", "product_id", "quantity", "unit_price_cents", "discount_pct",
        "sale_price_cents", "channel", "sale_date", "created_by",
    )
    rows = [
        {k: sale.to_dict()[k] for k in columns}
        for sale in sales_service.list_sales(limit=None, window=window)
    ]
    return columns, rows


def _top_products_rows(window):
    columns = ("product_id", "sku", "name", "category", "total_qty", "total_revenue")
    limit = current_app.config.get("TOP_PRODUCTS_REPORT_LIMIT", 50)
    return columns, analytics_service.top_products(window, limit=limit)


def _stock_movements_rows(window):
    columns = (
        "id", "product_id", "movement_type", "quantity", "source", "sale_id",
        "note", "created_by", "occurred_at", "created_at",
    )
    # Filters on occurred_at. Sale egresses carry the recording time, so a
    # back-dated sale shows up here on the day it was entered.
    query = db.session.query(StockMovement)
    if window is not None:
        if window.start_date:
            query = query.filter(StockMovement.occurred_at >= datetime.combine(window.start_date, time.min))
        if window.end_date:
            end_exclusive = datetime.combine(window.end_date + timedelta(days=1), time.min)
            query = query.filter(StockMovement.occurred_at < end_exclusive)
        if window.category:
            query = query.join(Product, Product.id == StockMovement.product_id).filter(
                Product.category == window.category
            )
    movements = query.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc()).all()
    rows = [{k: m.to_dict()[k] for k in columns} for m in movements]
    return columns, rows


def _profitability_rows(window):
    columns = (
        "product_id", "sku", "name", "unit_cost_cents", "total_qty_sold", "total_revenue",
        "estimated_total_cost_cents", "gross_profit_cents", "margin_percent",
    )
    return columns, analytics_service.profitability(window)


def _financial_rows(window):
    columns = ("type", "label", "amount_cents")
    summary = cash_service.cash_summary(window)
    rows = [
        {"type": "income", "label": "Sales income", "amount_cents": summary["sales_income_cents"]},
        {"type": "income", "label": "Other income", "amount_cents": summary["other_income_cents"]},
        {"type": "expense", "label": "Expenses", "amount_cents": summary["expense_cents"]},
        {"type": "summary", "label": "Total income", "amount_cents": summary["total_income_cents"]},
        {"type": "summary", "label": "Balance", "amount_cents": summary["balance_cents"]},
    ]
    return columns, rows


_BUILDERS = {
    "inventory": _inventory_rows,
    "sales": _sales_rows,
    "top_products": _top_products_rows,
    "stock_movements": _stock_movements_rows,
    "profitability": _profitability_rows,
    "financial": _financial_rows,
}


def _reports_dir() -> str:
    return current_app.config["REPORTS_DIR"]


def _write_csv(kind: str, columns, rows, generated_at: datetime) -> str:
    out_dir = _reports_dir()
    stamp = generated_at.strftime("%Y%m%dT%H%M%SZ")
    final_path = os.path.join(out_dir, f"{kind}_report_{stamp}_{uuid.uuid4().hex[:8]}.csv")

    tmp_path = None
    try:
        os.makedirs(out_dir, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            newline="",
            dir=out_dir,
            prefix=f".{kind}_",
            suffix=".tmp",
            delete=False,
        ) as fh:
            tmp_path = fh.name
            writer = csv.DictWriter(fh, fieldnames=list(columns))
            writer.writeheader()
            for row in rows:
                writer.writerow({col: sanitize_csv_field(row.get(col), col) for col in columns})
        os.replace(tmp_path, final_path)
    except OSError as exc:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise StorageError(
            f"Could not write {kind} report",
            details={"kind": kind, "reports_dir": out_dir, "reason": str(exc)},
        ) from exc
    return final_path


def export_report(kind: str, window: AnalyticsWindow | None = None) -> ReportArtifact:
    """Render one report kind to CSV and return its artifact."""
    builder = _BUILDERS.get(kind)
    if builder is None:
        raise ValidationError(
            f"Unknown report kind: {kind}",
            details={"kind": kind, "allowed": list(REPORT_KINDS)},
        )

    generated_at = utcnow()
    columns, rows = builder(window)
    path = _write_csv(kind, columns, rows, generated_at)
    logger.info("exported %s report (%d rows) to %s", kind, len(rows), path)
    return ReportArtifact(
        kind=kind,
        path=path,
        generated_at=generated_at,
        row_count=len(rows),
        columns=tuple(columns),
    )


def _export_in_app_context(app, kind: str, window):
    with app.app_context():
        try:
            return export_report(kind, window)
        finally:
            db.session.remove()


def export_all(window: AnalyticsWindow | None = None) -> ExportBatch:
    """
    Export every report kind. One failing kind does not stop the others.

    Kinds run in a thread pool of EXPORT_MAX_WORKERS; each worker gets its own
    app context and DB session. With a single worker they run inline.
    """
    app = current_app._get_current_object()
    workers = max(1, int(app.config.get("EXPORT_MAX_WORKERS", 4)))
    batch = ExportBatch()

    def _record(kind, run):
        try:
            batch.artifacts.append(run())
        except ServiceError as exc:
            logger.warning("%s report failed: %s", kind, exc.message)
            batch.failures[kind] = exc.message
        except Exception as exc:
            logger.exception("%s report failed unexpectedly", kind)
            batch.failures[kind] = f"{exc.__class__.__name__}: {exc}"

    if workers == 1:
        for kind in REPORT_KINDS:
            _record(kind, lambda kind=kind: export_report(kind, window))
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(REPORT_KINDS))) as pool:
            futures = [
                (kind, pool.submit(_export_in_app_context, app, kind, window))
                for kind in REPORT_KINDS
            ]
            for kind, future in futures:
                _record(kind, future.result)

    batch.artifacts.sort(key=lambda a: REPORT_KINDS.index(a.kind))
    logger.info(
        "export_all finished: %d written, %d failed", len(batch.artifacts), len(batch.failures)
    )
    return batch
