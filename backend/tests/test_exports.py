"""
Report exporter tests.

Verifies:
- Each report is a CSV whose header matches the artifact's columns
- The inventory report agrees with the live balance resolver
- Formula-looking text cells are quoted (and logged) without losing characters
- export_all keeps going when one kind fails, and reports which
"""

import csv
import logging
import os
import re
from datetime import date

import pytest

from stockledger.errors import PartialExportFailure, StorageError, ValidationError
from stockledger.models import Product
from stockledger.services import cash_service, export_service, products_service, sales_service
from stockledger.services.analytics_service import AnalyticsWindow
from stockledger.services.balance_service import list_stock_balances
from stockledger.time_utils import utctoday

from conftest import make_product, stock_in

REPORT_NAME = re.compile(r"^(?P<kind>[a-z_]+)_report_\d{8}T\d{6}Z_[0-9a-f]{8}\.csv$")


def _read(path):
    with open(path, newline="", encoding="utf-8") as fh:
        reader = csv.DictReader(fh)
        return reader.fieldnames, list(reader)


@pytest.fixture
def trading_day(db_session, stocked_p, product_q, sale_day):
    stock_in(product_q.id, 20)
    sales_service.record_sale(
        product_id=stocked_p.id, quantity=10, unit_price_cents=2000, discount_pct=10, sale_date=sale_day
    )
    sales_service.record_sale(
        product_id=product_q.id, quantity=2, unit_price_cents=1500, sale_date=sale_day
    )
    return {"p": stocked_p, "q": product_q}


# =============================================================================
# SINGLE REPORTS
# =============================================================================


class TestExportReport:

    def test_inventory_matches_balances(self, trading_day, reports_dir):
        artifact = export_service.export_report("inventory")

        assert os.path.dirname(artifact.path) == str(reports_dir)
        assert REPORT_NAME.match(os.path.basename(artifact.path)).group("kind") == "inventory"

        header, rows = _read(artifact.path)
        assert tuple(header) == artifact.columns
        assert artifact.row_count == len(rows) == 2

        exported = {row["sku"]: int(row["current_stock"]) for row in rows}
        skus = {p.id: p.sku for p in trading_day.values()}
        live = {skus[b["product_id"]]: b["current_stock"] for b in list_stock_balances()}
        assert exported == live == {"VS-WHEY-001": 90, "VS-CREA-300": 18}

    def test_sales_report_respects_window(self, trading_day, sale_day):
        sales_service.record_sale(
            product_id=trading_day["p"].id, quantity=1, unit_price_cents=2000, sale_date=date(2024, 4, 1)
        )
        window = AnalyticsWindow(start_date=sale_day, end_date=sale_day)
        artifact = export_service.export_report("sales", window)

        _, rows = _read(artifact.path)
        assert artifact.row_count == 2
        assert {row["sale_date"] for row in rows} == {"2024-05-10"}
        assert sorted(int(row["sale_price_cents"]) for row in rows) == [3000, 18000]

    def test_stock_movements_report_lists_every_movement(self, trading_day):
        artifact = export_service.export_report("stock_movements")
        _, rows = _read(artifact.path)
        # two receipts + two sale egresses
        assert artifact.row_count == 4
        assert sorted(row["source"] for row in rows) == ["manual", "manual", "sale", "sale"]

    def test_back_dated_sales_filter_by_recording_day_in_movements(self, trading_day, sale_day):
        on_sale_day = AnalyticsWindow(start_date=sale_day, end_date=sale_day)
        assert export_service.export_report("sales", on_sale_day).row_count == 2
        assert export_service.export_report("stock_movements", on_sale_day).row_count == 0

        today = AnalyticsWindow(start_date=utctoday(), end_date=utctoday())
        artifact = export_service.export_report("stock_movements", today)
        _, rows = _read(artifact.path)
        assert sorted(row["source"] for row in rows) == ["manual", "manual", "sale", "sale"]

    def test_revenue_column_is_total_revenue_in_cents(self, trading_day):
        header, rows = _read(export_service.export_report("top_products").path)
        assert "total_revenue" in header
        assert [int(row["total_revenue"]) for row in rows] == [18000, 3000]

    def test_financial_report_includes_cash_book(self, trading_day, sale_day):
        cash_service.add_cash_movement(
            {"movement_type": "income", "amount_cents": 3000, "movement_date": sale_day.isoformat()}
        )
        cash_service.add_cash_movement(
            {"movement_type": "egreso", "amount_cents": 5000, "movement_date": sale_day.isoformat()}
        )

        artifact = export_service.export_report("financial")
        _, rows = _read(artifact.path)
        amounts = {row["label"]: int(row["amount_cents"]) for row in rows}
        assert amounts == {
            "Sales income": 21000,
            "Other income": 3000,
            "Expenses": 5000,
            "Total income": 24000,
            "Balance": 19000,
        }

    def test_unknown_kind_rejected(self, db_session, reports_dir):
        with pytest.raises(ValidationError) as exc_info:
            export_service.export_report("payroll")
        assert "inventory" in exc_info.value.details["allowed"]
        assert list(reports_dir.iterdir()) == []

    def test_empty_catalog_still_writes_header(self, db_session):
        artifact = export_service.export_report("profitability")
        header, rows = _read(artifact.path)
        assert rows == []
        assert tuple(header) == artifact.columns

    def test_no_temp_files_left_behind(self, trading_day, reports_dir):
        export_service.export_report("inventory")
        export_service.export_report("inventory")
        names = [p.name for p in reports_dir.iterdir()]
        assert len(names) == 2
        assert all(REPORT_NAME.match(name) for name in names)

    def test_unwritable_dir_raises_storage_error(self, app, db_session, tmp_path, monkeypatch):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        monkeypatch.setitem(app.config, "REPORTS_DIR", str(blocker))

        with pytest.raises(StorageError) as exc_info:
            export_service.export_report("inventory")
        assert exc_info.value.retryable is True
        assert exc_info.value.details["kind"] == "inventory"


# =============================================================================
# CSV SANITIZING
# =============================================================================


class TestSanitize:

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("=SUM(A1:A2)", "'=SUM(A1:A2)"),
            ("+1-555", "'+1-555"),
            ("-5 damaged", "'-5 damaged"),
            ("@import", "'@import"),
            ("\tindent", "'\tindent"),
            ("Whey Protein", "Whey Protein"),
            ("  padded ", "  padded "),
            ("", ""),
            (None, ""),
            (-42, -42),
        ],
    )
    def test_values(self, raw, expected):
        assert export_service.sanitize_csv_field(raw, "name") == expected

    def test_sku_column_is_written_verbatim(self):
        assert export_service.sanitize_csv_field("+PROMO", "sku") == "+PROMO"

    def test_formula_cell_is_logged_and_quoted(self, db_session, caplog):
        product = make_product(db_session, sku="EVIL-1", name="=HYPERLINK(\"http://x\")")
        stock_in(product.id, 1)

        with caplog.at_level(logging.WARNING, logger="stockledger.services.export_service"):
            artifact = export_service.export_report("inventory")

        _, rows = _read(artifact.path)
        assert rows[0]["name"] == "'=HYPERLINK(\"http://x\")"
        assert any("CSV formula prefix" in r.getMessage() for r in caplog.records)

    def test_signed_skus_round_trip_through_inventory(self, db_session):
        for sku, qty in (("-100A", 7), ("+PROMO", 3)):
            products_service.create_product(
                patch={"sku": sku, "name": f"Promo {sku}", "sale_price_cents": 1000, "initial_stock": qty}
            )

        artifact = export_service.export_report("inventory")

        _, rows = _read(artifact.path)
        exported = {(row["sku"], int(row["current_stock"])) for row in rows}
        skus = {p.id: p.sku for p in db_session.query(Product)}
        live = {(skus[b["product_id"]], b["current_stock"]) for b in list_stock_balances()}
        assert exported == live == {("-100A", 7), ("+PROMO", 3)}

    def test_movement_note_keeps_every_character(self, product_p):
        stock_in(product_p.id, 5, note="-5 damaged")

        _, rows = _read(export_service.export_report("stock_movements").path)
        assert rows[0]["note"] == "'-5 damaged"
        assert rows[0]["note"][1:] == "-5 damaged"


# =============================================================================
# EXPORT ALL
# =============================================================================


class TestExportAll:

    def test_writes_every_kind(self, trading_day):
        batch = export_service.export_all()
        assert batch.ok
        assert [a.kind for a in batch.artifacts] == list(export_service.REPORT_KINDS)
        for artifact in batch.artifacts:
            assert os.path.exists(artifact.path)
        assert batch.raise_for_failures() is batch

    def test_one_failing_kind_does_not_stop_the_rest(self, trading_day, monkeypatch):
        def _broken(window):
            raise RuntimeError("profit query exploded")

        monkeypatch.setitem(export_service._BUILDERS, "profitability", _broken)

        batch = export_service.export_all()
        assert not batch.ok
        assert len(batch.artifacts) == 5
        assert "profitability" not in [a.kind for a in batch.artifacts]
        assert "profit query exploded" in batch.failures["profitability"]

        with pytest.raises(PartialExportFailure) as exc_info:
            batch.raise_for_failures()
        err = exc_info.value
        assert err.status_code == 207
        assert len(err.details["paths"]) == 5
        assert set(err.details["failures"]) == {"profitability"}

    def test_service_error_reason_is_recorded(self, trading_day, monkeypatch):
        def _unavailable(window):
            raise StorageError("Storage temporarily unavailable")

        monkeypatch.setitem(export_service._BUILDERS, "sales", _unavailable)

        batch = export_service.export_all()
        assert batch.failures == {"sales": "Storage temporarily unavailable"}
