# Overview: Flask API routes for CSV report exports.

# backend/stockledger/routes/reports.py
"""
Report export routes.

POST /api/reports/<kind>  -> {path, kind, generated_at, row_count, columns}
POST /api/reports/all     -> {paths: [...], artifacts: [...]}; 207 with the
                             successful paths plus per-kind failures when
                             some kinds could not be written
"""
from flask import Blueprint, request

from ..services import export_service
from ..services.analytics_service import AnalyticsWindow

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _window_from_request() -> AnalyticsWindow:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and payload:
        return AnalyticsWindow.from_args(payload)
    return AnalyticsWindow.from_args(request.args)


@reports_bp.post("/all")
def export_all_route():
    batch = export_service.export_all(_window_from_request()).raise_for_failures()
    return {"paths": batch.paths, "artifacts": [a.to_dict() for a in batch.artifacts]}


@reports_bp.post("/<kind>")
def export_report_route(kind: str):
    artifact = export_service.export_report(kind, _window_from_request())
    return artifact.to_dict(), 201
