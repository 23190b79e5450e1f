# backend/stockledger/routes/system.py
"""
System health endpoint.

Checks the two things every command depends on: the database and the
reports directory.
"""

import os
import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, StockMovement
from stockledger.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        movement_count = db.session.query(StockMovement).count()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }

    return {
        "status": "healthy",
        "latency_ms": round((time.time() - start_time) * 1000, 2),
        "details": {"products": product_count, "movements": movement_count},
    }


def check_reports_dir_health() -> dict:
    reports_dir = current_app.config["REPORTS_DIR"]
    if os.path.isdir(reports_dir):
        writable = os.access(reports_dir, os.W_OK)
        return {
            "status": "healthy" if writable else "degraded",
            "details": {"exists": True, "writable": writable},
        }
    # Created on first export
    return {"status": "healthy", "details": {"exists": False, "writable": None}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()
    database_health = check_database_health()
    reports_health = check_reports_dir_health()

    checks = [database_health, reports_health]
    if any(c["status"] == "unhealthy" for c in checks):
        overall_status, http_status = "unhealthy", 503
    elif any(c["status"] == "degraded" for c in checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {"database": database_health, "reports_dir": reports_health},
    }, http_status
