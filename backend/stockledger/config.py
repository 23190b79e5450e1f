# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Where exported CSV reports are written
    REPORTS_DIR = os.environ.get("REPORTS_DIR", os.path.join(os.getcwd(), "reports"))
    EXPORT_MAX_WORKERS = int(os.environ.get("EXPORT_MAX_WORKERS", "4"))
    TOP_PRODUCTS_REPORT_LIMIT = int(os.environ.get("TOP_PRODUCTS_REPORT_LIMIT", "50"))

    # Default page size for "recent" listings (sales, movements, cash book)
    RECENT_ROWS_LIMIT = int(os.environ.get("RECENT_ROWS_LIMIT", "100"))
    DEFAULT_SALES_CHANNEL = os.environ.get("DEFAULT_SALES_CHANNEL", "Tienda")

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
