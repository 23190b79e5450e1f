# Overview: Typed error taxonomy shared by services, routes and the CLI.

"""
Every command fails with a ServiceError subclass. Callers branch on:

- status_code: HTTP status the API layer responds with
- code: stable machine-readable identifier
- retryable: True only for transient storage conditions (StorageError)
- details: structured context (ids, quantities, per-kind failures)
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for domain errors surfaced to callers."""

    status_code = 500
    code = "service_error"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""

    status_code = 400
    code = "validation_error"


class NotFound(ServiceError, LookupError):
    """Unknown id on read/update/delete."""

    status_code = 404
    code = "not_found"


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    status_code = 409
    code = "conflict"


class InsufficientStock(ServiceError):
    """Egress would drive the ledger-derived balance negative."""

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: available {available}, requested {requested}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class StorageError(ServiceError):
    """Underlying store unavailable, locked past retry budget, or I/O failure."""

    status_code = 503
    code = "storage_error"
    retryable = True


class PartialExportFailure(ServiceError):
    """One or more report kinds failed during a bulk export."""

    status_code = 207
    code = "partial_export_failure"

    def __init__(self, artifacts: list, failures: dict[str, str]):
        super().__init__(
            f"{len(failures)} report(s) failed: {', '.join(sorted(failures))}",
            details={
                "paths": [a.path for a in artifacts],
                "failures": dict(failures),
            },
        )
        self.artifacts = list(artifacts)
        self.failures = dict(failures)
