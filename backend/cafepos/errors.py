# Overview: Typed failures raised by the billing engine and mapped to JSON by routes.

from __future__ import annotations


class BillingError(Exception):
    """
    Base class for every engine failure.

    Each subclass carries a stable machine-readable `kind` and the HTTP status
    routes respond with. `details` holds structured context (e.g. the stock
    or payment shortfall) so callers can correct input without re-querying.
    """
    kind = "billing_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }
        if self.retryable:
            payload["retryable"] = True
        return payload


class InvalidRequest(BillingError):
    """400-level input problem."""
    kind = "invalid_request"
    status_code = 400


class NotFound(BillingError):
    kind = "not_found"
    status_code = 404


class ProductNotFound(NotFound):
    pass


class OrderNotFound(NotFound):
    pass


class TableNotFound(NotFound):
    pass


class UnpaidEntryNotFound(NotFound):
    pass


class InsufficientStock(BillingError):
    kind = "insufficient_stock"
    status_code = 409


class InsufficientPayment(BillingError):
    kind = "insufficient_payment"
    status_code = 402


class InvalidTransition(BillingError):
    kind = "invalid_transition"
    status_code = 409


class NothingToCombine(BillingError):
    kind = "nothing_to_combine"
    status_code = 400


class NoOpenOrders(BillingError):
    kind = "no_open_orders"
    status_code = 400


class AlreadyCombined(BillingError):
    """409-level conflict: an order was already folded into a combined bill."""
    kind = "already_combined"
    status_code = 409


class AlreadyUnpaid(BillingError):
    """409-level conflict: the order already has a side-ledger entry."""
    kind = "already_unpaid"
    status_code = 409


class StorageFailure(BillingError):
    """Backing store aborted the transaction. Safe to retry the whole operation."""
    kind = "storage_failure"
    status_code = 503
    retryable = True
