# Overview: Domain error hierarchy shared by services and routes.

"""
Error taxonomy

Routes translate these into HTTP responses via `http_status`:
- ValidationError  -> 400  bad input, caller must fix and resend
- AuthError        -> 401  bad credentials or session
- NotFoundError    -> 404  target vanished between read and write
- ConflictError    -> 409  business rule conflict (duplicates, oversell)
- TransientIOError -> 503  store/positioning unavailable

Every error carries a `details` dict so callers can list exactly which
dates were skipped or which products were short.
"""

from __future__ import annotations


class StockRunError(Exception):
    """Base class for domain errors."""
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(StockRunError, ValueError):
    """400-level input problem."""
    http_status = 400


class NoProductsToAllocateError(ValidationError):
    """Aggregated item list for an allocation is empty."""


class AuthError(StockRunError):
    """Invalid credentials, inactive account, or invalid session."""
    http_status = 401


class NotFoundError(StockRunError):
    http_status = 404


class AllocationNotFoundError(NotFoundError):
    """No active allocation matches the requested id or date."""


class ConflictError(StockRunError, ValueError):
    """409-level business rule conflict."""
    http_status = 409


class AllAlreadyAllocatedError(ConflictError):
    """Every requested date already has an active allocation."""

    def __init__(self, skipped_dates: list[str], message: str | None = None):
        super().__init__(
            message or "All selected dates are already allocated",
            details={"skipped_dates": list(skipped_dates)},
        )
        self.skipped_dates = list(skipped_dates)


class AllocationHasSalesError(ConflictError):
    """Allocation cannot be removed because sales were recorded against it."""


class OversellError(ConflictError):
    """A sale asks for more than the driver's remaining allocated stock."""


class TransientIOError(StockRunError):
    """Store or positioning call failed due to availability."""
    http_status = 503


class PositionUnavailable(StockRunError):
    """Device could not produce a fix within the timeout."""
    http_status = 503
