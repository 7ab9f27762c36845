"""
Credit Ledger Errors

Closed set of outcomes a balance change can fail with. Policy rejections and
storage faults carry a stable error_code so callers can tell "payment required"
from "try again later" without parsing messages.
"""

from typing import Optional

from .config import ERROR_CODES


class LedgerError(Exception):
    """Base class for every error surfaced by the ledger core."""

    error_code = "LEDGER_ERROR"
    http_status = 500
    retryable = False

    def __init__(self, message: Optional[str] = None, user_id: Optional[str] = None):
        self.message = message or ERROR_CODES.get(self.error_code, self.error_code)
        self.user_id = user_id
        super().__init__(self.message)

    def to_dict(self):
        """Convert to API response format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable
        }


# ==================== POLICY REJECTIONS ====================

class InsufficientCredits(LedgerError):
    """Raised when a debit asks for more credits than the account holds."""
    error_code = "INSUFFICIENT_CREDITS"
    http_status = 402

    def __init__(self, user_id: str, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(user_id=user_id)

    def to_dict(self):
        data = super().to_dict()
        data["required"] = self.required
        data["available"] = self.available
        return data


class InvalidAmount(LedgerError):
    """Raised for zero, negative or non-integer amounts, before any storage access."""
    error_code = "INVALID_AMOUNT"
    http_status = 400


class MissingIdempotencyKey(LedgerError):
    """Raised when a credit is attempted without an idempotency key."""
    error_code = "MISSING_IDEMPOTENCY_KEY"
    http_status = 400


class DuplicateIdempotencyKey(LedgerError):
    """Raised when a purchase event with the same idempotency key was already applied."""
    error_code = "DUPLICATE_IDEMPOTENCY_KEY"
    http_status = 409

    def __init__(self, idempotency_key: str, user_id: Optional[str] = None):
        self.idempotency_key = idempotency_key
        super().__init__(user_id=user_id)


# ==================== STORAGE / CONCURRENCY ====================

class AccountNotFound(LedgerError):
    error_code = "ACCOUNT_NOT_FOUND"
    http_status = 404


class Contention(LedgerError):
    """Raised when the optimistic retry loop runs out of attempts."""
    error_code = "CONTENTION"
    http_status = 409
    retryable = True

    def __init__(self, user_id: str, attempts: int):
        self.attempts = attempts
        super().__init__(user_id=user_id)


class StorageUnavailable(LedgerError):
    error_code = "STORAGE_UNAVAILABLE"
    http_status = 503
    retryable = True


class LedgerInvariantError(LedgerError):
    """Raised when a mutation would break non-negativity or conservation."""
    error_code = "LEDGER_INVARIANT"
    http_status = 500


class VersionConflict(Exception):
    """
    A conditional write lost the race against another writer.

    Internal to the store/engine boundary; the engine retries on it and never
    lets it reach callers.
    """

    def __init__(self, user_id: str, expected_version: int):
        self.user_id = user_id
        self.expected_version = expected_version
        super().__init__(f"Account {user_id} changed since version {expected_version}")
