"""Error taxonomy for the purchase and retrieval protocol.

Every error carries an ``error_code`` and an HTTP status so that callers can
tell "you already own this" apart from "the ledger is down".
"""

from typing import Optional

from fastapi import status


class MarketError(Exception):
    """Base class for protocol errors."""

    error_code = "MARKET_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.error_code
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"status": "failed", "error_code": self.error_code, "detail": self.detail}


class AuthenticationFailed(MarketError):
    """The account and/or the password are wrong."""

    error_code = "AUTHENTICATION_FAILED"
    status_code = status.HTTP_401_UNAUTHORIZED


class SessionExpired(MarketError):
    """Session token is missing, unknown or expired."""

    error_code = "SESSION_EXPIRED"
    status_code = status.HTTP_401_UNAUTHORIZED


class PurchaseError(MarketError):
    """Purchase could not be completed."""

    error_code = "PURCHASE_FAILED"


class AlreadyPurchased(PurchaseError):
    """Measurement already purchased by this account."""

    error_code = "ALREADY_PURCHASED"
    status_code = status.HTTP_409_CONFLICT


class InsufficientFunds(PurchaseError):
    """Balance is lower than the current price."""

    error_code = "INSUFFICIENT_FUNDS"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class LedgerUnavailable(MarketError):
    """Ledger query or submission failed."""

    error_code = "LEDGER_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class LedgerTimeout(LedgerUnavailable):
    """Ledger did not answer or confirm in time."""

    error_code = "LEDGER_TIMEOUT"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class TransactionReverted(PurchaseError):
    """Ledger rejected the transaction."""

    error_code = "TRANSACTION_REVERTED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class MeasurementNotFound(MarketError):
    """Measurement is not stored on the ledger."""

    error_code = "MEASUREMENT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class NotPurchased(MarketError):
    """No completed purchase for this measurement."""

    error_code = "NOT_PURCHASED"
    status_code = status.HTTP_403_FORBIDDEN


class DecryptionFailed(MarketError):
    """Payload could not be decrypted with this key."""

    error_code = "DECRYPTION_FAILED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class IntegrityViolation(MarketError):
    """Delivered measurement does not match the producer signature."""

    error_code = "INTEGRITY_VIOLATION"
    status_code = status.HTTP_502_BAD_GATEWAY


class StorageUnavailable(MarketError):
    """Off-chain storage could not be reached."""

    error_code = "STORAGE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class StorageTimeout(StorageUnavailable):
    """Off-chain storage did not answer in time."""

    error_code = "STORAGE_TIMEOUT"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class StorageDenied(MarketError):
    """Storage service rejected the signed request."""

    error_code = "STORAGE_DENIED"
    status_code = status.HTTP_403_FORBIDDEN


class ProjectionConflict(MarketError):
    """Local projection is being updated concurrently, retry the request."""

    error_code = "PROJECTION_CONFLICT"
    status_code = status.HTTP_409_CONFLICT
