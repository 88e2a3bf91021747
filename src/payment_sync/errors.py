"""Exception types raised across the payment sync service."""

from typing import Optional


class PaymentSyncError(Exception):
    """Base class for all payment sync errors."""


class ConfigError(PaymentSyncError):
    """Raised when required configuration is missing or invalid."""


class GatewayError(PaymentSyncError):
    """Base class for payment gateway failures."""

    def __init__(self, message: str, order_code: Optional[str] = None):
        super().__init__(message)
        self.order_code = order_code


class GatewayUnavailable(GatewayError):
    """Network failure, timeout, 5xx or a malformed gateway response."""


class GatewayAuthError(GatewayError):
    """The gateway rejected our client id / API key."""


class OrderNotFound(PaymentSyncError):
    """The order code does not exist in the payments ledger."""

    def __init__(self, order_code: str):
        super().__init__(f"Payment {order_code} not found in database")
        self.order_code = order_code


class LedgerWriteError(PaymentSyncError):
    """A write to the payments ledger failed for a single order."""

    def __init__(self, order_code: str, reason: str):
        super().__init__(f"Ledger write failed for order {order_code}: {reason}")
        self.order_code = order_code
        self.reason = reason
