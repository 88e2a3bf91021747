# payment_sync package
__version__ = "0.1.0"

from .database import (
    Payment,
    PaymentStatus,
    PaymentRepository,
    init_db,
    close_db,
    get_db,
)
from .errors import (
    PaymentSyncError,
    ConfigError,
    GatewayError,
    GatewayUnavailable,
    GatewayAuthError,
    OrderNotFound,
    LedgerWriteError,
)

# Reconciliation exports
from .reconciliation import (
    GatewayTransaction,
    PayOSClient,
    StatusReconciler,
    RecoverySweep,
    ReportGenerator,
    get_payment_gateway,
)
