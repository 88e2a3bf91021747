"""Reconciliation between the payments ledger and the PayOS gateway.

Features:
- Reconcile a single order on demand (check-status / force-sync)
- Sweep a trailing window for paid orders the ledger missed
- Sync recent pending payments against the gateway
- Render sweep results as JSON or text reports
"""

from .models import (
    GatewayStatus,
    GatewayTransfer,
    GatewayTransaction,
    TransactionListing,
    ReconcileResult,
    SweepSummary,
    SweepAnalysis,
    OrderFailure,
    RecoveryResult,
    PendingSyncOutcome,
    PendingSyncEntry,
    PendingSyncResult,
)
from .gateway import (
    PaymentGatewayBase,
    PayOSClient,
    get_payment_gateway,
    map_gateway_status,
)
from .reconciler import StatusReconciler
from .service import RecoverySweep
from .report import ReportGenerator

__all__ = [
    # Models
    "GatewayStatus",
    "GatewayTransfer",
    "GatewayTransaction",
    "TransactionListing",
    "ReconcileResult",
    "SweepSummary",
    "SweepAnalysis",
    "OrderFailure",
    "RecoveryResult",
    "PendingSyncOutcome",
    "PendingSyncEntry",
    "PendingSyncResult",
    # Gateway clients
    "PaymentGatewayBase",
    "PayOSClient",
    "get_payment_gateway",
    "map_gateway_status",
    # Core components
    "StatusReconciler",
    "RecoverySweep",
    "ReportGenerator",
]
