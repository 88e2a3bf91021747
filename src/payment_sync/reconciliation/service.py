"""Batch reconciliation: recovery sweeps and pending-payment sync."""

import logging
from datetime import timedelta
from typing import Optional

from ..database import PaymentRepository, PaymentStatus, utcnow
from ..errors import LedgerWriteError, OrderNotFound
from .gateway import PaymentGatewayBase
from .models import (
    OrderFailure,
    PendingSyncEntry,
    PendingSyncOutcome,
    PendingSyncResult,
    RecoveryResult,
    SweepAnalysis,
    SweepSummary,
)
from .reconciler import StatusReconciler

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 24
PENDING_SYNC_HOURS = 48
PENDING_SYNC_LIMIT = 25

RECOVERED_PAYMENT_METHOD = "bank_transfer"


class RecoverySweep:
    """Finds payments the ledger missed over a trailing window and fixes them."""

    def __init__(
        self,
        repository: PaymentRepository,
        gateway: PaymentGatewayBase,
        reconciler: Optional[StatusReconciler] = None,
    ):
        """Initialize the sweep.

        Args:
            repository: Ledger access.
            gateway: Gateway client.
            reconciler: Optional reconciler for mismatches. One sharing the
                repository and gateway is created when not provided.
        """
        self.repository = repository
        self.gateway = gateway
        self.reconciler = reconciler or StatusReconciler(repository, gateway)

    async def analyze(self, window_hours: int = DEFAULT_WINDOW_HOURS) -> SweepAnalysis:
        """Classify every gateway transaction in the window against the ledger.

        Does not write anything.

        Args:
            window_hours: Size of the trailing window in hours.

        Returns:
            SweepAnalysis with counts and the missing / mismatched transactions.

        Raises:
            GatewayError: If the gateway listing failed entirely.
        """
        end_time = utcnow()
        start_time = end_time - timedelta(hours=window_hours)

        listing = await self.gateway.list_transactions(window_hours)
        ledger = await self.repository.list_created_between(start_time, end_time)
        by_code = {p.order_code: p for p in ledger}

        analysis = SweepAnalysis(
            window_hours=window_hours,
            start_time=start_time,
            end_time=end_time,
            partial=not listing.complete,
        )

        for txn in listing.transactions:
            if not txn.is_paid:
                continue

            payment = by_code.get(txn.order_code)
            if payment is None:
                # The record may predate the window
                payment = await self.repository.get_by_order_code(txn.order_code)

            if payment is None:
                analysis.missing.append(txn)
            elif not payment.is_completed:
                analysis.mismatched.append(txn)

        analysis.summary = SweepSummary(
            payos_total=len(listing.transactions),
            database_total=len(ledger),
            missing_count=len(analysis.missing),
            mismatch_count=len(analysis.mismatched),
        )

        logger.info(
            f"Sweep analysis for last {window_hours}h: "
            f"{analysis.summary.payos_total} gateway, "
            f"{analysis.summary.database_total} ledger, "
            f"{analysis.summary.missing_count} missing, "
            f"{analysis.summary.mismatch_count} mismatched"
            f"{' (partial gateway listing)' if analysis.partial else ''}"
        )
        return analysis

    async def recover(self, window_hours: int = DEFAULT_WINDOW_HOURS) -> RecoveryResult:
        """Insert missing paid orders and complete mismatched ones.

        A failure on one order is recorded in ``failed`` and the sweep moves
        on; it is not retried within the same pass.

        Args:
            window_hours: Size of the trailing window in hours.

        Returns:
            RecoveryResult with the summary counts and what was fixed.

        Raises:
            GatewayError: If the gateway listing failed entirely.
        """
        started_at = utcnow()
        analysis = await self.analyze(window_hours)

        result = RecoveryResult(
            window_hours=window_hours,
            summary=analysis.summary,
            partial=analysis.partial,
            started_at=started_at,
        )

        for txn in analysis.missing:
            try:
                await self.repository.insert_recovered(
                    order_code=txn.order_code,
                    amount=txn.settled_amount,
                    transaction_id=txn.reference,
                    paid_at=txn.paid_at,
                    created_at=txn.created_at,
                    description=f"Recovered from PayOS - {txn.order_code}",
                    payment_method=RECOVERED_PAYMENT_METHOD,
                )
                result.recovered += 1
            except LedgerWriteError as e:
                result.failed.append(OrderFailure(order_code=txn.order_code, reason=e.reason))

        for txn in analysis.mismatched:
            try:
                outcome = await self.reconciler.reconcile(txn.order_code)
            except OrderNotFound:
                logger.warning(f"Order {txn.order_code} disappeared from the ledger during the sweep")
                result.failed.append(OrderFailure(order_code=txn.order_code, reason="not found in ledger"))
                continue
            except LedgerWriteError as e:
                result.failed.append(OrderFailure(order_code=txn.order_code, reason=e.reason))
                continue

            if outcome.updated:
                result.updated += 1
            elif outcome.record.get("status") != PaymentStatus.COMPLETED.value:
                result.unresolved.append(txn.order_code)

        result.completed_at = utcnow()

        logger.info(
            f"Recovery sweep done: {result.recovered} recovered, {result.updated} updated, "
            f"{len(result.failed)} failed, {len(result.unresolved)} unresolved"
        )
        return result

    async def sync_pending(
        self,
        hours: int = PENDING_SYNC_HOURS,
        limit: int = PENDING_SYNC_LIMIT,
    ) -> PendingSyncResult:
        """Check recent pending payments against the gateway one by one.

        Args:
            hours: Only payments created within this many hours are checked.
            limit: Maximum number of payments checked per run.

        Returns:
            PendingSyncResult with one entry per checked payment.
        """
        since = utcnow() - timedelta(hours=hours)
        pending = await self.repository.list_by_status(
            [PaymentStatus.PENDING.value],
            created_since=since,
            limit=limit,
        )
        result = PendingSyncResult(checked=len(pending))

        logger.info(f"Syncing {len(pending)} pending payments from the last {hours}h")

        for payment in pending:
            order_code = payment.order_code
            try:
                outcome = await self.reconciler.reconcile(order_code)
            except (OrderNotFound, LedgerWriteError) as e:
                logger.warning(f"Pending sync could not reconcile {order_code}: {e}")
                result.results.append(PendingSyncEntry(
                    order_code=order_code,
                    outcome=PendingSyncOutcome.ERROR,
                ))
                continue

            if outcome.updated:
                result.updated += 1
                entry_outcome = PendingSyncOutcome.UPDATED
            elif not outcome.gateway_available:
                entry_outcome = PendingSyncOutcome.ERROR
            else:
                entry_outcome = PendingSyncOutcome.UNCHANGED

            result.results.append(PendingSyncEntry(
                order_code=order_code,
                outcome=entry_outcome,
                payos_status=outcome.gateway_status,
            ))

        return result
