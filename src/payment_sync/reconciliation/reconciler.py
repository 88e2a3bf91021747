"""Single-order reconciliation between the ledger and the gateway."""

import logging
from typing import Awaitable, Callable, Optional

from ..database import Payment, PaymentRepository, PaymentStatus
from ..errors import GatewayError, LedgerWriteError, OrderNotFound
from .gateway import PaymentGatewayBase
from .models import ReconcileResult

logger = logging.getLogger(__name__)

CompletionHook = Callable[[Payment], Awaitable[None]]


class StatusReconciler:
    """Brings one ledger record in line with the gateway's view of the order.

    Only ``pending -> completed`` is ever applied, and only when the gateway
    reports the order as PAID. The completion itself is a conditional write,
    so when two reconciliations of the same order race exactly one of them
    performs the transition and runs ``on_completed``. The hook only runs once
    the completion is committed.
    """

    def __init__(
        self,
        repository: PaymentRepository,
        gateway: PaymentGatewayBase,
        on_completed: Optional[CompletionHook] = None,
    ):
        """Initialize the reconciler.

        Args:
            repository: Ledger access.
            gateway: Gateway client.
            on_completed: Optional coroutine called with the record after this
                reconciler wins the completion write.
        """
        self.repository = repository
        self.gateway = gateway
        self.on_completed = on_completed

    async def reconcile(self, order_code: str) -> ReconcileResult:
        """Reconcile one order.

        Args:
            order_code: Order code to reconcile.

        Returns:
            ReconcileResult with ``updated`` and the current record.

        Raises:
            OrderNotFound: If the ledger has no such order.
            LedgerWriteError: If the completion write or its commit failed.
        """
        order_code = str(order_code).strip()
        payment = await self.repository.get_by_order_code(order_code)
        if payment is None:
            logger.warning(f"Reconcile requested for unknown order {order_code}")
            raise OrderNotFound(order_code)

        # No ledger transaction stays open while the gateway is queried
        await self.repository.release(order_code)

        try:
            gateway_txn = await self.gateway.get_order_status(order_code)
        except GatewayError as e:
            logger.warning(f"Gateway lookup failed for order {order_code}: {e}")
            return ReconcileResult(
                order_code=order_code,
                updated=False,
                record=payment.to_dict(),
                gateway_available=False,
            )

        if gateway_txn is None:
            logger.info(f"Order {order_code} unknown to the gateway; nothing to do")
            return ReconcileResult(order_code=order_code, record=payment.to_dict())

        result = ReconcileResult(
            order_code=order_code,
            record=payment.to_dict(),
            gateway_status=gateway_txn.status,
        )

        if not gateway_txn.is_paid or payment.is_completed:
            return result

        if payment.status != PaymentStatus.PENDING.value:
            logger.warning(
                f"Gateway reports order {order_code} PAID but ledger status is "
                f"{payment.status}; leaving it for manual review"
            )
            return result

        if gateway_txn.settled_amount and gateway_txn.settled_amount != payment.amount:
            logger.warning(
                f"Amount mismatch for order {order_code}: ledger {payment.amount}, "
                f"gateway {gateway_txn.settled_amount}"
            )

        try:
            won = await self.repository.mark_completed(
                order_code,
                transaction_id=gateway_txn.reference,
            )
        except LedgerWriteError:
            logger.error(f"Could not complete order {order_code}; needs manual follow-up")
            raise

        current = await self.repository.get_by_order_code(order_code)
        if current is not None:
            result.record = current.to_dict()
        result.updated = won

        if won and self.on_completed is not None and current is not None:
            await self.on_completed(current)

        return result
