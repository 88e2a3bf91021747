"""Repository layer for the payments ledger."""

import logging
from datetime import datetime
from typing import Optional, List, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import LedgerWriteError
from .models import Payment, PaymentStatus, utcnow

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Ledger access for payment records, keyed by order code."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def _commit(self, order_code: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Commit failed for payment {order_code}: {e}")
            await self.session.rollback()
            raise LedgerWriteError(str(order_code), f"commit failed: {e}") from e

    async def release(self, order_code: str) -> None:
        """End the current transaction so no lock or snapshot is held across a gateway call.

        Raises:
            LedgerWriteError: If the commit failed.
        """
        await self._commit(order_code)

    async def create(
        self,
        order_code: str,
        amount: int,
        description: Optional[str] = None,
        payment_method: Optional[str] = None,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        doctor_name: Optional[str] = None,
        status: str = PaymentStatus.PENDING.value,
        created_at: Optional[datetime] = None,
    ) -> Payment:
        """Create a new payment record, as the checkout flow does.

        Args:
            order_code: Order code shared with the gateway.
            amount: Expected amount in minor units.
            description: Optional free-text description.
            payment_method: Optional payment method label.
            patient_id: Optional patient identifier (display only).
            doctor_id: Optional doctor identifier (display only).
            doctor_name: Optional doctor name (display only).
            status: Initial status.
            created_at: Optional creation time override.

        Returns:
            Created Payment instance.
        """
        now = utcnow()
        payment = Payment(
            order_code=str(order_code),
            amount=amount,
            status=status,
            description=description,
            payment_method=payment_method,
            patient_id=patient_id,
            doctor_id=doctor_id,
            doctor_name=doctor_name,
            created_at=created_at or now,
            updated_at=created_at or now,
        )
        self.session.add(payment)
        await self.session.flush()

        logger.info(f"Created payment {payment.order_code} with status {status}")
        return payment

    async def get_by_order_code(self, order_code: str) -> Optional[Payment]:
        """Get the current state of a payment by order code.

        Args:
            order_code: Order code to look up.

        Returns:
            Payment instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Payment)
            .where(Payment.order_code == str(order_code))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_created_between(
        self,
        start_time: datetime,
        end_time: datetime,
    ) -> List[Payment]:
        """List payments created inside a time window.

        Args:
            start_time: Start of the window (inclusive).
            end_time: End of the window (inclusive).

        Returns:
            List of Payment instances ordered by creation time.
        """
        result = await self.session.execute(
            select(Payment)
            .where(
                Payment.created_at >= start_time,
                Payment.created_at <= end_time,
            )
            .order_by(Payment.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_by_status(
        self,
        statuses: Sequence[str],
        created_since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Payment]:
        """List payments in the given statuses, newest first.

        Args:
            statuses: Statuses to include.
            created_since: Optional lower bound on creation time.
            limit: Maximum number of results.

        Returns:
            List of Payment instances.
        """
        query = select(Payment).where(Payment.status.in_(list(statuses)))
        if created_since is not None:
            query = query.where(Payment.created_at >= created_since)
        result = await self.session.execute(
            query.order_by(Payment.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def mark_completed(
        self,
        order_code: str,
        transaction_id: Optional[str],
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """Move a pending payment to completed in one conditional UPDATE.

        The statement only matches rows still in ``pending``, so of two
        concurrent callers at most one sees a row updated. The write is
        committed before this returns.

        Args:
            order_code: Order code to complete.
            transaction_id: Gateway reference for the charge, if known.
            paid_at: Completion time. Defaults to now.

        Returns:
            True if this call performed the transition, False otherwise.

        Raises:
            LedgerWriteError: If the database rejected the write.
        """
        now = utcnow()
        stmt = (
            update(Payment)
            .where(
                Payment.order_code == str(order_code),
                Payment.status == PaymentStatus.PENDING.value,
            )
            .values(
                status=PaymentStatus.COMPLETED.value,
                transaction_id=transaction_id,
                paid_at=paid_at or now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Failed to complete payment {order_code}: {e}")
            raise LedgerWriteError(str(order_code), str(e)) from e

        won = result.rowcount == 1
        await self._commit(order_code)
        if won:
            logger.info(f"Payment {order_code} marked completed (transaction {transaction_id})")
        else:
            logger.info(f"Payment {order_code} was no longer pending; completion skipped")
        return won

    async def insert_recovered(
        self,
        order_code: str,
        amount: int,
        transaction_id: Optional[str],
        paid_at: Optional[datetime],
        created_at: Optional[datetime] = None,
        description: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Payment:
        """Insert a completed payment that the gateway knows about but we never recorded.

        The insert is committed before this returns.

        Args:
            order_code: Order code from the gateway.
            amount: Amount paid, in minor units.
            transaction_id: Gateway reference for the charge.
            paid_at: Time the gateway recorded the charge.
            created_at: Time the gateway created the order.
            description: Optional description.
            payment_method: Optional payment method label.

        Returns:
            The inserted Payment instance.

        Raises:
            LedgerWriteError: If the insert failed, including when the order
                code was inserted by someone else in the meantime.
        """
        now = utcnow()
        payment = Payment(
            order_code=str(order_code),
            amount=amount,
            status=PaymentStatus.COMPLETED.value,
            transaction_id=transaction_id,
            paid_at=paid_at or now,
            description=description,
            payment_method=payment_method,
            created_at=created_at or now,
            updated_at=now,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(payment)
                await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert recovered payment {order_code}: {e}")
            raise LedgerWriteError(str(order_code), str(e)) from e

        await self._commit(order_code)
        logger.info(f"Inserted recovered payment {order_code} as completed")
        return payment
