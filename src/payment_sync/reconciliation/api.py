"""API endpoints for payment status checks and recovery sweeps."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import limiter, verify_sync_token
from ..database import PaymentRepository, get_db
from .gateway import PaymentGatewayBase, get_payment_gateway
from .reconciler import StatusReconciler
from .service import DEFAULT_WINDOW_HOURS, PENDING_SYNC_HOURS, PENDING_SYNC_LIMIT, RecoverySweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

MAX_WINDOW_HOURS = 720


class ForceSyncBody(BaseModel):
    """Request body for forcing a status sync of one order."""
    model_config = ConfigDict(populate_by_name=True)

    order_code: str = Field(..., alias="orderCode", description="Order code to sync")


def get_gateway() -> PaymentGatewayBase:
    return get_payment_gateway("payos")


async def get_repository(db: AsyncSession = Depends(get_db)) -> PaymentRepository:
    return PaymentRepository(db)


def get_reconciler(
    repository: PaymentRepository = Depends(get_repository),
    gateway: PaymentGatewayBase = Depends(get_gateway),
) -> StatusReconciler:
    return StatusReconciler(repository, gateway)


def get_recovery_sweep(
    repository: PaymentRepository = Depends(get_repository),
    gateway: PaymentGatewayBase = Depends(get_gateway),
) -> RecoverySweep:
    return RecoverySweep(repository, gateway)


def _require_order_code(order_code: str) -> str:
    order_code = (order_code or "").strip()
    if not order_code:
        raise HTTPException(status_code=400, detail="orderCode is required")
    return order_code


@router.get("/check-status")
async def check_status(
    order_code: str = Query(..., alias="orderCode"),
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """
    Return the ledger record for an order, completing it first if the
    gateway reports it as paid.
    """
    order_code = _require_order_code(order_code)
    result = await reconciler.reconcile(order_code)
    return result.to_response_dict()


@router.post("/force-sync")
@limiter.limit("10/minute")
async def force_sync(
    request: Request,
    body: ForceSyncBody,
    reconciler: StatusReconciler = Depends(get_reconciler),
):
    """Reconcile one order against the gateway on demand."""
    order_code = _require_order_code(body.order_code)
    logger.info(f"Force sync requested for order {order_code}")
    result = await reconciler.reconcile(order_code)
    return result.to_response_dict()


@router.get("/recovery", dependencies=[Depends(verify_sync_token)])
async def recovery(
    action: str = Query(default="recover", description="recover or check"),
    hours: int = Query(default=DEFAULT_WINDOW_HOURS, ge=1, le=MAX_WINDOW_HOURS),
    sweep: RecoverySweep = Depends(get_recovery_sweep),
):
    """
    Compare gateway transactions with the ledger over the last ``hours``.

    ``action=check`` only reports; ``action=recover`` also inserts missing
    paid orders and completes mismatched ones.
    """
    if action == "check":
        analysis = await sweep.analyze(hours)
        return {"success": True, "data": analysis.to_response_dict()}
    if action == "recover":
        result = await sweep.recover(hours)
        return {"success": True, "data": result.to_response_dict()}
    raise HTTPException(status_code=400, detail="action must be one of: recover, check")


@router.post("/auto-sync", dependencies=[Depends(verify_sync_token)])
async def auto_sync(
    hours: int = Query(default=PENDING_SYNC_HOURS, ge=1, le=MAX_WINDOW_HOURS),
    limit: int = Query(default=PENDING_SYNC_LIMIT, ge=1, le=100),
    sweep: RecoverySweep = Depends(get_recovery_sweep),
):
    """Check recent pending payments against the gateway."""
    result = await sweep.sync_pending(hours=hours, limit=limit)
    return {"success": True, "data": result.to_response_dict()}
