import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .auth import limiter
from .config import get_settings
from .database import init_db, close_db
from .errors import GatewayError, LedgerWriteError, OrderNotFound
from .reconciliation.api import router as payment_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail at startup, before any I/O, when configuration is incomplete
    settings = get_settings()
    await init_db(settings.database_url)
    yield
    await close_db()


app = FastAPI(title="Payment Sync - PayOS reconciliation", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(payment_router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(OrderNotFound)
async def order_not_found_handler(request: Request, exc: OrderNotFound):
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "Payment not found in database"},
    )


@app.exception_handler(LedgerWriteError)
async def ledger_write_error_handler(request: Request, exc: LedgerWriteError):
    logger.error(f"Ledger write failed for order {exc.order_code}: {exc.reason}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Failed to update payment record"},
    )


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    logger.warning(f"Gateway failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"success": False, "error": "Payment gateway unavailable"},
    )


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "payment-sync"}
