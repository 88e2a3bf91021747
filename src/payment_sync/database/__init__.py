"""Database module for the payments ledger."""

from .models import (
    Payment,
    Base,
    PaymentStatus,
    utcnow,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import PaymentRepository

__all__ = [
    # Models
    "Payment",
    "Base",
    "PaymentStatus",
    "utcnow",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "PaymentRepository",
]
