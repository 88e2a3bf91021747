"""Models for payment reconciliation."""

import enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GatewayStatus(str, enum.Enum):
    """Order statuses reported by PayOS."""
    PAID = "PAID"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    CANCELLED = "CANCELLED"


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class GatewayTransfer(BaseModel):
    """A single money movement attached to a gateway order."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reference: Optional[str] = Field(None, description="Gateway reference of the transfer")
    amount: int = Field(default=0, description="Transferred amount in minor units")
    transaction_date_time: Optional[datetime] = Field(None, alias="transactionDateTime")

    @field_validator("transaction_date_time", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        return value or None

    @field_validator("transaction_date_time")
    @classmethod
    def normalize_time(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value)


class GatewayTransaction(BaseModel):
    """Read-only view of an order as the gateway reports it."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(None, description="Gateway payment link id")
    order_code: str = Field(..., alias="orderCode")
    amount: int = Field(default=0, description="Order amount in minor units")
    amount_paid: int = Field(default=0, alias="amountPaid")
    status: str = Field(..., description="Gateway status, e.g. PAID or PENDING")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    transactions: List[GatewayTransfer] = Field(default_factory=list)

    @field_validator("order_code", mode="before")
    @classmethod
    def order_code_as_string(cls, value: Any) -> Any:
        # PayOS returns numeric order codes
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def upper_status(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("created_at", mode="before")
    @classmethod
    def blank_created_at(cls, value: Any) -> Any:
        return value or None

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _to_naive_utc(value)

    @property
    def is_paid(self) -> bool:
        return self.status == GatewayStatus.PAID.value

    @property
    def reference(self) -> Optional[str]:
        """Reference of the first transfer, used as the ledger transaction_id."""
        if self.transactions:
            return self.transactions[0].reference
        return None

    @property
    def paid_at(self) -> Optional[datetime]:
        if self.transactions:
            return self.transactions[0].transaction_date_time
        return None

    @property
    def settled_amount(self) -> int:
        return self.amount_paid or self.amount


class TransactionListing(BaseModel):
    """Result of listing gateway transactions for a window."""
    transactions: List[GatewayTransaction] = Field(default_factory=list)
    complete: bool = Field(default=True, description="False when some pages could not be fetched")
    pages_fetched: int = Field(default=0)
    error_message: Optional[str] = None


class ReconcileResult(BaseModel):
    """Outcome of reconciling a single order."""
    order_code: str
    updated: bool = False
    record: Dict[str, Any] = Field(default_factory=dict)
    gateway_status: Optional[str] = None
    gateway_available: bool = True

    @property
    def message(self) -> str:
        if self.updated:
            return "Payment status updated to completed"
        if not self.gateway_available:
            return "Payment gateway unavailable; showing last known status"
        return "Payment status unchanged"

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": self.record,
            "updated": self.updated,
            "payos_status": self.gateway_status,
            "message": self.message,
        }


class SweepSummary(BaseModel):
    """Counts produced by comparing the gateway and the ledger over a window."""
    payos_total: int = 0
    database_total: int = 0
    missing_count: int = 0
    mismatch_count: int = 0

    @property
    def miss_rate(self) -> float:
        if self.payos_total == 0:
            return 0.0
        return (self.missing_count + self.mismatch_count) / self.payos_total

    def to_dict(self) -> Dict[str, int]:
        return {
            "payosTotal": self.payos_total,
            "databaseTotal": self.database_total,
            "missingCount": self.missing_count,
            "mismatchCount": self.mismatch_count,
        }


class SweepAnalysis(BaseModel):
    """Classification of every gateway transaction in a window."""
    window_hours: int
    start_time: datetime
    end_time: datetime
    summary: SweepSummary = Field(default_factory=SweepSummary)
    missing: List[GatewayTransaction] = Field(default_factory=list)
    mismatched: List[GatewayTransaction] = Field(default_factory=list)
    partial: bool = False

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "missing": [t.order_code for t in self.missing],
            "mismatched": [t.order_code for t in self.mismatched],
            "partial": self.partial,
        }


class OrderFailure(BaseModel):
    """An order the sweep could not fix in this pass."""
    order_code: str
    reason: str


class RecoveryResult(BaseModel):
    """Result of a recovery sweep."""
    window_hours: int
    summary: SweepSummary = Field(default_factory=SweepSummary)
    recovered: int = 0
    updated: int = 0
    failed: List[OrderFailure] = Field(default_factory=list)
    unresolved: List[str] = Field(default_factory=list)
    partial: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.recovered + self.updated

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "recovered": self.recovered,
            "updated": self.updated,
            "total": self.total,
            "failed": [f.model_dump() for f in self.failed],
            "unresolved": list(self.unresolved),
            "partial": self.partial,
        }


class PendingSyncOutcome(str, enum.Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    ERROR = "error"


class PendingSyncEntry(BaseModel):
    order_code: str
    outcome: PendingSyncOutcome
    payos_status: Optional[str] = None


class PendingSyncResult(BaseModel):
    """Result of checking recent pending payments against the gateway."""
    checked: int = 0
    updated: int = 0
    results: List[PendingSyncEntry] = Field(default_factory=list)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "results": [r.model_dump(mode="json") for r in self.results],
        }
