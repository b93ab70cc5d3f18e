"""
Domain models for the AML velocity monitor.

Defines the transaction, checkpoint, and alert schemas aligned with
`aml_monitor/infrastructure/schema.sql`, plus the result containers returned
by the orchestrator and the change monitor.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CheckpointStatus(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PassReason(str, Enum):
    GROWTH = "GROWTH"
    REPLACED = "REPLACED"
    MANUAL = "MANUAL"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class DecisionKind(str, Enum):
    NONE = "NONE"
    TRIGGERED = "TRIGGERED"


def derive_entity_id(first: str, last: str) -> str:
    """Entity key used to group transactions of the same card holder."""
    return f"{first}_{last}"


class TransactionRecord(BaseModel):
    """
    Representation of a single row in the transactions table.
    """

    transaction_id: int = Field(..., description="Primary key (BIGSERIAL).")
    entity_id: str = Field(..., description="Card holder key derived from identity attributes.")
    event_timestamp: datetime = Field(..., description="When the transaction happened.")
    amount: Decimal = Field(..., description="Transaction amount.")
    merchant: str = Field("", description="Merchant name.")
    category: str = Field("", description="Merchant category.")
    latitude: Optional[float] = Field(None, description="Transaction latitude.")
    longitude: Optional[float] = Field(None, description="Transaction longitude.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }


class Checkpoint(BaseModel):
    """
    Durable progress record for one named process.
    """

    process_name: str
    last_processed_timestamp: Optional[datetime] = None
    total_records_processed: int = 0
    status: CheckpointStatus = CheckpointStatus.IDLE
    updated_at: Optional[datetime] = None
    alerts_generated: int = 0
    processing_duration_seconds: Optional[float] = None
    last_run_date: Optional[date] = None
    last_error: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def watermark(self) -> datetime:
        """Watermark with a missing value read as the earliest possible time."""
        return self.last_processed_timestamp or EPOCH


class AlertRecord(BaseModel):
    """
    One detected anomaly, as written to the alerts table.
    """

    alert_id: int = Field(..., ge=1)
    entity_id: str
    alert_date: date
    alert_type: str = "VELOCITY"
    risk_score: int = Field(..., ge=0, le=100)
    description: str
    priority: Priority
    total_amount: Decimal
    status: str = "OPEN"
    detection_date: date
    created_at: datetime
    rapid_count: int = 0
    source_watermark: Optional[datetime] = None

    model_config = {"frozen": True}


class AlertSummaryRow(BaseModel):
    alert_type: str
    priority: Priority
    count: int

    model_config = {"frozen": True}


@dataclass
class PassResult:
    """
    Outcome of one detection pass.
    """

    process_name: str
    reason: PassReason
    status: CheckpointStatus
    records_processed: int = 0
    alerts_generated: int = 0
    previous_watermark: Optional[datetime] = None
    new_watermark: Optional[datetime] = None
    duration_seconds: float = 0.0
    peak_rss_bytes: Optional[int] = None


@dataclass
class Observation:
    row_count: int
    last_processed: Optional[datetime]


@dataclass
class TriggerDecision:
    """
    What the change monitor decided on one poll tick.
    """

    kind: DecisionKind
    row_count: int
    delta: int = 0
    reason: Optional[PassReason] = None
    baseline: bool = False
    result: Optional[PassResult] = None
    error: Optional[str] = None


__all__ = [
    "EPOCH",
    "AlertRecord",
    "AlertSummaryRow",
    "Checkpoint",
    "CheckpointStatus",
    "DecisionKind",
    "Observation",
    "PassReason",
    "PassResult",
    "Priority",
    "TransactionRecord",
    "TriggerDecision",
    "derive_entity_id",
]
