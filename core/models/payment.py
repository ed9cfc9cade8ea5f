"""Payment domain models.

Amounts are Decimal in the invoice's currency. A payment is immutable once
completed; the only later transition is completed -> refunded.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field


class PaymentMethod(str, Enum):
    """How the customer paid."""

    STRIPE = "stripe"
    CRYPTO = "crypto"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"


class PaymentStatus(str, Enum):
    """Payment lifecycle status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentCreate(BaseModel):
    """A payment to apply against an invoice."""

    invoice_id: UUID
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    transaction_reference: str | None = Field(None, min_length=1, max_length=255)
    processed_at: AwareDatetime | None = None  # Backdate for manual reconciliation
    notes: str | None = Field(None, max_length=2000)


class Payment(BaseModel):
    """Full payment entity as stored."""

    id: UUID
    organization_id: UUID
    invoice_id: UUID
    customer_id: UUID
    amount: Decimal
    currency: str
    method: PaymentMethod
    transaction_reference: str | None = None
    external_reference: dict[str, Any] = Field(default_factory=dict)
    status: PaymentStatus
    notes: str | None = None
    refunded_amount: Decimal = Decimal("0")
    refund_reason: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED
