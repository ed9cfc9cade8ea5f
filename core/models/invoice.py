"""Invoice domain models.

Amounts are Decimal and minor-unit agnostic: the ledger does exact decimal
arithmetic and never rounds. Tax rate is a percentage (10 = 10%).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field, field_validator, model_validator

from core.models.payment import PaymentMethod


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class RecurringInterval(str, Enum):
    """How often a recurring invoice spawns a child."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class LineItem(BaseModel):
    """One billable line. ``amount`` is always quantity * unit_price."""

    description: str = Field(..., min_length=1, max_length=1000)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    amount: Decimal = Decimal("0")

    @model_validator(mode="after")
    def derive_amount(self) -> "LineItem":
        self.amount = self.quantity * self.unit_price
        return self


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    customer_id: UUID
    invoice_number: str | None = Field(None, min_length=1, max_length=50)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    issue_date: AwareDatetime | None = None
    due_date: AwareDatetime | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    line_items: list[LineItem] = Field(default_factory=list)
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    notes: str | None = Field(None, max_length=10000)
    terms: str | None = Field(None, max_length=10000)
    template_style: str | None = Field(None, max_length=50)
    allowed_payment_methods: list[PaymentMethod] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_recurring: bool = False
    recurring_interval: RecurringInterval | None = None
    recurring_end_date: AwareDatetime | None = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    @model_validator(mode="after")
    def check_lifecycle_fields(self) -> "InvoiceCreate":
        if self.status not in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            raise ValueError("Invoices can only be created as 'draft' or 'sent'")
        if self.is_recurring and self.recurring_interval is None:
            raise ValueError("recurring_interval is required when is_recurring is set")
        return self


class InvoiceUpdate(BaseModel):
    """
    Editable invoice fields. All optional.

    Only fields explicitly present in the payload are applied, so a null
    ``due_date`` clears the due date while an absent one leaves it alone.
    """

    line_items: list[LineItem] | None = None
    tax_rate: Decimal | None = Field(None, ge=0, le=100)
    issue_date: AwareDatetime | None = None
    due_date: AwareDatetime | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    notes: str | None = Field(None, max_length=10000)
    terms: str | None = Field(None, max_length=10000)
    template_style: str | None = Field(None, max_length=50)
    allowed_payment_methods: list[PaymentMethod] | None = None
    metadata: dict[str, Any] | None = None
    is_recurring: bool | None = None
    recurring_interval: RecurringInterval | None = None
    recurring_end_date: AwareDatetime | None = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    def changes(self) -> dict[str, Any]:
        """Fields the caller actually sent."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class Invoice(BaseModel):
    """Full invoice entity as stored."""

    id: UUID
    organization_id: UUID
    customer_id: UUID
    invoice_number: str
    public_id: str | None = None
    status: InvoiceStatus
    issue_date: datetime
    due_date: datetime | None = None
    currency: str
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    notes: str | None = None
    terms: str | None = None
    template_style: str | None = Field(None, max_length=50)
    allowed_payment_methods: list[PaymentMethod] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    payment_request_id: str | None = None
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    paid_at: datetime | None = None
    is_recurring: bool = False
    recurring_interval: RecurringInterval | None = None
    recurring_end_date: datetime | None = None
    last_recurring_at: datetime | None = None
    next_recurring_at: datetime | None = None
    parent_invoice_id: UUID | None = None
    created_by: UUID | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def is_paid(self) -> bool:
        return self.status == InvoiceStatus.PAID

    @property
    def is_cancelled(self) -> bool:
        return self.status == InvoiceStatus.CANCELLED

    @property
    def is_child(self) -> bool:
        """Generated by the recurrence scheduler from a parent template."""
        return self.parent_invoice_id is not None


class PublicInvoice(BaseModel):
    """Read-only projection served to unauthenticated viewers of a public link."""

    invoice_number: str
    status: InvoiceStatus
    issue_date: datetime
    due_date: datetime | None
    currency: str
    line_items: list[LineItem]
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    notes: str | None
    terms: str | None
    template_style: str | None
    allowed_payment_methods: list[PaymentMethod]
    organization_name: str
    customer_name: str

    @classmethod
    def from_invoice(cls, invoice: Invoice, organization_name: str, customer_name: str) -> "PublicInvoice":
        return cls(
            **invoice.model_dump(include=set(cls.model_fields) - {"organization_name", "customer_name"}),
            organization_name=organization_name,
            customer_name=customer_name,
        )
