"""Customer domain models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr, field_validator


class CustomerInvoiceSettings(BaseModel):
    """Private invoice-numbering sequence for one customer (e.g. ACME-001)."""

    prefix: str = Field(..., min_length=1, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    next_number: int = Field(1, ge=1)


class CustomerCreate(BaseModel):
    """Data required to create a customer."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=10000)
    wallet_address: str | None = Field(None, max_length=100)
    invoice_settings: CustomerInvoiceSettings | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class CustomerUpdate(BaseModel):
    """Data that can be updated on a customer. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    company: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=10000)
    wallet_address: str | None = Field(None, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str | None) -> str | None:
        return value.strip().lower() if value else value


class Customer(BaseModel):
    """Full customer entity as stored."""

    id: UUID
    organization_id: UUID
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    notes: str | None = None
    wallet_address: str | None = None
    invoice_prefix: str | None = None
    invoice_next_number: int | None = None
    total_paid: Decimal = Decimal("0")
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @property
    def invoice_settings(self) -> CustomerInvoiceSettings | None:
        """Numbering override, only when both prefix and next number are set."""
        if self.invoice_prefix and self.invoice_next_number:
            return CustomerInvoiceSettings(
                prefix=self.invoice_prefix,
                next_number=self.invoice_next_number,
            )
        return None
