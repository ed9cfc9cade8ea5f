"""Organization and user domain models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, EmailStr, field_validator


class OrganizationCreate(BaseModel):
    """Data required to create an organization."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    currency: str = Field("USD", min_length=3, max_length=3)
    invoice_prefix: str = Field("INV", min_length=1, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    default_tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100)
    default_payment_terms_days: int | None = Field(None, ge=0, le=365)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class OrganizationUpdate(BaseModel):
    """Organization settings. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    currency: str | None = Field(None, min_length=3, max_length=3)
    invoice_prefix: str | None = Field(None, min_length=1, max_length=20, pattern=r"^[A-Za-z0-9_]+$")
    default_tax_rate: Decimal | None = Field(None, ge=0, le=100)
    default_payment_terms_days: int | None = Field(None, ge=0, le=365)
    wallet_address: str | None = Field(None, max_length=100)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class Organization(BaseModel):
    """Full organization entity as stored."""

    id: UUID
    owner_id: UUID
    name: str
    email: str
    currency: str
    invoice_prefix: str
    invoice_number_sequence: int = Field(..., ge=1)
    default_tax_rate: Decimal
    default_payment_terms_days: int | None = None
    wallet_address: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class User(BaseModel):
    """Internal user mapped from a verified identity-provider subject."""

    id: UUID
    external_id: str
    email: str
    organization_id: UUID
    created_at: datetime

    model_config = {"from_attributes": True}
