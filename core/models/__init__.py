"""Core domain models."""

from core.models.organization import Organization, OrganizationCreate, OrganizationUpdate, User
from core.models.customer import Customer, CustomerCreate, CustomerUpdate, CustomerInvoiceSettings
from core.models.payment import Payment, PaymentCreate, PaymentMethod, PaymentStatus
from core.models.invoice import (
    Invoice,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceStatus,
    LineItem,
    PublicInvoice,
    RecurringInterval,
)
from core.models.dashboard import CurrencySummary, DashboardStats, RevenueMonth, StatusBreakdown

__all__ = [
    # Organization
    "Organization", "OrganizationCreate", "OrganizationUpdate", "User",
    # Customer
    "Customer", "CustomerCreate", "CustomerUpdate", "CustomerInvoiceSettings",
    # Payment
    "Payment", "PaymentCreate", "PaymentMethod", "PaymentStatus",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus",
    "LineItem", "PublicInvoice", "RecurringInterval",
    # Dashboard
    "CurrencySummary", "DashboardStats", "RevenueMonth", "StatusBreakdown",
]
