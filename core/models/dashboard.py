"""Read-only money summaries for the dashboard.

Amounts are never summed across currencies: every figure is reported per
currency.
"""

from decimal import Decimal

from pydantic import BaseModel

from core.models.invoice import InvoiceStatus


class StatusBreakdown(BaseModel):
    """Invoice count and money totals for one status in one currency."""

    status: InvoiceStatus
    currency: str
    count: int
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal


class CurrencySummary(BaseModel):
    """Headline figures for one currency."""

    currency: str
    invoice_count: int = 0
    paid_count: int = 0
    open_count: int = 0
    partial_count: int = 0
    overdue_count: int = 0
    revenue: Decimal = Decimal("0")
    outstanding_amount: Decimal = Decimal("0")
    overdue_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    average_paid_invoice: Decimal = Decimal("0")


class DashboardStats(BaseModel):
    """Derived money state of the organization's sent invoices."""

    customer_count: int
    currencies: list[CurrencySummary]
    breakdown: list[StatusBreakdown]


class RevenueMonth(BaseModel):
    """Invoiced versus collected for one calendar month (UTC)."""

    month: str
    currency: str
    invoiced: Decimal = Decimal("0")
    collected: Decimal = Decimal("0")
