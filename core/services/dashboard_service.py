"""
Dashboard service: aggregates over the invoice ledger.

Reads only. Drafts and cancelled invoices are left out of every figure.
All queries are scoped to the current organization via RLS.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from clients.postgres_client import PostgresClient
from core.models import (
    CurrencySummary,
    DashboardStats,
    InvoiceStatus,
    RevenueMonth,
    StatusBreakdown,
)
from utils.request_context import get_current_organization_id
from utils.timezone import add_months, now_utc, to_utc

_OPEN_STATUSES = {InvoiceStatus.SENT, InvoiceStatus.VIEWED}
_UNPAID_STATUSES = {InvoiceStatus.SENT, InvoiceStatus.VIEWED, InvoiceStatus.PARTIAL, InvoiceStatus.OVERDUE}


def summarize(breakdown: Iterable[StatusBreakdown]) -> list[CurrencySummary]:
    """Fold the per-status breakdown into one summary per currency."""
    summaries: dict[str, CurrencySummary] = {}
    for row in breakdown:
        summary = summaries.setdefault(row.currency, CurrencySummary(currency=row.currency))
        summary.invoice_count += row.count
        summary.paid_amount += row.amount_paid

        if row.status == InvoiceStatus.PAID:
            summary.paid_count += row.count
            summary.revenue += row.total
        elif row.status in _OPEN_STATUSES:
            summary.open_count += row.count
        elif row.status == InvoiceStatus.PARTIAL:
            summary.partial_count += row.count
        elif row.status == InvoiceStatus.OVERDUE:
            summary.overdue_count += row.count
            summary.overdue_amount += row.amount_due

        if row.status in _UNPAID_STATUSES:
            summary.outstanding_amount += row.amount_due

    for summary in summaries.values():
        if summary.paid_count:
            summary.average_paid_invoice = summary.revenue / summary.paid_count

    return [summaries[currency] for currency in sorted(summaries)]


def month_keys(now: datetime, months: int) -> list[str]:
    """'YYYY-MM' for the last ``months`` calendar months, oldest first, ending with now's month."""
    first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return [add_months(first, -offset).strftime("%Y-%m") for offset in range(months - 1, -1, -1)]


def _point(points: dict, row: dict[str, Any]) -> RevenueMonth:
    key = (row["month"], row["currency"])
    if key not in points:
        points[key] = RevenueMonth(month=row["month"], currency=row["currency"])
    return points[key]


def merge_revenue(
    invoiced: Iterable[dict[str, Any]],
    collected: Iterable[dict[str, Any]],
    months: list[str],
) -> list[RevenueMonth]:
    """
    Combine invoiced and collected sums into one row per month and currency.

    Every month of the window is present for each currency seen, zero-filled.
    """
    points: dict[tuple[str, str], RevenueMonth] = {}
    currencies = set()

    for row in invoiced:
        currencies.add(row["currency"])
        _point(points, row).invoiced += Decimal(row["amount"])

    for row in collected:
        currencies.add(row["currency"])
        _point(points, row).collected += Decimal(row["amount"])

    return [
        points.get((month, currency), RevenueMonth(month=month, currency=currency))
        for currency in sorted(currencies)
        for month in months
    ]


class DashboardService:
    """Money summaries for the current organization."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_stats(self) -> DashboardStats:
        """Counts and money totals by status and currency, plus headline figures."""
        rows = self.postgres.execute(
            """
            SELECT status, currency, COUNT(*) AS count,
                   COALESCE(SUM(total), 0) AS total,
                   COALESCE(SUM(amount_paid), 0) AS amount_paid,
                   COALESCE(SUM(amount_due), 0) AS amount_due
            FROM invoices
            WHERE organization_id = %s AND status NOT IN ('draft', 'cancelled')
            GROUP BY status, currency
            ORDER BY currency, status
            """,
            (get_current_organization_id(),)
        )
        breakdown = [StatusBreakdown.model_validate(row) for row in rows]

        customer_count = self.postgres.execute_scalar(
            "SELECT COUNT(*) FROM customers WHERE is_active"
        )

        return DashboardStats(
            customer_count=customer_count or 0,
            currencies=summarize(breakdown),
            breakdown=breakdown,
        )

    def get_revenue(self, months: int = 6, now: datetime | None = None) -> list[RevenueMonth]:
        """
        Invoiced (by issue date) against collected (by completed payment date)
        per calendar month, for the last ``months`` months including this one.
        """
        now = to_utc(now or now_utc())
        window = month_keys(now, months)
        since = datetime.strptime(window[0], "%Y-%m").replace(tzinfo=timezone.utc)
        organization_id = get_current_organization_id()

        invoiced = self.postgres.execute(
            """
            SELECT to_char(issue_date AT TIME ZONE 'UTC', 'YYYY-MM') AS month, currency,
                   SUM(total) AS amount
            FROM invoices
            WHERE organization_id = %s AND status NOT IN ('draft', 'cancelled')
              AND issue_date >= %s
            GROUP BY 1, 2
            """,
            (organization_id, since)
        )
        collected = self.postgres.execute(
            """
            SELECT to_char(COALESCE(processed_at, created_at) AT TIME ZONE 'UTC', 'YYYY-MM') AS month,
                   currency, SUM(amount) AS amount
            FROM payments
            WHERE organization_id = %s AND status = 'completed'
              AND COALESCE(processed_at, created_at) >= %s
            GROUP BY 1, 2
            """,
            (organization_id, since)
        )

        return merge_revenue(invoiced, collected, window)
