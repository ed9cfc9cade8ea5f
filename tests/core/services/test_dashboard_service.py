"""Tests for DashboardService - status breakdown, per-currency summaries and revenue months."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from core.models import InvoiceStatus, StatusBreakdown
from core.services.dashboard_service import DashboardService, merge_revenue, month_keys, summarize


def _breakdown(status, count, total, paid, due, currency="USD"):
    return StatusBreakdown(
        status=status, currency=currency, count=count,
        total=Decimal(total), amount_paid=Decimal(paid), amount_due=Decimal(due),
    )


class TestSummarize:

    def test_headline_figures(self):
        [usd] = summarize([
            _breakdown(InvoiceStatus.PAID, 2, "300", "300", "0"),
            _breakdown(InvoiceStatus.SENT, 1, "100", "0", "100"),
            _breakdown(InvoiceStatus.PARTIAL, 1, "200", "50", "150"),
            _breakdown(InvoiceStatus.OVERDUE, 1, "80", "0", "80"),
        ])

        assert usd.invoice_count == 5
        assert usd.revenue == Decimal("300")
        assert usd.average_paid_invoice == Decimal("150")
        assert usd.outstanding_amount == Decimal("330")
        assert usd.overdue_amount == Decimal("80")
        assert usd.paid_amount == Decimal("350")
        assert (usd.paid_count, usd.open_count, usd.partial_count, usd.overdue_count) == (2, 1, 1, 1)

    def test_currencies_are_never_mixed(self):
        summaries = summarize([
            _breakdown(InvoiceStatus.SENT, 1, "100", "0", "100", currency="USD"),
            _breakdown(InvoiceStatus.SENT, 1, "90", "0", "90", currency="EUR"),
        ])

        assert [(s.currency, s.outstanding_amount) for s in summaries] == [
            ("EUR", Decimal("90")),
            ("USD", Decimal("100")),
        ]

    def test_no_paid_invoices_means_zero_average(self):
        [usd] = summarize([_breakdown(InvoiceStatus.SENT, 3, "300", "0", "300")])
        assert usd.average_paid_invoice == Decimal("0")


class TestRevenueMonths:

    def test_window_crosses_year_end(self):
        now = datetime(2024, 2, 29, 18, 0, tzinfo=timezone.utc)
        assert month_keys(now, 4) == ["2023-11", "2023-12", "2024-01", "2024-02"]

    def test_merge_zero_fills_each_currency(self):
        merged = merge_revenue(
            invoiced=[{"month": "2024-01", "currency": "USD", "amount": Decimal("100")}],
            collected=[{"month": "2024-02", "currency": "USD", "amount": Decimal("40")}],
            months=["2024-01", "2024-02"],
        )

        assert [(p.month, p.invoiced, p.collected) for p in merged] == [
            ("2024-01", Decimal("100"), Decimal("0")),
            ("2024-02", Decimal("0"), Decimal("40")),
        ]


@pytest.fixture
def postgres():
    return MagicMock()


@pytest.fixture
def service(postgres):
    return DashboardService(postgres)


class TestDashboardService:

    def test_stats_excludes_drafts_and_cancelled(self, service, postgres, as_test_org):
        postgres.execute.return_value = [{
            "status": "partial", "currency": "USD", "count": 1,
            "total": Decimal("100"), "amount_paid": Decimal("40"), "amount_due": Decimal("60"),
        }]
        postgres.execute_scalar.return_value = 3

        stats = service.get_stats()

        sql, params = postgres.execute.call_args[0]
        assert "status NOT IN ('draft', 'cancelled')" in sql
        assert params == (as_test_org,)
        assert stats.customer_count == 3
        assert stats.currencies[0].outstanding_amount == Decimal("60")

    def test_revenue_queries_from_start_of_window(self, service, postgres, as_test_org):
        postgres.execute.side_effect = [
            [{"month": "2024-03", "currency": "USD", "amount": Decimal("500")}],
            [{"month": "2024-03", "currency": "USD", "amount": Decimal("200")}],
        ]

        points = service.get_revenue(months=3, now=datetime(2024, 3, 15, tzinfo=timezone.utc))

        since = postgres.execute.call_args_list[0][0][1][1]
        assert since == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert "status = 'completed'" in postgres.execute.call_args_list[1][0][0]
        assert [p.month for p in points] == ["2024-01", "2024-02", "2024-03"]
        assert (points[-1].invoiced, points[-1].collected) == (Decimal("500"), Decimal("200"))
