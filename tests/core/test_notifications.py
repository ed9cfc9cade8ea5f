"""Tests for InvoiceNotifier - notification failures become results, never exceptions."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest

from clients.email_client import EmailGatewayClient, EmailGatewayError
from core.notifications import InvoiceNotifier, NotificationResult
from factories import make_invoice, make_payment


@pytest.fixture
def email_client():
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def invoice():
    return make_invoice(
        invoice_number="INV-0042",
        due_date=datetime(2024, 7, 1, tzinfo=timezone.utc),
        issue_date=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


class TestNotificationResult:

    def test_delivered_has_no_warning(self):
        assert NotificationResult(sent=True).warning is None

    def test_failure_warning_names_error(self):
        assert NotificationResult(sent=False, error="timeout").warning == "Notification not sent: timeout"


class TestInvoiceSent:

    def test_sends_link_and_amount(self, email_client, invoice):
        result = InvoiceNotifier(email_client).invoice_sent(
            invoice, "jane@buyer.test", "https://app.test/invoice/abc",
            customer_name="Jane", company_name="Acme",
        )

        assert result.sent is True
        kwargs = email_client.send_invoice_email.call_args.kwargs
        assert kwargs["to"] == "jane@buyer.test"
        assert kwargs["invoice_number"] == "INV-0042"
        assert kwargs["amount"] == "100"
        assert kwargs["invoice_url"] == "https://app.test/invoice/abc"
        assert kwargs["due_date"] == "2024-07-01"

    def test_gateway_error_becomes_result(self, email_client, invoice):
        email_client.send_invoice_email.side_effect = EmailGatewayError("Gateway error: quota")

        result = InvoiceNotifier(email_client).invoice_sent(invoice, "jane@buyer.test", "https://x")

        assert result.sent is False
        assert "quota" in result.error

    def test_unconfigured_gateway_is_reported(self, invoice):
        result = InvoiceNotifier(None).invoice_sent(invoice, "jane@buyer.test", "https://x")

        assert result.sent is False
        assert result.error == "email gateway not configured"


class TestPaymentReceipt:

    def test_partial_payment_mentions_balance(self, email_client, invoice):
        partial = invoice.model_copy(update={"amount_paid": Decimal("40"), "amount_due": Decimal("60")})

        InvoiceNotifier(email_client).payment_receipt(
            partial, make_payment(partial, Decimal("40")), "jane@buyer.test"
        )

        body = email_client.send_email.call_args.kwargs["body"]
        assert "40 USD" in body
        assert "Remaining balance: 60 USD" in body

    def test_full_payment_has_no_balance_line(self, email_client, invoice):
        paid = invoice.model_copy(update={"amount_paid": Decimal("100"), "amount_due": Decimal("0")})

        InvoiceNotifier(email_client).payment_receipt(
            paid, make_payment(paid, Decimal("100")), "jane@buyer.test"
        )

        assert "Remaining balance" not in email_client.send_email.call_args.kwargs["body"]
