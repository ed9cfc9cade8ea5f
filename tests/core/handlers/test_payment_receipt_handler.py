"""Tests for the PaymentRecorded handler."""

from decimal import Decimal
from unittest.mock import Mock

from core.events import PaymentRecorded
from core.handlers.payment_receipt_handler import handle_payment_recorded
from core.notifications import InvoiceNotifier, NotificationResult
from core.services.customer_service import CustomerService
from factories import make_customer, make_invoice, make_payment


def _event():
    invoice = make_invoice()
    return PaymentRecorded.create(payment=make_payment(invoice, Decimal("25")), invoice=invoice)


class TestHandlePaymentRecorded:

    def test_sends_receipt_to_customer(self):
        customers = Mock(spec=CustomerService)
        customers.get_by_id.return_value = make_customer(email="payer@buyer.test")
        notifier = Mock(spec=InvoiceNotifier)
        notifier.payment_receipt.return_value = NotificationResult(sent=True)
        event = _event()

        handle_payment_recorded(customers, notifier)(event)

        notifier.payment_receipt.assert_called_once_with(event.invoice, event.payment, "payer@buyer.test")

    def test_missing_customer_skips_receipt(self):
        customers = Mock(spec=CustomerService)
        customers.get_by_id.return_value = None
        notifier = Mock(spec=InvoiceNotifier)

        handle_payment_recorded(customers, notifier)(_event())

        notifier.payment_receipt.assert_not_called()

    def test_failed_delivery_is_logged_not_raised(self, caplog):
        customers = Mock(spec=CustomerService)
        customers.get_by_id.return_value = make_customer()
        notifier = Mock(spec=InvoiceNotifier)
        notifier.payment_receipt.return_value = NotificationResult(sent=False, error="bounced")

        handle_payment_recorded(customers, notifier)(_event())

        assert "bounced" in caplog.text
