"""
Handler for PaymentRecorded events.

Emails the customer a receipt for every completed payment.
"""

import logging
from typing import Callable

from core.events import PaymentRecorded

logger = logging.getLogger(__name__)


def handle_payment_recorded(customer_service, notifier) -> Callable:
    """
    Factory that returns a PaymentRecorded handler.

    Args:
        customer_service: CustomerService instance
        notifier: InvoiceNotifier instance

    Returns:
        Handler callable that sends the receipt
    """

    def handler(event: PaymentRecorded):
        invoice = event.invoice
        customer = customer_service.get_by_id(invoice.customer_id)
        if customer is None:
            logger.warning(f"No customer for invoice {invoice.id}, receipt skipped")
            return

        result = notifier.payment_receipt(invoice, event.payment, customer.email)
        if not result.sent:
            logger.warning(f"Receipt for payment {event.payment.id} not delivered: {result.error}")

    return handler
