"""
Handler for RecurringInvoiceGenerated events.

A generated child is created already sent, so the customer gets the same
invoice email a manual send would produce.
"""

import logging
from typing import Callable

from core.events import RecurringInvoiceGenerated

logger = logging.getLogger(__name__)


def handle_recurring_invoice_generated(customer_service, organization_service, notifier, config) -> Callable:
    """
    Factory that returns a RecurringInvoiceGenerated handler.

    Args:
        customer_service: CustomerService instance
        organization_service: OrganizationService instance
        notifier: InvoiceNotifier instance
        config: BillingConfig, for the public link

    Returns:
        Handler callable that emails the new invoice
    """

    def handler(event: RecurringInvoiceGenerated):
        invoice = event.invoice
        customer = customer_service.get_by_id(invoice.customer_id)
        if customer is None:
            logger.warning(f"No customer for recurring invoice {invoice.invoice_number}, email skipped")
            return

        organization = organization_service.get_by_id(invoice.organization_id)
        result = notifier.invoice_sent(
            invoice,
            customer.email,
            config.public_url(invoice.public_id),
            customer_name=customer.name,
            company_name=organization.name if organization else "",
        )
        if not result.sent:
            logger.warning(f"Recurring invoice {invoice.invoice_number} email not delivered: {result.error}")

    return handler
