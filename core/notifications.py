"""
Customer-facing notifications.

Every method returns a NotificationResult instead of raising: delivery runs
after the financial change committed, and a failed email is reported to the
caller as a warning, never as an error.
"""

import logging
from dataclasses import dataclass

from clients.email_client import EmailGatewayClient, EmailGatewayError
from core.models import Invoice, Payment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    sent: bool
    error: str | None = None

    @property
    def warning(self) -> str | None:
        """Text for the response warnings list, None when delivered."""
        if self.sent:
            return None
        return f"Notification not sent: {self.error}"


class InvoiceNotifier:
    """Sends invoice and receipt emails through the email gateway."""

    def __init__(self, email_client: EmailGatewayClient | None):
        # None when no gateway is configured (local development)
        self.email_client = email_client

    def _deliver(self, description: str, send) -> NotificationResult:
        if self.email_client is None:
            logger.warning(f"Email gateway not configured, {description} not sent")
            return NotificationResult(sent=False, error="email gateway not configured")
        try:
            send()
        except EmailGatewayError as e:
            logger.warning(f"Failed to send {description}: {e}")
            return NotificationResult(sent=False, error=str(e))
        return NotificationResult(sent=True)

    def invoice_sent(
        self,
        invoice: Invoice,
        customer_email: str,
        public_url: str,
        customer_name: str = "",
        company_name: str = "",
    ) -> NotificationResult:
        """Email the customer a link to a newly sent invoice."""
        return self._deliver(
            f"invoice email for {invoice.invoice_number}",
            lambda: self.email_client.send_invoice_email(
                to=customer_email,
                invoice_number=invoice.invoice_number,
                amount=str(invoice.amount_due),
                currency=invoice.currency,
                invoice_url=public_url,
                company_name=company_name,
                customer_name=customer_name,
                due_date=invoice.due_date.date().isoformat() if invoice.due_date else None,
            ),
        )

    def payment_receipt(self, invoice: Invoice, payment: Payment, customer_email: str) -> NotificationResult:
        """Thank-you email after a payment settles an invoice."""
        body = (
            f"Thank you! We received your payment of {payment.amount} {payment.currency} "
            f"for invoice {invoice.invoice_number}."
        )
        if invoice.amount_due > 0:
            body += f" Remaining balance: {invoice.amount_due} {invoice.currency}."
        return self._deliver(
            f"receipt for {invoice.invoice_number}",
            lambda: self.email_client.send_email(
                to=customer_email,
                subject=f"Payment received for invoice {invoice.invoice_number}",
                body=body,
            ),
        )
