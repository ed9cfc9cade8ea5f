"""
Payment-request network integration.

Creates an on-chain payment request for an invoice and later reconciles the
payments the network observed. Reconciled events go through the regular
PaymentService.record_payment path with the transaction hash as the payment
reference, so a hash is applied at most once no matter how often an invoice
is synced.
"""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from clients.payment_request_client import PaymentNetworkError, PaymentRequestClient
from core.exceptions import (
    AlreadyPaid,
    AmountExceedsDue,
    DuplicatePaymentReference,
    ExternalServiceError,
    InvoiceCancelled,
    InvoiceNotFound,
    ValidationError,
)
from core.models import Invoice, Payment, PaymentMethod
from core.services.customer_service import CustomerService
from core.services.invoice_service import InvoiceService
from core.services.organization_service import OrganizationService
from core.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    invoice: Invoice
    recorded: list[Payment] = field(default_factory=list)
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)


class PaymentSyncService:
    """Links invoices to payment requests and imports their payments."""

    def __init__(
        self,
        client: PaymentRequestClient,
        invoices: InvoiceService,
        payments: PaymentService,
        customers: CustomerService,
        organizations: OrganizationService,
    ):
        self.client = client
        self.invoices = invoices
        self.payments = payments
        self.customers = customers
        self.organizations = organizations

    def _get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        return invoice

    def create_request(self, invoice_id: UUID) -> Invoice:
        """
        Open a payment request for the invoice's amount due.

        Raises:
            InvoiceNotFound: invoice missing
            ValidationError: organization has no payee wallet, or nothing is due
            ExternalServiceError: the network rejected the request
        """
        invoice = self._get_invoice(invoice_id)
        if invoice.is_paid or invoice.is_cancelled:
            raise ValidationError(f"Invoice {invoice.invoice_number} is {invoice.status.value}")
        if invoice.amount_due <= 0:
            raise ValidationError(f"Invoice {invoice.invoice_number} has nothing due")

        organization = self.organizations.get_current()
        if not organization.wallet_address:
            raise ValidationError("Set a wallet address on the organization before requesting crypto payments")

        customer = self.customers.get_by_id(invoice.customer_id)

        try:
            request_id = self.client.create_request(
                payee_wallet=organization.wallet_address,
                payer_wallet=customer.wallet_address if customer else None,
                amount=invoice.amount_due,
                currency=invoice.currency,
                invoice_number=invoice.invoice_number,
                due_date=invoice.due_date,
            )
        except PaymentNetworkError as e:
            raise ExternalServiceError("payment network", str(e)) from e

        return self.invoices.set_payment_request_id(invoice.id, request_id)

    def sync_invoice(self, invoice_id: UUID) -> SyncResult:
        """
        Record every network payment not yet on the invoice.

        A tx hash already on any of the organization's payments is skipped,
        refunded ones included, so a refunded transfer is not imported again. Events the
        invoice can no longer accept (overpayment, already paid) are left out
        and reported as warnings; nothing is clamped.

        Raises:
            InvoiceNotFound: invoice missing
            ValidationError: invoice has no payment request
            ExternalServiceError: the network could not be read
        """
        invoice = self._get_invoice(invoice_id)
        if not invoice.payment_request_id:
            raise ValidationError(f"Invoice {invoice.invoice_number} has no payment request")

        try:
            events = self.client.get_payment_events(invoice.payment_request_id)
        except PaymentNetworkError as e:
            raise ExternalServiceError("payment network", str(e)) from e

        result = SyncResult(invoice=invoice)
        for event in events:
            if self.payments.get_by_reference(event.tx_hash) is not None:
                result.skipped += 1
                continue
            try:
                recorded = self.payments.record_payment(
                    invoice.id,
                    event.amount,
                    PaymentMethod.CRYPTO,
                    reference=event.tx_hash,
                    processed_at=event.occurred_at,
                    external_reference={
                        "request_network_id": invoice.payment_request_id,
                        "blockchain_tx_hash": event.tx_hash,
                        "blockchain_network": event.network,
                    },
                )
            except DuplicatePaymentReference:
                result.skipped += 1
                continue
            except (AmountExceedsDue, AlreadyPaid, InvoiceCancelled) as e:
                logger.warning(f"Payment {event.tx_hash} not applied to invoice {invoice.id}: {e}")
                result.warnings.append(f"Transaction {event.tx_hash} not applied: {e}")
                continue

            result.recorded.append(recorded.payment)
            result.warnings.extend(recorded.warnings)
            result.invoice = recorded.invoice

        if result.recorded:
            logger.info(f"Synced {len(result.recorded)} network payments onto invoice {invoice.invoice_number}")
        return result
