"""
Payment service: the only writer of invoice.amount_paid.

Recording a payment writes three rows in one transaction: the payment, the
invoice (versioned compare-and-set) and the customer's total_paid. Either
all three commit or none do. The amount-due check runs against the exact
invoice version being replaced, so two concurrent payments whose sum exceeds
the amount due can never both commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from psycopg2 import Error as DatabaseError
from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient, is_unique_violation
from core import ledger
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded, PaymentRefunded
from core.exceptions import (
    BillingError,
    ConcurrentModification,
    DuplicatePaymentReference,
    InvalidStateTransition,
    InvoiceNotFound,
    PaymentNotFound,
    ValidationError,
)
from core.models import Invoice, Payment, PaymentMethod, PaymentStatus
from core.services.invoice_service import InvoiceService
from utils.request_context import get_current_organization_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

PAYMENT_REFERENCE_CONSTRAINT = "payments_org_reference_completed_key"


class _StaleInvoice(Exception):
    """Versioned invoice write lost a race; rolls the transaction back."""


@dataclass
class PaymentResult:
    """Committed invoice and payment plus any side-effect warnings."""

    invoice: Invoice
    payment: Payment
    warnings: list[str] = field(default_factory=list)


class PaymentService:
    """Service for payment operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        invoices: InvoiceService,
        config: BillingConfig,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.invoices = invoices
        self.config = config

    def _find_completed_reference(self, reference: str) -> Payment | None:
        row = self.postgres.execute_single(
            """
            SELECT * FROM payments
            WHERE organization_id = %s AND transaction_reference = %s AND status = 'completed'
            """,
            (get_current_organization_id(), reference)
        )
        return Payment.model_validate(row) if row else None

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        method: PaymentMethod,
        reference: str | None = None,
        processed_at: datetime | None = None,
        notes: str | None = None,
        external_reference: dict[str, Any] | None = None,
    ) -> PaymentResult:
        """
        Apply a completed payment to an invoice.

        Args:
            invoice_id: Invoice being paid
            amount: Payment amount, > 0 and <= the invoice's amount due
            method: How the customer paid
            reference: External transaction id; unique among the
                organization's completed payments
            processed_at: Backdate for manual reconciliation (defaults to now)
            notes: Free-form payment notes
            external_reference: Network identifiers (request id, tx hash)

        Raises:
            ValidationError: amount not positive
            InvoiceNotFound: invoice missing
            AlreadyPaid / InvoiceCancelled / AmountExceedsDue: invoice state
            DuplicatePaymentReference: reference already recorded
            ConcurrentModification: invoice kept changing under us
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        if reference is not None and self._find_completed_reference(reference) is not None:
            raise DuplicatePaymentReference(reference)

        organization_id = get_current_organization_id()

        for attempt in range(self.config.optimistic_retries):
            current = self.invoices.get_by_id(invoice_id)
            if current is None:
                raise InvoiceNotFound(invoice_id)

            now = now_utc()
            updated = ledger.apply_payment(current, amount, now)

            try:
                with self.postgres.transaction() as tx:
                    invoice = self.invoices.save_versioned(current, updated, tx)
                    if invoice is None:
                        raise _StaleInvoice()

                    row = tx.execute_single(
                        """
                        INSERT INTO payments (
                            id, organization_id, invoice_id, customer_id, amount, currency,
                            method, transaction_reference, external_reference, status,
                            notes, refunded_amount, processed_at, created_at, updated_at
                        ) VALUES (
                            %s, %s, %s, %s, %s, %s,
                            %s, %s, %s, %s,
                            %s, 0, %s, %s, %s
                        )
                        RETURNING *
                        """,
                        (
                            uuid4(), organization_id, invoice.id, invoice.customer_id, amount, invoice.currency,
                            method.value, reference, external_reference or {}, PaymentStatus.COMPLETED.value,
                            notes, processed_at or now, now, now
                        )
                    )

                    tx.execute(
                        "UPDATE customers SET total_paid = total_paid + %s, updated_at = %s WHERE id = %s",
                        (amount, now, invoice.customer_id)
                    )
            except _StaleInvoice:
                logger.info(f"Invoice {invoice_id} changed during payment, retrying (attempt {attempt + 1})")
                continue
            except UniqueViolation as e:
                if reference is not None and is_unique_violation(e, PAYMENT_REFERENCE_CONSTRAINT):
                    raise DuplicatePaymentReference(reference) from e
                raise
            break
        else:
            raise ConcurrentModification(f"Invoice {invoice_id} kept changing, payment not recorded")

        payment = Payment.model_validate(row)
        logger.info(
            f"Recorded payment {payment.id} of {amount} {payment.currency} on invoice "
            f"{invoice.invoice_number} ({current.status.value} -> {invoice.status.value})"
        )

        self.audit.log_change(
            entity_type="payment",
            entity_id=payment.id,
            action=AuditAction.CREATE,
            changes={"created": payment.model_dump(mode="json")}
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes={
                "amount_paid": {"old": str(current.amount_paid), "new": str(invoice.amount_paid)},
                "status": {"old": current.status.value, "new": invoice.status.value},
                "payment_recorded": str(amount),
            }
        )

        warnings = []
        invoice = self._append_payment_note(invoice, payment, warnings)

        self.event_bus.publish(PaymentRecorded.create(payment=payment, invoice=invoice))
        if invoice.is_paid and not current.is_paid:
            self.event_bus.publish(InvoicePaid.create(invoice=invoice))

        return PaymentResult(invoice=invoice, payment=payment, warnings=warnings)

    def _append_payment_note(self, invoice: Invoice, payment: Payment, warnings: list[str]) -> Invoice:
        """Best effort: the payment is committed whether or not this works."""
        line = (
            f"Payment of {payment.amount} {payment.currency} received via "
            f"{payment.method.value} on {payment.processed_at.date().isoformat()}"
        )
        if payment.transaction_reference:
            line += f" (ref {payment.transaction_reference})"
        try:
            return self.invoices.append_note(invoice.id, line)
        except (BillingError, DatabaseError) as e:
            logger.warning(f"Could not append payment note to invoice {invoice.id}: {e}")
            warnings.append(f"Payment note not added to invoice: {e}")
            return invoice

    def mark_paid(
        self,
        invoice_id: UUID,
        method: PaymentMethod,
        reference: str | None = None,
        processed_at: datetime | None = None,
        notes: str | None = None,
    ) -> PaymentResult:
        """
        Settle an invoice in full with one payment for the amount due.

        Raises:
            InvoiceNotFound: invoice missing
            AlreadyPaid / InvoiceCancelled: invoice state
            ValidationError: nothing is due
        """
        invoice = self.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise InvoiceNotFound(invoice_id)
        if invoice.is_paid or invoice.is_cancelled:
            # Let the ledger raise the precise error
            ledger.check_payable(invoice, invoice.amount_due)
        if invoice.amount_due <= 0:
            raise ValidationError(f"Invoice {invoice_id} has nothing due")

        return self.record_payment(
            invoice_id,
            invoice.amount_due,
            method,
            reference=reference,
            processed_at=processed_at,
            notes=notes,
        )

    def refund(self, payment_id: UUID, reason: str | None = None) -> PaymentResult:
        """
        Refund a completed payment in full.

        The payment moves to refunded, the invoice's amount_paid drops by the
        payment amount and its status is re-derived (paid falls back to
        partial or sent). paid_at keeps its first value.

        Raises:
            PaymentNotFound: payment missing
            InvalidStateTransition: payment is not completed
        """
        payment = self.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        if not payment.is_completed:
            raise InvalidStateTransition(f"Payment {payment_id} is {payment.status.value} and cannot be refunded")

        for attempt in range(self.config.optimistic_retries):
            current = self.invoices.get_by_id(payment.invoice_id)
            if current is None:
                raise InvoiceNotFound(payment.invoice_id)

            now = now_utc()
            updated = ledger.apply_refund(current, payment.amount, now)

            try:
                with self.postgres.transaction() as tx:
                    invoice = self.invoices.save_versioned(current, updated, tx)
                    if invoice is None:
                        raise _StaleInvoice()

                    row = tx.execute_single(
                        """
                        UPDATE payments
                        SET status = %s, refunded_amount = amount, refund_reason = %s, updated_at = %s
                        WHERE id = %s AND status = %s
                        RETURNING *
                        """,
                        (PaymentStatus.REFUNDED.value, reason, now, payment_id, PaymentStatus.COMPLETED.value)
                    )
                    if row is None:
                        raise InvalidStateTransition(f"Payment {payment_id} was refunded concurrently")

                    tx.execute(
                        "UPDATE customers SET total_paid = total_paid - %s, updated_at = %s WHERE id = %s",
                        (payment.amount, now, invoice.customer_id)
                    )
            except _StaleInvoice:
                logger.info(f"Invoice {current.id} changed during refund, retrying (attempt {attempt + 1})")
                continue
            break
        else:
            raise ConcurrentModification(f"Invoice {payment.invoice_id} kept changing, refund not recorded")

        refunded = Payment.model_validate(row)
        logger.info(f"Refunded payment {payment_id} ({payment.amount} {payment.currency})")

        self.audit.log_change(
            entity_type="payment",
            entity_id=payment_id,
            action=AuditAction.UPDATE,
            changes={
                "status": {"old": PaymentStatus.COMPLETED.value, "new": PaymentStatus.REFUNDED.value},
                "refund_reason": {"old": None, "new": reason},
            }
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes={
                "amount_paid": {"old": str(current.amount_paid), "new": str(invoice.amount_paid)},
                "status": {"old": current.status.value, "new": invoice.status.value},
                "payment_refunded": str(payment.amount),
            }
        )

        self.event_bus.publish(PaymentRefunded.create(payment=refunded, invoice=invoice))
        return PaymentResult(invoice=invoice, payment=refunded)

    def get_by_id(self, payment_id: UUID) -> Payment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE id = %s",
            (payment_id,)
        )
        return Payment.model_validate(row) if row else None

    def get_by_reference(self, reference: str) -> Payment | None:
        """Any payment carrying this transaction reference, refunded ones included."""
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE transaction_reference = %s ORDER BY created_at ASC LIMIT 1",
            (reference,)
        )
        return Payment.model_validate(row) if row else None

    def list_for_invoice(self, invoice_id: UUID) -> list[Payment]:
        """All payments of an invoice, oldest first."""
        rows = self.postgres.execute(
            "SELECT * FROM payments WHERE invoice_id = %s ORDER BY created_at ASC",
            (invoice_id,)
        )
        return [Payment.model_validate(row) for row in rows]

    def list_for_organization(
        self,
        status: PaymentStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payment]:
        """
        List the organization's payments, newest first.

        Args:
            status: Only payments in this status
            limit: Maximum results
            offset: Offset for pagination
        """
        if status is not None:
            rows = self.postgres.execute(
                """
                SELECT * FROM payments
                WHERE status = %s
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                (status.value, limit, offset)
            )
        else:
            rows = self.postgres.execute(
                """
                SELECT * FROM payments
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                (limit, offset)
            )
        return [Payment.model_validate(row) for row in rows]
