"""
Invoice service: persistence for the invoice ledger.

Business rules live in core.ledger; this service loads invoices, applies a
ledger transition and writes the result back with an optimistic version
check. A write that loses a race is re-read and the transition re-validated
against the fresh state, so a stale read can never overwrite a concurrent
payment or edit.

Side effects (emails, events) run only after the write committed. Their
failures come back as warnings next to the committed invoice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient, is_unique_violation
from core import ledger
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoiceSent
from core.exceptions import (
    ConcurrentModification,
    ConflictError,
    DuplicateInvoiceNumber,
    InvoiceNotFound,
    ValidationError,
)
from core.models import (
    Customer,
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceUpdate,
    Organization,
    PaymentMethod,
    PublicInvoice,
)
from core.notifications import InvoiceNotifier
from core.numbering import NumberingAllocator, escape_like
from core.services.customer_service import CustomerService
from core.services.organization_service import OrganizationService
from utils.request_context import get_current_organization_id, get_current_user_id, organization_context
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

INVOICE_NUMBER_CONSTRAINT = "invoices_invoice_number_key"
PUBLIC_ID_CONSTRAINT = "invoices_public_id_key"

DEFAULT_PAYMENT_METHODS = [PaymentMethod.BANK_TRANSFER]

# Columns rewritten on every versioned save
_MUTABLE_COLUMNS = (
    "public_id", "status", "issue_date", "due_date", "currency", "line_items",
    "subtotal", "tax_rate", "tax_amount", "total", "amount_paid", "amount_due",
    "notes", "terms", "template_style", "allowed_payment_methods", "metadata",
    "payment_request_id", "sent_at", "viewed_at", "paid_at",
    "is_recurring", "recurring_interval", "recurring_end_date",
    "last_recurring_at", "next_recurring_at",
)
_INSERT_COLUMNS = (
    "id", "organization_id", "customer_id", "invoice_number", "parent_invoice_id",
    "created_by", *_MUTABLE_COLUMNS, "version", "created_at", "updated_at",
)


def _column_values(invoice: Invoice, columns: tuple[str, ...]) -> list[Any]:
    values = []
    for column in columns:
        value = getattr(invoice, column)
        if column == "line_items":
            value = Json([item.model_dump(mode="json") for item in value])
        elif column == "allowed_payment_methods":
            value = [method.value for method in value]
        elif column in ("status", "recurring_interval") and value is not None:
            value = value.value
        values.append(value)
    return values


@dataclass
class InvoiceResult:
    """A committed invoice plus any side-effect warnings."""

    invoice: Invoice
    warnings: list[str] = field(default_factory=list)


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        allocator: NumberingAllocator,
        customers: CustomerService,
        organizations: OrganizationService,
        notifier: InvoiceNotifier,
        config: BillingConfig,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.allocator = allocator
        self.customers = customers
        self.organizations = organizations
        self.notifier = notifier
        self.config = config

    # -------------------------------------------------------------------------
    # Persistence primitives
    # -------------------------------------------------------------------------

    def insert(self, invoice: Invoice, db=None) -> Invoice:
        """Insert a fully built invoice. ``db`` may be an open Transaction."""
        db = db or self.postgres
        placeholders = ", ".join(["%s"] * len(_INSERT_COLUMNS))
        row = db.execute_single(
            f"""
            INSERT INTO invoices ({', '.join(_INSERT_COLUMNS)})
            VALUES ({placeholders})
            RETURNING *
            """,
            tuple(_column_values(invoice, _INSERT_COLUMNS))
        )
        return Invoice.model_validate(row)

    def save_versioned(self, current: Invoice, updated: Invoice, db=None) -> Invoice | None:
        """
        Write ``updated`` only if the stored row is still at ``current.version``.

        Returns:
            The stored invoice, or None if another writer got there first
        """
        db = db or self.postgres
        set_clause = ", ".join(f"{column} = %s" for column in _MUTABLE_COLUMNS)
        row = db.execute_single(
            f"""
            UPDATE invoices
            SET {set_clause}, version = version + 1, updated_at = %s
            WHERE id = %s AND version = %s
            RETURNING *
            """,
            (*_column_values(updated, _MUTABLE_COLUMNS), now_utc(), current.id, current.version)
        )
        return Invoice.model_validate(row) if row else None

    def mutate(
        self,
        invoice_id: UUID,
        transition: Callable[[Invoice], Invoice],
    ) -> tuple[Invoice, Invoice]:
        """
        Apply ``transition`` with optimistic concurrency.

        The transition runs against freshly read state on every attempt, so
        any rule it enforces is checked against the row actually written.

        Returns:
            (state before, state after). Both are the same object when the
            transition changed nothing.

        Raises:
            InvoiceNotFound: invoice missing
            ConcurrentModification: every attempt lost its race
        """
        for attempt in range(self.config.optimistic_retries):
            current = self.get_by_id(invoice_id)
            if current is None:
                raise InvoiceNotFound(invoice_id)

            updated = transition(current)
            if updated == current:
                return current, current

            try:
                saved = self.save_versioned(current, updated)
            except UniqueViolation as e:
                # Freshly generated public_id collided; the next attempt draws another
                if is_unique_violation(e, PUBLIC_ID_CONSTRAINT):
                    continue
                raise

            if saved is not None:
                return current, saved

            logger.info(f"Invoice {invoice_id} changed concurrently, retrying (attempt {attempt + 1})")

        raise ConcurrentModification(f"Invoice {invoice_id} kept changing, giving up")

    def _audit_update(self, before: Invoice, after: Invoice) -> None:
        changes = compute_changes(before.model_dump(mode="json"), after.model_dump(mode="json"))
        if changes:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=after.id,
                action=AuditAction.UPDATE,
                changes=changes
            )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def _build(
        self,
        data: InvoiceCreate,
        organization: Organization,
        customer: Customer,
        now: datetime,
    ) -> Invoice:
        issue_date = data.issue_date or now
        due_date = data.due_date
        if due_date is None and organization.default_payment_terms_days is not None:
            due_date = issue_date + timedelta(days=organization.default_payment_terms_days)

        if due_date is not None and due_date < issue_date:
            raise ValidationError("due_date cannot be before issue_date")
        if data.recurring_end_date is not None and data.recurring_end_date < issue_date:
            raise ValidationError("recurring_end_date cannot be before issue_date")

        invoice = Invoice(
            id=uuid4(),
            organization_id=organization.id,
            customer_id=customer.id,
            invoice_number=data.invoice_number or "",
            status=InvoiceStatus.DRAFT,
            issue_date=issue_date,
            due_date=due_date,
            currency=data.currency or organization.currency,
            line_items=data.line_items,
            subtotal=Decimal("0"),
            tax_rate=data.tax_rate if data.tax_rate is not None else organization.default_tax_rate,
            tax_amount=Decimal("0"),
            total=Decimal("0"),
            amount_paid=Decimal("0"),
            amount_due=Decimal("0"),
            notes=data.notes,
            terms=data.terms,
            template_style=data.template_style,
            allowed_payment_methods=data.allowed_payment_methods or list(DEFAULT_PAYMENT_METHODS),
            metadata=data.metadata,
            is_recurring=data.is_recurring,
            recurring_interval=data.recurring_interval if data.is_recurring else None,
            recurring_end_date=data.recurring_end_date if data.is_recurring else None,
            created_by=get_current_user_id(),
            created_at=now,
            updated_at=now,
        )

        if data.status == InvoiceStatus.SENT:
            return ledger.send_invoice(invoice, now, self.config.public_id_length)
        return ledger.recompute(invoice, now)

    def create(self, data: InvoiceCreate) -> InvoiceResult:
        """
        Create an invoice in draft or sent.

        Without an explicit number the allocator hands one out; an insert
        that still collides on the number moves the counter past every
        number taken with that prefix and draws a fresh one, up to
        ``number_allocation_attempts`` times.

        Raises:
            OrganizationNotFound / CustomerNotFound: missing references
            ValidationError: bad dates, or sent with no line items
            DuplicateInvoiceNumber: explicit number already in use
        """
        organization = self.organizations.get_current()
        customer = self.customers.get_active(data.customer_id)
        now = now_utc()

        draft = self._build(data, organization, customer, now)

        if data.invoice_number:
            self.allocator.reserve(organization.id, data.invoice_number)

        invoice = None
        for attempt in range(self.config.number_allocation_attempts):
            number = data.invoice_number or self.allocator.allocate(organization.id, customer)
            candidate = draft.model_copy(update={"invoice_number": number})
            try:
                invoice = self.insert(candidate)
                break
            except UniqueViolation as e:
                if is_unique_violation(e, INVOICE_NUMBER_CONSTRAINT):
                    if data.invoice_number:
                        raise DuplicateInvoiceNumber(data.invoice_number) from e
                    logger.warning(f"Invoice number {number} already taken, allocating another")
                    self.allocator.skip_taken(organization.id, number, customer)
                    continue
                if is_unique_violation(e, PUBLIC_ID_CONSTRAINT):
                    draft = draft.model_copy(update={
                        "public_id": ledger.generate_public_id(self.config.public_id_length)
                    })
                    continue
                raise

        if invoice is None:
            raise ConflictError(
                f"Could not allocate a free invoice number after "
                f"{self.config.number_allocation_attempts} attempts"
            )

        self.audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.CREATE,
            changes={"created": invoice.model_dump(mode="json")}
        )
        logger.info(f"Created invoice {invoice.invoice_number} ({invoice.status.value})")

        warnings = []
        if invoice.status != InvoiceStatus.DRAFT:
            warnings = self._announce_sent(invoice, customer, organization)

        return InvoiceResult(invoice=invoice, warnings=warnings)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found in the current organization, None otherwise.
            Cancelled invoices are still returned.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )

        if row is None:
            return None

        return Invoice.model_validate(row)

    def get_by_public_id(self, public_id: str) -> Invoice | None:
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE public_id = %s",
            (public_id,)
        )
        return Invoice.model_validate(row) if row else None

    def list_for_organization(
        self,
        status: InvoiceStatus | None = None,
        customer_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None,
    ) -> list[Invoice]:
        """
        List the organization's invoices, newest first.

        Args:
            status: Only invoices in this status
            customer_id: Only this customer's invoices
            search: Case-insensitive substring of the invoice number
            limit: Maximum results
            offset: Offset for pagination
        """
        conditions = ["organization_id = %s"]
        params: list[Any] = [get_current_organization_id()]
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)
        if customer_id is not None:
            conditions.append("customer_id = %s")
            params.append(customer_id)
        if search:
            conditions.append("invoice_number ILIKE %s")
            params.append(f"%{escape_like(search)}%")
        params.extend([limit, offset])

        rows = self.postgres.execute(
            f"""
            SELECT * FROM invoices
            WHERE {' AND '.join(conditions)}
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            tuple(params)
        )

        return [Invoice.model_validate(row) for row in rows]

    def list_for_customer(self, customer_id: UUID, limit: int = 50) -> list[Invoice]:
        """List a customer's invoices, newest first."""
        return self.list_for_organization(customer_id=customer_id, limit=limit)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def update(self, invoice_id: UUID, data: InvoiceUpdate) -> Invoice:
        """
        Edit an invoice and re-derive its totals and status.

        Raises:
            InvoiceNotFound: invoice missing
            InvoiceAlreadyPaid / InvoiceCancelled: invoice is locked
            ValidationError: edit would break an invoice rule
        """
        changes = data.changes()
        before, after = self.mutate(invoice_id, lambda current: ledger.apply_edit(current, changes))
        self._audit_update(before, after)
        return after

    def send(self, invoice_id: UUID) -> InvoiceResult:
        """
        Send (or resend) an invoice and email the customer its public link.

        The status change commits before the email goes out; a failed email
        becomes a warning.

        Raises:
            InvoiceNotFound: invoice missing
            InvoiceCancelled: invoice was cancelled
            ValidationError: invoice has no line items
        """
        before, after = self.mutate(
            invoice_id,
            lambda current: ledger.send_invoice(current, now_utc(), self.config.public_id_length),
        )
        self._audit_update(before, after)
        logger.info(f"Invoice {after.invoice_number} sent")

        customer = self.customers.get_by_id(after.customer_id)
        organization = self.organizations.get_by_id(after.organization_id)
        warnings = self._announce_sent(after, customer, organization)
        return InvoiceResult(invoice=after, warnings=warnings)

    def _announce_sent(
        self,
        invoice: Invoice,
        customer: Customer | None,
        organization: Organization | None,
    ) -> list[str]:
        warnings = []
        if customer is None:
            warnings.append(f"Notification not sent: customer {invoice.customer_id} not found")
        else:
            result = self.notifier.invoice_sent(
                invoice,
                customer.email,
                self.config.public_url(invoice.public_id),
                customer_name=customer.name,
                company_name=organization.name if organization else "",
            )
            if result.warning:
                warnings.append(result.warning)

        self.event_bus.publish(InvoiceSent.create(invoice=invoice))
        return warnings

    def cancel(self, invoice_id: UUID) -> Invoice:
        """
        Cancel an invoice. Payments already recorded stay on record.

        Raises:
            InvoiceNotFound: invoice missing
            InvoiceAlreadyPaid: paid invoices cannot be cancelled
        """
        before, after = self.mutate(invoice_id, ledger.cancel_invoice)
        self._audit_update(before, after)
        return after

    def view_public(self, public_id: str) -> PublicInvoice:
        """
        Serve an invoice to an unauthenticated viewer of its public link.

        The first fetch of a sent invoice marks it viewed. Runs without a
        request organization: the owning organization is resolved through a
        database function that only maps public ids.

        Raises:
            InvoiceNotFound: unknown public id
        """
        organization_id = self.postgres.execute_scalar(
            "SELECT public_invoice_organization(%s)",
            (public_id,)
        )
        if organization_id is None:
            raise InvoiceNotFound(public_id)

        with organization_context(organization_id):
            invoice = self.get_by_public_id(public_id)
            if invoice is None:
                raise InvoiceNotFound(public_id)

            if invoice.status == InvoiceStatus.SENT:
                before, invoice = self.mutate(invoice.id, ledger.view_invoice)
                self._audit_update(before, invoice)

            organization = self.organizations.get_by_id(invoice.organization_id)
            customer = self.customers.get_by_id(invoice.customer_id)

        return PublicInvoice.from_invoice(
            invoice,
            organization_name=organization.name if organization else "",
            customer_name=customer.name if customer else "",
        )

    def append_note(self, invoice_id: UUID, line: str) -> Invoice:
        """
        Append a system line to the invoice notes.

        Bypasses the edit lock: payment notes land on invoices that the same
        payment just marked paid.
        """
        def add_line(current: Invoice) -> Invoice:
            notes = f"{current.notes}\n{line}" if current.notes else line
            return current.model_copy(update={"notes": notes})

        before, after = self.mutate(invoice_id, add_line)
        self._audit_update(before, after)
        return after

    def set_payment_request_id(self, invoice_id: UUID, request_id: str) -> Invoice:
        """Store the external payment-request reference on an invoice."""
        before, after = self.mutate(
            invoice_id,
            lambda current: current.model_copy(update={"payment_request_id": request_id}),
        )
        self._audit_update(before, after)
        return after

    def refresh_overdue(self, now: datetime | None = None) -> int:
        """
        Re-derive status for open invoices whose due date has passed.

        Overdue is otherwise only noticed on the next mutation. Safe to run
        on an admin connection: each invoice is handled inside its own
        organization's context.

        Returns:
            Number of invoices that changed status
        """
        now = now or now_utc()
        rows = self.postgres.execute(
            """
            SELECT id, organization_id FROM invoices
            WHERE status IN ('sent', 'viewed', 'partial')
              AND due_date IS NOT NULL AND due_date < %s
            ORDER BY due_date
            LIMIT %s
            """,
            (now, self.config.scheduler_batch_size)
        )

        changed = 0
        for row in rows:
            with organization_context(row["organization_id"]):
                try:
                    before, after = self.mutate(row["id"], lambda current: ledger.recompute(current, now))
                except Exception:
                    logger.exception(f"Overdue refresh failed for invoice {row['id']}")
                    continue
                if after is not before:
                    self._audit_update(before, after)
                    changed += 1

        if changed:
            logger.info(f"Marked {changed} invoices overdue")
        return changed
