"""
Customer service for CRUD operations.

Handles customer lifecycle: create, read, update, soft delete. Customers are
never physically deleted; inactive ones drop out of listings but still
resolve for invoice and payment history. All queries are scoped to the
current organization via RLS.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient, is_unique_violation
from core.audit import AuditLogger, AuditAction, compute_changes
from core.exceptions import CustomerNotFound, DuplicateCustomerEmail
from core.models import Customer, CustomerCreate, CustomerInvoiceSettings, CustomerUpdate
from utils.request_context import get_current_organization_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

ACTIVE_EMAIL_CONSTRAINT = "customers_org_email_active_key"

# Valid columns that can be updated
_UPDATABLE_COLUMNS = {"name", "email", "phone", "company", "notes", "wallet_address"}
_REQUIRED_COLUMNS = {"name", "email"}


class CustomerService:
    """Service for customer operations."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger):
        self.postgres = postgres
        self.audit = audit

    def create(self, data: CustomerCreate) -> Customer:
        """
        Create a new customer.

        Raises:
            DuplicateCustomerEmail: an active customer already uses the email
        """
        organization_id = get_current_organization_id()
        settings = data.invoice_settings
        now = now_utc()

        try:
            row = self.postgres.execute_single(
                """
                INSERT INTO customers (
                    id, organization_id, name, email, phone, company, notes, wallet_address,
                    invoice_prefix, invoice_next_number, total_paid, is_active,
                    created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, 0, TRUE,
                    %s, %s
                )
                RETURNING *
                """,
                (
                    uuid4(), organization_id, data.name, data.email, data.phone,
                    data.company, data.notes, data.wallet_address,
                    settings.prefix if settings else None,
                    settings.next_number if settings else None,
                    now, now
                )
            )
        except UniqueViolation as e:
            if is_unique_violation(e, ACTIVE_EMAIL_CONSTRAINT):
                raise DuplicateCustomerEmail(data.email) from e
            raise

        customer = Customer.model_validate(row)

        self.audit.log_change(
            entity_type="customer",
            entity_id=customer.id,
            action=AuditAction.CREATE,
            changes={"created": data.model_dump(mode="json", exclude_none=True)}
        )

        return customer

    def get_by_id(self, customer_id: UUID) -> Customer | None:
        """
        Get customer by ID, active or not.

        Returns:
            Customer if found in the current organization, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM customers WHERE id = %s",
            (customer_id,)
        )

        if row is None:
            return None

        return Customer.model_validate(row)

    def get_active(self, customer_id: UUID) -> Customer:
        """
        Get a customer that can still be billed.

        Raises:
            CustomerNotFound: missing or soft-deleted
        """
        customer = self.get_by_id(customer_id)
        if customer is None or not customer.is_active:
            raise CustomerNotFound(customer_id)
        return customer

    def _update_columns(self, current: Customer, updates: dict) -> Customer:
        set_parts = [f"{column} = %s" for column in updates]
        params = list(updates.values())
        set_parts.append("updated_at = %s")
        params.extend([now_utc(), current.id])

        try:
            row = self.postgres.execute_single(
                f"""
                UPDATE customers
                SET {', '.join(set_parts)}
                WHERE id = %s
                RETURNING *
                """,
                tuple(params)
            )
        except UniqueViolation as e:
            if is_unique_violation(e, ACTIVE_EMAIL_CONSTRAINT):
                raise DuplicateCustomerEmail(updates.get("email", current.email)) from e
            raise

        if row is None:
            raise CustomerNotFound(current.id)

        updated = Customer.model_validate(row)

        changes = compute_changes(
            current.model_dump(mode="json"),
            updated.model_dump(mode="json")
        )
        if changes:
            self.audit.log_change(
                entity_type="customer",
                entity_id=current.id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return updated

    def update(self, customer_id: UUID, data: CustomerUpdate) -> Customer:
        """
        Update customer fields.

        Only fields present in the payload are changed; optional contact
        fields can be cleared with an explicit null.

        Raises:
            CustomerNotFound: missing or soft-deleted
            DuplicateCustomerEmail: new email taken by another active customer
        """
        current = self.get_active(customer_id)

        updates = {}
        for field, value in data.model_dump(exclude_unset=True).items():
            if field not in _UPDATABLE_COLUMNS:
                logger.warning(f"Attempted to update unknown field '{field}' on customer {customer_id}")
                continue
            if value is None and field in _REQUIRED_COLUMNS:
                continue
            updates[field] = value

        if not updates:
            return current

        return self._update_columns(current, updates)

    def update_invoice_settings(
        self,
        customer_id: UUID,
        settings: CustomerInvoiceSettings | None
    ) -> Customer:
        """
        Set or clear a customer's private numbering series.

        Clearing sends the customer's future invoices back to the
        organization sequence.
        """
        current = self.get_active(customer_id)
        return self._update_columns(current, {
            "invoice_prefix": settings.prefix if settings else None,
            "invoice_next_number": settings.next_number if settings else None,
        })

    def delete(self, customer_id: UUID) -> bool:
        """
        Soft delete a customer.

        Returns:
            True if deactivated, False if not found or already inactive
        """
        current = self.get_by_id(customer_id)
        if current is None or not current.is_active:
            return False

        now = now_utc()
        self.postgres.execute(
            "UPDATE customers SET is_active = FALSE, updated_at = %s WHERE id = %s",
            (now, customer_id)
        )

        self.audit.log_change(
            entity_type="customer",
            entity_id=customer_id,
            action=AuditAction.DELETE,
            changes={"deleted": current.model_dump(mode="json")}
        )

        return True

    def list_active(
        self,
        limit: int = 50,
        offset: int = 0,
        search: str | None = None
    ) -> list[Customer]:
        """
        List active customers, newest first.

        Args:
            limit: Maximum results (default 50)
            offset: Offset for pagination
            search: Optional case-insensitive match on name, email or company
        """
        if search:
            pattern = f"%{search}%"
            rows = self.postgres.execute(
                """
                SELECT * FROM customers
                WHERE is_active
                  AND (name ILIKE %s OR email ILIKE %s OR company ILIKE %s)
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                (pattern, pattern, pattern, limit, offset)
            )
        else:
            rows = self.postgres.execute(
                """
                SELECT * FROM customers
                WHERE is_active
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s
                """,
                (limit, offset)
            )

        return [Customer.model_validate(row) for row in rows]
