"""
Organization service.

One organization per owning account. The first authenticated request of an
identity nobody has seen before provisions both the user and its
organization.
"""

import logging
from uuid import UUID, uuid4

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient, is_unique_violation
from core.audit import AuditLogger, AuditAction, compute_changes
from core.config import BillingConfig
from core.exceptions import OrganizationNotFound
from core.models import Organization, OrganizationCreate, OrganizationUpdate, User
from utils.request_context import get_current_organization_id, organization_context
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = {
    "name", "email", "currency", "invoice_prefix",
    "default_tax_rate", "default_payment_terms_days", "wallet_address",
}
_NULLABLE_COLUMNS = {"default_payment_terms_days", "wallet_address"}


class OrganizationService:
    """Service for organization and user provisioning."""

    def __init__(self, postgres: PostgresClient, audit: AuditLogger, config: BillingConfig):
        self.postgres = postgres
        self.audit = audit
        self.config = config

    def get_user_by_external_id(self, external_id: str) -> User | None:
        """Resolve an identity-provider subject. The users table is not tenant-scoped."""
        row = self.postgres.execute_single(
            "SELECT * FROM users WHERE external_id = %s",
            (external_id,)
        )
        return User.model_validate(row) if row else None

    def ensure_for_identity(self, external_id: str, email: str) -> User:
        """
        Map a verified identity to an internal user, provisioning on first sight.

        Two concurrent first requests race on the unique external_id; the
        loser re-reads the winner's user.
        """
        user = self.get_user_by_external_id(external_id)
        if user is not None:
            return user

        organization_id = uuid4()
        user_id = uuid4()
        now = now_utc()
        data = OrganizationCreate(
            name=email,
            email=email,
            currency=self.config.default_currency,
            invoice_prefix=self.config.default_invoice_prefix,
        )

        try:
            with organization_context(organization_id, user_id):
                with self.postgres.transaction() as tx:
                    tx.execute(
                        """
                        INSERT INTO organizations (
                            id, owner_id, name, email, currency, invoice_prefix,
                            invoice_number_sequence, default_tax_rate, default_payment_terms_days,
                            created_at, updated_at
                        ) VALUES (%s, %s, %s, %s, %s, %s, 1, %s, %s, %s, %s)
                        """,
                        (
                            organization_id, user_id, data.name, data.email, data.currency,
                            data.invoice_prefix, data.default_tax_rate, data.default_payment_terms_days,
                            now, now
                        )
                    )
                    row = tx.execute_single(
                        """
                        INSERT INTO users (id, external_id, email, organization_id, created_at)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING *
                        """,
                        (user_id, external_id, email.lower(), organization_id, now)
                    )
        except UniqueViolation as e:
            if not is_unique_violation(e, "users_external_id_key"):
                raise
            logger.info(f"Identity {external_id} provisioned concurrently, using existing user")
            return self.get_user_by_external_id(external_id)

        user = User.model_validate(row)
        with organization_context(organization_id, user_id):
            self.audit.log_change(
                entity_type="organization",
                entity_id=organization_id,
                action=AuditAction.CREATE,
                changes={"created": data.model_dump(mode="json")}
            )
        logger.info(f"Provisioned organization {organization_id} for user {user_id}")
        return user

    def get_by_id(self, organization_id: UUID) -> Organization | None:
        row = self.postgres.execute_single(
            "SELECT * FROM organizations WHERE id = %s",
            (organization_id,)
        )
        return Organization.model_validate(row) if row else None

    def get_current(self) -> Organization:
        """
        The caller's organization.

        Raises:
            OrganizationNotFound: context points at a missing organization
        """
        organization_id = get_current_organization_id()
        organization = self.get_by_id(organization_id)
        if organization is None:
            raise OrganizationNotFound(organization_id)
        return organization

    def update(self, data: OrganizationUpdate) -> Organization:
        """
        Update the caller's organization settings.

        The invoice number sequence is not editable here; only the allocator
        moves it, and only forward.
        """
        current = self.get_current()

        updates = {
            k: v for k, v in data.model_dump(exclude_unset=True).items()
            if k in _UPDATABLE_COLUMNS and (v is not None or k in _NULLABLE_COLUMNS)
        }
        if not updates:
            return current

        set_parts = [f"{column} = %s" for column in updates]
        params = list(updates.values())
        set_parts.append("updated_at = %s")
        params.extend([now_utc(), current.id])

        row = self.postgres.execute_single(
            f"""
            UPDATE organizations
            SET {', '.join(set_parts)}
            WHERE id = %s
            RETURNING *
            """,
            tuple(params)
        )
        if row is None:
            raise OrganizationNotFound(current.id)

        updated = Organization.model_validate(row)

        changes = compute_changes(current.model_dump(mode="json"), updated.model_dump(mode="json"))
        if changes:
            self.audit.log_change(
                entity_type="organization",
                entity_id=current.id,
                action=AuditAction.UPDATE,
                changes=changes
            )

        return updated
