"""
Audit trail for billing entity changes.

Every mutation of an organization, customer, invoice or payment is appended
here. The audit log is:
- Append-only (entries never modified or deleted)
- Organization-scoped and user-attributed (user is None for system jobs
  such as the recurrence scheduler)
- Detailed (captures old and new values)
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.request_context import get_current_organization_id, get_current_user_id
from utils.timezone import now_utc


class AuditAction(Enum):
    """Type of change made to an entity."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Stored NUMERIC columns come back with the column's scale ("100.00000000")
# while freshly derived amounts do not ("100"); both are the same amount.
MONEY_FIELDS = frozenset({
    "subtotal", "tax_rate", "tax_amount", "total", "amount_paid", "amount_due",
    "amount", "refunded_amount", "total_paid", "default_tax_rate",
})

_BOOKKEEPING_FIELDS = frozenset({"updated_at", "version"})


def _same_value(field: str, old: Any, new: Any) -> bool:
    if field in MONEY_FIELDS and old is not None and new is not None:
        try:
            return Decimal(str(old)) == Decimal(str(new))
        except InvalidOperation:
            return old == new
    return old == new


def compute_changes(
    old: dict[str, Any],
    new: dict[str, Any],
    exclude_fields: set[str] | None = None
) -> dict[str, dict[str, Any]]:
    """
    Field-level diff of two JSON-dumped entity states.

    Money fields compare by value, not by their string form. Fields in
    ``exclude_fields`` (default: updated_at and version) are ignored.

    Returns:
        {field: {"old": old_val, "new": new_val}} for changed fields, empty
        when nothing changed.
    """
    exclude = exclude_fields or _BOOKKEEPING_FIELDS
    return {
        field: {"old": old.get(field), "new": new.get(field)}
        for field in sorted((old.keys() | new.keys()) - exclude)
        if not _same_value(field, old.get(field), new.get(field))
    }


class AuditLogger:
    """
    Append-only audit trail.

    Always pass model_dump(mode="json") output so UUIDs, Decimals and
    datetimes arrive JSON-serializable.

    Usage:
        audit = AuditLogger(postgres)

        audit.log_change(
            entity_type="invoice",
            entity_id=invoice.id,
            action=AuditAction.UPDATE,
            changes=compute_changes(old.model_dump(mode="json"), new.model_dump(mode="json"))
        )
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def log_change(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        changes: dict[str, Any],
        user_id: UUID | None = None
    ) -> None:
        """
        Append one entry under the current organization.

        ``changes`` is {"created": {...}} for CREATE, the compute_changes diff
        for UPDATE and {"deleted": {...}} for DELETE. ``user_id`` defaults to
        the request user (None when a system job is running).
        """
        if user_id is None:
            user_id = get_current_user_id()

        self.postgres.execute(
            """
            INSERT INTO audit_log (id, organization_id, user_id, entity_type, entity_id, action, changes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                uuid4(),
                get_current_organization_id(),
                user_id,
                entity_type,
                entity_id,
                action.value,
                Json(changes),
                now_utc()
            )
        )

    def get_entity_history(
        self,
        entity_type: str,
        entity_id: UUID
    ) -> list[dict[str, Any]]:
        """
        Get full audit history for an entity, newest first.
        """
        return self.postgres.execute(
            """
            SELECT id, organization_id, user_id, entity_type, entity_id, action, changes, created_at
            FROM audit_log
            WHERE entity_type = %s AND entity_id = %s
            ORDER BY created_at DESC
            """,
            (entity_type, entity_id)
        )
