"""
Recurrence scheduler: turns recurring parent invoices into sent children.

Runs once a day on a background thread. A Valkey run-lock keeps a second
process from running concurrently. Each child insert and the matching parent
advance commit in one transaction, so a parent can never produce two
children for the same period.

The scheduler reads across organizations and needs a PostgreSQL role that
bypasses RLS; every parent is then processed inside its own organization's
context.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime

from psycopg2.errors import UniqueViolation

from clients.postgres_client import PostgresClient, is_unique_violation
from clients.valkey_client import ValkeyClient
from core import recurrence
from core.audit import AuditLogger, AuditAction
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import RecurringInvoiceGenerated
from core.exceptions import ConcurrentModification, ConflictError
from core.models import Invoice
from core.numbering import NumberingAllocator
from core.recurrence import RecurrenceAction
from core.services.invoice_service import (
    INVOICE_NUMBER_CONSTRAINT,
    PUBLIC_ID_CONSTRAINT,
    InvoiceService,
)
from utils.request_context import organization_context
from utils.timezone import now_utc, utc_date

logger = logging.getLogger(__name__)


@dataclass
class RecurrenceRunSummary:
    seeded: int = 0
    generated: int = 0
    failed: int = 0
    skipped_locked: bool = False


class RecurrenceScheduler:
    """Daily generator of recurring invoice children."""

    def __init__(
        self,
        postgres: PostgresClient,
        invoices: InvoiceService,
        allocator: NumberingAllocator,
        audit: AuditLogger,
        event_bus: EventBus,
        config: BillingConfig,
        valkey: ValkeyClient | None = None,
    ):
        self.postgres = postgres
        self.invoices = invoices
        self.allocator = allocator
        self.audit = audit
        self.event_bus = event_bus
        self.config = config
        self.valkey = valkey

    def _candidates(self, now: datetime) -> list[Invoice]:
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE is_recurring
              AND status <> 'cancelled'
              AND parent_invoice_id IS NULL
              AND (recurring_end_date IS NULL OR (recurring_end_date AT TIME ZONE 'UTC')::date >= %s)
              AND (next_recurring_at IS NULL OR next_recurring_at <= %s)
            ORDER BY next_recurring_at NULLS FIRST, created_at
            LIMIT %s
            """,
            (utc_date(now), now, self.config.scheduler_batch_size)
        )
        return [Invoice.model_validate(row) for row in rows]

    def run_once(self, now: datetime | None = None) -> RecurrenceRunSummary:
        """
        Process every due parent once.

        A failure on one parent is logged with its id and counted; the run
        carries on with the rest.
        """
        now = now or now_utc()
        summary = RecurrenceRunSummary()

        token = secrets.token_hex(16)
        if self.valkey is not None and not self.valkey.acquire_lock(
            self.config.scheduler_lock_key, token, self.config.scheduler_lock_ttl_seconds
        ):
            logger.info("Recurrence run already in progress elsewhere, skipping")
            summary.skipped_locked = True
            return summary

        try:
            for parent in self._candidates(now):
                with organization_context(parent.organization_id):
                    try:
                        action = self.process(parent, now)
                    except Exception:
                        logger.exception(f"Recurring generation failed for invoice {parent.id}")
                        summary.failed += 1
                        continue

                if action == RecurrenceAction.SEED:
                    summary.seeded += 1
                elif action == RecurrenceAction.GENERATE:
                    summary.generated += 1
        finally:
            if self.valkey is not None:
                self.valkey.release_lock(self.config.scheduler_lock_key, token)

        logger.info(
            f"Recurrence run: {summary.generated} generated, {summary.seeded} seeded, "
            f"{summary.failed} failed"
        )
        return summary

    def process(self, parent: Invoice, now: datetime) -> RecurrenceAction:
        """Seed, generate or skip one parent. Caller sets the organization context."""
        if not recurrence.is_active(parent, now):
            return RecurrenceAction.WAIT

        plan = recurrence.plan(parent, now)

        if plan.action == RecurrenceAction.SEED:
            seeded = self.invoices.save_versioned(
                parent, parent.model_copy(update={"next_recurring_at": plan.due_at})
            )
            if seeded is None:
                raise ConcurrentModification(f"Recurring invoice {parent.id} changed while seeding")
            logger.info(f"Seeded next recurrence of {parent.invoice_number} at {plan.due_at.isoformat()}")
            return RecurrenceAction.SEED

        if plan.action == RecurrenceAction.GENERATE:
            self._generate(parent, now)

        return plan.action

    def _generate(self, parent: Invoice, now: datetime) -> Invoice:
        for attempt in range(self.config.number_allocation_attempts):
            number = self.allocator.next_in_series(parent.invoice_number)
            child = recurrence.build_child(parent, number, now, self.config.public_id_length)
            try:
                with self.postgres.transaction() as tx:
                    child = self.invoices.insert(child, tx)
                    advanced = self.invoices.save_versioned(parent, recurrence.advance_parent(parent, now), tx)
                    if advanced is None:
                        raise ConcurrentModification(f"Recurring invoice {parent.id} changed during generation")
            except UniqueViolation as e:
                if is_unique_violation(e, INVOICE_NUMBER_CONSTRAINT) or is_unique_violation(e, PUBLIC_ID_CONSTRAINT):
                    logger.warning(f"Number {number} collided for recurring invoice {parent.id}, retrying")
                    continue
                raise
            break
        else:
            raise ConflictError(f"No free series number for recurring invoice {parent.invoice_number}")

        self.audit.log_change(
            entity_type="invoice",
            entity_id=child.id,
            action=AuditAction.CREATE,
            changes={"created": child.model_dump(mode="json")}
        )
        self.audit.log_change(
            entity_type="invoice",
            entity_id=parent.id,
            action=AuditAction.UPDATE,
            changes={
                "last_recurring_at": {
                    "old": parent.last_recurring_at.isoformat() if parent.last_recurring_at else None,
                    "new": advanced.last_recurring_at.isoformat(),
                },
                "next_recurring_at": {
                    "old": parent.next_recurring_at.isoformat() if parent.next_recurring_at else None,
                    "new": advanced.next_recurring_at.isoformat(),
                },
            }
        )
        logger.info(f"Generated {child.invoice_number} from recurring invoice {parent.invoice_number}")

        self.event_bus.publish(RecurringInvoiceGenerated.create(invoice=child, parent=advanced))
        return child

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Daily loop: recurring generation, then the overdue sweep.

        Returns when ``stop_event`` is set.
        """
        interval = self.config.scheduler_interval_hours * 3600
        logger.info(f"Recurrence scheduler started (every {self.config.scheduler_interval_hours}h)")

        while not stop_event.is_set():
            try:
                summary = self.run_once()
                if not summary.skipped_locked:
                    self.invoices.refresh_overdue()
            except Exception:
                logger.exception("Scheduler run failed")
            stop_event.wait(interval)

        logger.info("Recurrence scheduler stopped")
