"""
Recurring invoice rules: cadence arithmetic and child construction.

Month-based intervals clamp to the end of the target month, so a parent
billed on Jan 31 recurs on Feb 29 (leap year) or Feb 28, never on Mar 2.
Once clamped the schedule continues from the clamped day.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import NamedTuple
from uuid import uuid4

from core import ledger
from core.models import Invoice, InvoiceStatus, RecurringInterval
from utils.timezone import add_months, utc_date

_INTERVAL_MONTHS = {
    RecurringInterval.MONTHLY: 1,
    RecurringInterval.QUARTERLY: 3,
    RecurringInterval.YEARLY: 12,
}


class RecurrenceAction(Enum):
    SEED = "seed"          # next_recurring_at computed for the first time, in the future
    GENERATE = "generate"  # due now
    WAIT = "wait"          # scheduled, not yet due


class RecurrencePlan(NamedTuple):
    action: RecurrenceAction
    due_at: datetime


def advance(when: datetime, interval: RecurringInterval) -> datetime:
    """Next occurrence after ``when``."""
    if interval == RecurringInterval.WEEKLY:
        return when + timedelta(days=7)
    return add_months(when, _INTERVAL_MONTHS[interval])


def is_active(parent: Invoice, now: datetime) -> bool:
    """Whether a parent still spawns children as of ``now``."""
    if not parent.is_recurring or parent.recurring_interval is None:
        return False
    if parent.is_cancelled or parent.is_child:
        return False
    if parent.recurring_end_date is not None:
        return utc_date(parent.recurring_end_date) >= utc_date(now)
    return True


def plan(parent: Invoice, now: datetime) -> RecurrencePlan:
    """
    Decide what this run does with a parent.

    A parent without next_recurring_at is seeded from last_recurring_at (or
    created_at). If the seeded date is still ahead, the run only stores it;
    generation waits for a later run.
    """
    if parent.next_recurring_at is not None:
        due_at = parent.next_recurring_at
        action = RecurrenceAction.GENERATE if due_at <= now else RecurrenceAction.WAIT
        return RecurrencePlan(action, due_at)

    anchor = parent.last_recurring_at or parent.created_at
    due_at = advance(anchor, parent.recurring_interval)
    action = RecurrenceAction.SEED if due_at > now else RecurrenceAction.GENERATE
    return RecurrencePlan(action, due_at)


def build_child(
    parent: Invoice,
    invoice_number: str,
    now: datetime,
    public_id_length: int = 12,
) -> Invoice:
    """
    New sent invoice cloned from a recurring parent.

    The due date keeps the parent's issue-to-due offset.
    """
    due_date = None
    if parent.due_date is not None:
        due_date = now + (parent.due_date - parent.issue_date)

    child = Invoice(
        id=uuid4(),
        organization_id=parent.organization_id,
        customer_id=parent.customer_id,
        invoice_number=invoice_number,
        public_id=ledger.generate_public_id(public_id_length),
        status=InvoiceStatus.SENT,
        issue_date=now,
        due_date=due_date,
        currency=parent.currency,
        line_items=[item.model_copy() for item in parent.line_items],
        subtotal=Decimal("0"),
        tax_rate=parent.tax_rate,
        tax_amount=Decimal("0"),
        total=Decimal("0"),
        amount_paid=Decimal("0"),
        amount_due=Decimal("0"),
        notes=parent.notes,
        terms=parent.terms,
        template_style=parent.template_style,
        allowed_payment_methods=list(parent.allowed_payment_methods),
        sent_at=now,
        is_recurring=False,
        parent_invoice_id=parent.id,
        created_by=parent.created_by,
        created_at=now,
        updated_at=now,
    )
    return ledger.recompute(child, now)


def advance_parent(parent: Invoice, now: datetime) -> Invoice:
    """Parent schedule after a child was generated at ``now``."""
    return parent.model_copy(update={
        "last_recurring_at": now,
        "next_recurring_at": advance(now, parent.recurring_interval),
    })
