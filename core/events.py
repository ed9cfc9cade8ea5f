"""
Domain events for the billing core.

Immutable event objects that represent committed state changes. A service
publishes what happened and handlers react (emails, receipts) without the
publisher knowing who's listening.

Events carry the full domain objects so handlers don't need to re-fetch
state, and they are only published after the database write committed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice was sent (or resent) to the customer."""
    invoice: Any = None  # Invoice, Any to avoid a circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceSent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice reached paid."""
    invoice: Any = None

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class RecurringInvoiceGenerated(InvoiceEvent):
    """The scheduler spawned a child from a recurring parent."""
    invoice: Any = None
    parent: Any = None

    @classmethod
    def create(cls, invoice: Any, parent: Any) -> "RecurringInvoiceGenerated":
        return cls(invoice=invoice, parent=parent)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payments."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A completed payment was applied to an invoice."""
    payment: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRecorded":
        return cls(payment=payment, invoice=invoice)


@dataclass(frozen=True)
class PaymentRefunded(PaymentEvent):
    """A completed payment was refunded."""
    payment: Any = None
    invoice: Any = None

    @classmethod
    def create(cls, payment: Any, invoice: Any) -> "PaymentRefunded":
        return cls(payment=payment, invoice=invoice)
