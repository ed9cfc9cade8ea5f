"""
Invoice ledger: monetary derivation and the status state machine.

Everything here is pure. Functions take an Invoice and return an updated
copy; persistence, locking and side effects belong to the services.

Derivation (recompute) always runs in this order:
1. subtotal   = sum(quantity * unit_price)
2. tax_amount = subtotal * tax_rate / 100
3. total      = subtotal + tax_amount
4. amount_due = total - amount_paid
5. status re-evaluated from amount_paid and due_date (draft/cancelled sticky)

Explicit transitions (send, view, cancel, payment, refund) compose
recompute() where they change money or status.
"""

import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, NamedTuple

from core.exceptions import (
    AlreadyPaid,
    AmountExceedsDue,
    InvoiceAlreadyPaid,
    InvoiceCancelled,
    ValidationError,
)
from core.models import Invoice, InvoiceStatus, LineItem
from utils.timezone import now_utc

# No 0/O, 1/I/l/i, o
PUBLIC_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

# Statuses the payment-derived re-evaluation never touches
_STICKY_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED}


class LedgerTotals(NamedTuple):
    """Derived money fields of an invoice."""

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    amount_due: Decimal


def generate_public_id(length: int = 12) -> str:
    """Random unguessable id for public invoice links."""
    return "".join(secrets.choice(PUBLIC_ID_ALPHABET) for _ in range(length))


def compute_totals(
    line_items: Iterable[LineItem],
    tax_rate: Decimal,
    amount_paid: Decimal,
) -> LedgerTotals:
    """Steps 1-4 of the derivation. Exact decimal arithmetic, no rounding."""
    subtotal = sum((item.quantity * item.unit_price for item in line_items), _ZERO)
    tax_amount = subtotal * Decimal(tax_rate) / _HUNDRED
    total = subtotal + tax_amount
    return LedgerTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=total,
        amount_due=total - amount_paid,
    )


def derive_status(
    total: Decimal,
    amount_paid: Decimal,
    due_date: datetime | None,
    current_status: InvoiceStatus,
    now: datetime,
) -> InvoiceStatus:
    """
    Status implied by the payment state.

    draft and cancelled are returned unchanged; leaving them takes an
    explicit transition. Overdue wins over sent/viewed/partial but a paid
    invoice is never marked overdue.
    """
    if current_status in _STICKY_STATUSES:
        return current_status

    status = current_status
    if amount_paid == _ZERO:
        if status in (InvoiceStatus.PAID, InvoiceStatus.PARTIAL):
            status = InvoiceStatus.SENT
    elif amount_paid >= total:
        status = InvoiceStatus.PAID
    else:
        status = InvoiceStatus.PARTIAL

    if due_date is not None and status != InvoiceStatus.PAID and now > due_date:
        status = InvoiceStatus.OVERDUE

    return status


def recompute(invoice: Invoice, now: datetime | None = None) -> Invoice:
    """Re-derive totals and status. paid_at is only set the first time."""
    now = now or now_utc()
    totals = compute_totals(invoice.line_items, invoice.tax_rate, invoice.amount_paid)
    status = derive_status(
        totals.total, invoice.amount_paid, invoice.due_date, invoice.status, now
    )

    paid_at = invoice.paid_at
    if status == InvoiceStatus.PAID and paid_at is None:
        paid_at = now

    return invoice.model_copy(update={
        **totals._asdict(),
        "status": status,
        "paid_at": paid_at,
    })


def _require_line_items(line_items: list[LineItem]) -> None:
    if not line_items:
        raise ValidationError("An invoice needs at least one line item before it can be sent")


def send_invoice(invoice: Invoice, now: datetime | None = None, public_id_length: int = 12) -> Invoice:
    """
    draft -> sent. Assigns public_id if absent and stamps sent_at.

    Resending keeps the current status and only refreshes sent_at.
    """
    now = now or now_utc()
    if invoice.is_cancelled:
        raise InvoiceCancelled(invoice.id)
    _require_line_items(invoice.line_items)

    status = InvoiceStatus.SENT if invoice.status == InvoiceStatus.DRAFT else invoice.status
    sent = invoice.model_copy(update={
        "status": status,
        "sent_at": now,
        "public_id": invoice.public_id or generate_public_id(public_id_length),
    })
    return recompute(sent, now)


def view_invoice(invoice: Invoice, now: datetime | None = None) -> Invoice:
    """sent -> viewed on first public fetch. Any other status is a no-op."""
    if invoice.status != InvoiceStatus.SENT:
        return invoice
    now = now or now_utc()
    return invoice.model_copy(update={
        "status": InvoiceStatus.VIEWED,
        "viewed_at": invoice.viewed_at or now,
    })


def cancel_invoice(invoice: Invoice) -> Invoice:
    """Any state except paid -> cancelled. Cancelling twice is a no-op."""
    if invoice.is_paid:
        raise InvoiceAlreadyPaid(invoice.id)
    if invoice.is_cancelled:
        return invoice
    return invoice.model_copy(update={"status": InvoiceStatus.CANCELLED})


def ensure_editable(invoice: Invoice) -> None:
    """Edits are refused once an invoice is paid or cancelled."""
    if invoice.is_paid:
        raise InvoiceAlreadyPaid(invoice.id)
    if invoice.is_cancelled:
        raise InvoiceCancelled(invoice.id)


def apply_edit(invoice: Invoice, changes: dict[str, Any], now: datetime | None = None) -> Invoice:
    """
    Apply field edits and re-derive.

    ``changes`` holds only the fields the caller sent (see
    InvoiceUpdate.changes), so an explicit None clears an optional field.
    """
    ensure_editable(invoice)
    now = now or now_utc()

    if "issue_date" in changes and changes["issue_date"] is None:
        raise ValidationError("issue_date cannot be cleared")
    if "currency" in changes and changes["currency"] is None:
        raise ValidationError("currency cannot be cleared")
    if "line_items" in changes and changes["line_items"] is None:
        raise ValidationError("line_items cannot be cleared; send an empty list on a draft")

    update = dict(changes)
    if "tax_rate" in update and update["tax_rate"] is None:
        update["tax_rate"] = _ZERO
    if "metadata" in update and update["metadata"] is None:
        update["metadata"] = {}
    if "allowed_payment_methods" in update and update["allowed_payment_methods"] is None:
        update["allowed_payment_methods"] = invoice.allowed_payment_methods
    if "is_recurring" in update and update["is_recurring"] is None:
        del update["is_recurring"]

    edited = invoice.model_copy(update=update)

    if edited.status != InvoiceStatus.DRAFT:
        _require_line_items(edited.line_items)
    if edited.due_date is not None and edited.due_date < edited.issue_date:
        raise ValidationError("due_date cannot be before issue_date")
    if edited.is_recurring:
        if edited.is_child:
            raise ValidationError("Invoices generated from a recurring invoice cannot recur themselves")
        if edited.recurring_interval is None:
            raise ValidationError("recurring_interval is required when is_recurring is set")

    # Schedule is re-seeded lazily by the recurrence run
    if (
        edited.is_recurring != invoice.is_recurring
        or edited.recurring_interval != invoice.recurring_interval
    ):
        edited = edited.model_copy(update={"next_recurring_at": None})

    recomputed = recompute(edited, now)
    if recomputed.total < recomputed.amount_paid:
        raise ValidationError(
            f"New total {recomputed.total} is below the {recomputed.amount_paid} already paid; refund first"
        )
    return recomputed


def check_payable(invoice: Invoice, amount: Decimal) -> None:
    """Preconditions for applying a payment. Never clamps."""
    if amount <= _ZERO:
        raise ValidationError("Payment amount must be greater than zero")
    if invoice.is_paid:
        raise AlreadyPaid(invoice.id)
    if invoice.is_cancelled:
        raise InvoiceCancelled(invoice.id)
    if amount > invoice.amount_due:
        raise AmountExceedsDue(amount, invoice.amount_due)


def apply_payment(invoice: Invoice, amount: Decimal, now: datetime | None = None) -> Invoice:
    """
    Increase amount_paid and re-derive.

    A payment against a draft counts as delivery: the invoice moves to sent
    first so the payment-derived status can take over.
    """
    check_payable(invoice, amount)
    now = now or now_utc()

    update: dict[str, Any] = {"amount_paid": invoice.amount_paid + amount}
    if invoice.status == InvoiceStatus.DRAFT:
        update["status"] = InvoiceStatus.SENT
        update["sent_at"] = invoice.sent_at or now

    return recompute(invoice.model_copy(update=update), now)


def apply_refund(invoice: Invoice, amount: Decimal, now: datetime | None = None) -> Invoice:
    """Decrease amount_paid by a refunded payment and re-derive."""
    if amount <= _ZERO:
        raise ValidationError("Refund amount must be greater than zero")
    if amount > invoice.amount_paid:
        raise ValidationError(
            f"Refund amount {amount} exceeds amount paid {invoice.amount_paid}"
        )
    return recompute(
        invoice.model_copy(update={"amount_paid": invoice.amount_paid - amount}),
        now,
    )
