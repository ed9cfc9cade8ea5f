"""
Invoice numbering allocator.

Three ways an invoice gets its number:
- explicit: the caller's string, reserved after an exact-match check
- customer series: {customer.invoice_prefix}-{next:03d} when the customer
  carries its own numbering settings
- organization sequence: {organization.invoice_prefix}-{sequence:04d}

Counters are advanced with a single UPDATE ... RETURNING, committed on its
own. A number handed out is never handed out again, even if the invoice
insert that wanted it fails; gaps are acceptable, duplicates are not.
"""

import logging
import re
from typing import Iterable

from clients.postgres_client import PostgresClient
from core.exceptions import CustomerNotFound, DuplicateInvoiceNumber, OrganizationNotFound
from core.models import Customer

logger = logging.getLogger(__name__)

ORGANIZATION_NUMBER_WIDTH = 4
CUSTOMER_NUMBER_WIDTH = 3
SERIES_DEFAULT_WIDTH = 3

_SERIES_PATTERN = re.compile(r"^(?P<prefix>.*)-(?P<number>\d+)$")


def format_number(prefix: str, number: int, width: int) -> str:
    return f"{prefix}-{number:0{width}d}"


def split_series(invoice_number: str) -> tuple[str, int]:
    """
    Split a number into (prefix, suffix width).

    The prefix is everything before the last '-'. A number without a numeric
    suffix is treated as a bare prefix.
    """
    match = _SERIES_PATTERN.match(invoice_number)
    if match is None:
        return invoice_number, SERIES_DEFAULT_WIDTH
    return match.group("prefix"), len(match.group("number"))


def next_series_number(parent_number: str, existing_numbers: Iterable[str]) -> str:
    """Next number in the parent's series: highest existing suffix + 1."""
    prefix, width = split_series(parent_number)
    highest = 0
    for number in existing_numbers:
        match = _SERIES_PATTERN.match(number)
        if match and match.group("prefix") == prefix:
            highest = max(highest, int(match.group("number")))
    return format_number(prefix, highest + 1, width)


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class NumberingAllocator:
    """Hands out collision-free invoice numbers."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def allocate(self, organization_id, customer: Customer | None = None) -> str:
        """
        Allocate the next number for a new invoice.

        Uses the customer's private series when it has one, otherwise the
        organization sequence.

        Raises:
            CustomerNotFound: customer no longer exists
            OrganizationNotFound: organization does not exist
        """
        if customer is not None and customer.invoice_settings is not None:
            row = self.postgres.execute_single(
                """
                UPDATE customers
                SET invoice_next_number = invoice_next_number + 1, updated_at = NOW()
                WHERE id = %s AND organization_id = %s
                  AND invoice_prefix IS NOT NULL AND invoice_next_number IS NOT NULL
                RETURNING invoice_prefix, invoice_next_number - 1 AS number
                """,
                (customer.id, organization_id)
            )
            if row is not None:
                return format_number(row["invoice_prefix"], row["number"], CUSTOMER_NUMBER_WIDTH)

            exists = self.postgres.execute_single(
                "SELECT id FROM customers WHERE id = %s AND organization_id = %s",
                (customer.id, organization_id)
            )
            if exists is None:
                raise CustomerNotFound(customer.id)
            # Settings were cleared since the customer was read
            logger.info(f"Customer {customer.id} has no numbering settings, using organization sequence")

        row = self.postgres.execute_single(
            """
            UPDATE organizations
            SET invoice_number_sequence = invoice_number_sequence + 1, updated_at = NOW()
            WHERE id = %s
            RETURNING invoice_prefix, invoice_number_sequence - 1 AS number
            """,
            (organization_id,)
        )
        if row is None:
            raise OrganizationNotFound(organization_id)

        return format_number(row["invoice_prefix"], row["number"], ORGANIZATION_NUMBER_WIDTH)

    def reserve(self, organization_id, invoice_number: str) -> str:
        """
        Claim a caller-supplied number.

        Exact, case-sensitive match against every invoice in the organization,
        whatever its customer. The unique index on invoice_number catches a
        racing insert of the same string.

        Raises:
            DuplicateInvoiceNumber: number already in use
        """
        row = self.postgres.execute_single(
            "SELECT id FROM invoices WHERE organization_id = %s AND invoice_number = %s",
            (organization_id, invoice_number)
        )
        if row is not None:
            raise DuplicateInvoiceNumber(invoice_number)
        return invoice_number

    def next_in_series(self, parent_number: str) -> str:
        """
        Number for a recurring child, continuing the parent's series.

        Independent of the organization sequence: the next number is one past
        the highest suffix already in use with the parent's prefix.
        """
        prefix, _ = split_series(parent_number)
        rows = self.postgres.execute(
            "SELECT invoice_number FROM invoices WHERE invoice_number LIKE %s",
            (f"{escape_like(prefix)}-%",)
        )
        return next_series_number(parent_number, (row["invoice_number"] for row in rows))

    def skip_taken(self, organization_id, taken_number: str, customer: Customer | None = None) -> None:
        """
        Move the counter that produced ``taken_number`` past every number
        already in use with its prefix, in any organization.

        Organizations sharing a prefix (every new one starts on INV) would
        otherwise walk through each other's numbers one collision at a time.
        """
        prefix, _ = split_series(taken_number)

        if customer is not None and customer.invoice_settings is not None:
            row = self.postgres.execute_single(
                """
                UPDATE customers
                SET invoice_next_number = GREATEST(invoice_next_number, highest_invoice_suffix(%s) + 1),
                    updated_at = NOW()
                WHERE id = %s AND organization_id = %s AND invoice_prefix = %s
                RETURNING invoice_next_number
                """,
                (prefix, customer.id, organization_id, prefix)
            )
            if row is not None:
                logger.info(f"Customer {customer.id} series {prefix} moved to {row['invoice_next_number']}")
                return

        row = self.postgres.execute_single(
            """
            UPDATE organizations
            SET invoice_number_sequence = GREATEST(invoice_number_sequence, highest_invoice_suffix(%s) + 1),
                updated_at = NOW()
            WHERE id = %s AND invoice_prefix = %s
            RETURNING invoice_number_sequence
            """,
            (prefix, organization_id, prefix)
        )
        if row is not None:
            logger.info(f"Organization sequence for {prefix} moved to {row['invoice_number_sequence']}")
