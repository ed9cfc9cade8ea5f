"""
Typed exceptions for the billing core.

Every exception carries a machine-readable ``code`` that the API layer puts
in the error envelope. Kinds map onto HTTP semantics:

- ValidationError: malformed input, detected before any write
- NotFoundError: referenced entity absent or owned by another organization
- ConflictError: uniqueness violation, surfaced as-is for correction
- InvalidStateTransition: mutation violates the state machine or a money rule
- ExternalServiceError: notification/export/payment-network failure; never
  aborts a committed financial change
"""


class BillingError(Exception):
    """Base class for all billing core errors."""

    code = "BILLING_ERROR"


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationError(BillingError):
    """Malformed input (missing field, non-positive quantity, bad date...)."""

    code = "VALIDATION_ERROR"


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(BillingError):
    """Referenced entity does not exist in the caller's organization."""

    code = "NOT_FOUND"
    entity = "Entity"

    def __init__(self, entity_id=None):
        self.entity_id = entity_id
        if entity_id is None:
            super().__init__(f"{self.entity} not found")
        else:
            super().__init__(f"{self.entity} {entity_id} not found")


class OrganizationNotFound(NotFoundError):
    code = "ORGANIZATION_NOT_FOUND"
    entity = "Organization"


class CustomerNotFound(NotFoundError):
    code = "CUSTOMER_NOT_FOUND"
    entity = "Customer"


class InvoiceNotFound(NotFoundError):
    code = "INVOICE_NOT_FOUND"
    entity = "Invoice"


class PaymentNotFound(NotFoundError):
    code = "PAYMENT_NOT_FOUND"
    entity = "Payment"


# =============================================================================
# CONFLICT
# =============================================================================


class ConflictError(BillingError):
    """A uniqueness rule was violated."""

    code = "CONFLICT"


class DuplicateInvoiceNumber(ConflictError):
    code = "DUPLICATE_INVOICE_NUMBER"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice number {invoice_number} is already in use")


class DuplicateCustomerEmail(ConflictError):
    code = "DUPLICATE_CUSTOMER_EMAIL"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"An active customer with email {email} already exists")


class DuplicatePaymentReference(ConflictError):
    code = "DUPLICATE_PAYMENT_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"A completed payment with reference {reference} already exists")


class ConcurrentModification(ConflictError):
    """Optimistic update kept losing to concurrent writers."""

    code = "CONCURRENT_MODIFICATION"


# =============================================================================
# INVALID STATE TRANSITION
# =============================================================================


class InvalidStateTransition(BillingError):
    """Mutation not allowed in the invoice's current state."""

    code = "INVALID_STATE_TRANSITION"


class InvoiceAlreadyPaid(InvalidStateTransition):
    """Edit or cancel attempted on a paid invoice."""

    code = "INVOICE_ALREADY_PAID"

    def __init__(self, invoice_id=None):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is paid and can no longer be changed")


class InvoiceCancelled(InvalidStateTransition):
    code = "INVOICE_CANCELLED"

    def __init__(self, invoice_id=None):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is cancelled")


class AlreadyPaid(InvalidStateTransition):
    """Payment attempted on an invoice that is already paid."""

    code = "ALREADY_PAID"

    def __init__(self, invoice_id=None):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already marked as paid")


class AmountExceedsDue(InvalidStateTransition):
    code = "AMOUNT_EXCEEDS_DUE"

    def __init__(self, amount, amount_due):
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(f"Payment amount {amount} exceeds amount due {amount_due}")


# =============================================================================
# EXTERNAL SERVICES
# =============================================================================


class ExternalServiceError(BillingError):
    """A side-effect collaborator failed. Reported as a warning, never a rollback."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")
