"""POST /api/actions: unified mutation endpoint."""

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import AwareDatetime, BaseModel

from api.base import success_response
from core.exceptions import CustomerNotFound, ValidationError
from core.models import (
    CustomerCreate, CustomerUpdate, CustomerInvoiceSettings,
    InvoiceCreate, InvoiceUpdate,
    OrganizationUpdate,
    PaymentCreate, PaymentMethod,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


class MarkPaidRequest(BaseModel):
    invoice_id: UUID
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    transaction_reference: str | None = None
    processed_at: AwareDatetime | None = None
    notes: str | None = None


def _require_id(data: dict, key: str = "id") -> UUID:
    value = data.get(key)
    if not value:
        raise ValidationError(f"'{key}' is required")
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"'{key}' is not a valid id: {value}")


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "organization": OrganizationHandler(services["organization"]),
        "customer": CustomerHandler(services["customer"]),
        "invoice": InvoiceHandler(services["invoice"]),
        "payment": PaymentHandler(services["payment"]),
    }
    if services.get("payment_sync") is not None:
        handlers["payment_request"] = PaymentRequestHandler(services["payment_sync"])

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValidationError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValidationError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}")
        result, warnings = method(dict(body.data))
        return success_response(
            result, warnings, getattr(request.state, "request_id", None)
        ).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================
# Each _handle_* returns (data, warnings).


class OrganizationHandler:
    ALLOWED_ACTIONS = {"update"}

    def __init__(self, service):
        self.service = service

    def _handle_update(self, data: dict):
        organization = self.service.update(OrganizationUpdate(**data))
        return organization.model_dump(mode="json"), []


class CustomerHandler:
    ALLOWED_ACTIONS = {"create", "update", "delete", "set_invoice_settings"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        customer = self.service.create(CustomerCreate(**data))
        return customer.model_dump(mode="json"), []

    def _handle_update(self, data: dict):
        customer_id = _require_id(data)
        data.pop("id")
        customer = self.service.update(customer_id, CustomerUpdate(**data))
        return customer.model_dump(mode="json"), []

    def _handle_delete(self, data: dict):
        customer_id = _require_id(data)
        if not self.service.delete(customer_id):
            raise CustomerNotFound(customer_id)
        return {"deleted": True}, []

    def _handle_set_invoice_settings(self, data: dict):
        customer_id = _require_id(data)
        settings = data.get("invoice_settings")
        customer = self.service.update_invoice_settings(
            customer_id,
            CustomerInvoiceSettings(**settings) if settings else None,
        )
        return customer.model_dump(mode="json"), []


class InvoiceHandler:
    ALLOWED_ACTIONS = {"create", "update", "send", "cancel"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        result = self.service.create(InvoiceCreate(**data))
        return result.invoice.model_dump(mode="json"), result.warnings

    def _handle_update(self, data: dict):
        invoice_id = _require_id(data)
        data.pop("id")
        invoice = self.service.update(invoice_id, InvoiceUpdate(**data))
        return invoice.model_dump(mode="json"), []

    def _handle_send(self, data: dict):
        result = self.service.send(_require_id(data))
        return result.invoice.model_dump(mode="json"), result.warnings

    def _handle_cancel(self, data: dict):
        invoice = self.service.cancel(_require_id(data))
        return invoice.model_dump(mode="json"), []


class PaymentHandler:
    ALLOWED_ACTIONS = {"record", "mark_paid", "refund"}

    def __init__(self, service):
        self.service = service

    @staticmethod
    def _payload(result) -> dict:
        return {
            "invoice": result.invoice.model_dump(mode="json"),
            "payment": result.payment.model_dump(mode="json"),
        }

    def _handle_record(self, data: dict):
        payment = PaymentCreate(**data)
        result = self.service.record_payment(
            payment.invoice_id,
            payment.amount,
            payment.method,
            reference=payment.transaction_reference,
            processed_at=payment.processed_at,
            notes=payment.notes,
        )
        return self._payload(result), result.warnings

    def _handle_mark_paid(self, data: dict):
        request = MarkPaidRequest(**data)
        result = self.service.mark_paid(
            request.invoice_id,
            request.method,
            reference=request.transaction_reference,
            processed_at=request.processed_at,
            notes=request.notes,
        )
        return self._payload(result), result.warnings

    def _handle_refund(self, data: dict):
        result = self.service.refund(_require_id(data), reason=data.get("reason"))
        return self._payload(result), result.warnings


class PaymentRequestHandler:
    ALLOWED_ACTIONS = {"create", "sync"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        invoice = self.service.create_request(_require_id(data, "invoice_id"))
        return invoice.model_dump(mode="json"), []

    def _handle_sync(self, data: dict):
        result = self.service.sync_invoice(_require_id(data, "invoice_id"))
        return {
            "invoice": result.invoice.model_dump(mode="json"),
            "recorded": [p.model_dump(mode="json") for p in result.recorded],
            "skipped": result.skipped,
        }, result.warnings
