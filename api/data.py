"""GET /api/data: unified read endpoint."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.exceptions import CustomerNotFound, InvoiceNotFound, PaymentNotFound, ValidationError
from core.models import InvoiceStatus, PaymentStatus


VALID_TYPES = {"organization", "customers", "invoices", "payments", "dashboard"}


def _parse_uuid(value: str, name: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise ValidationError(f"'{name}' is not a valid id: {value}")


def _parse_enum(enum_cls, value: str, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unknown {name} '{value}'. Valid: {valid}")


def create_data_router(services: dict, audit=None) -> APIRouter:
    router = APIRouter()

    organization_svc = services["organization"]
    customer_svc = services["customer"]
    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    dashboard_svc = services["dashboard"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        search: str | None = Query(None),
        customer_id: str | None = Query(None),
        invoice_id: str | None = Query(None),
        status: str | None = Query(None),
        include: str | None = Query(None),
        limit: int = Query(50, ge=1, le=500),
        offset: int = Query(0, ge=0),
        months: int = Query(6, ge=1, le=36),
    ):
        if type is None:
            raise ValidationError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValidationError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        includes = set(include.split(",")) if include else set()
        request_id = getattr(request.state, "request_id", None)

        if type == "organization":
            data = organization_svc.get_current().model_dump(mode="json")

        elif type == "customers":
            data = _handle_customers(customer_svc, invoice_svc, id, search, includes, limit, offset)

        elif type == "invoices":
            data = _handle_invoices(
                invoice_svc, payment_svc, audit, id, customer_id, status, search, includes, limit, offset
            )

        elif type == "dashboard":
            data = _handle_dashboard(dashboard_svc, includes, months)

        else:
            data = _handle_payments(payment_svc, id, invoice_id, status, limit, offset)

        return success_response(data, request_id=request_id).model_dump(mode="json")

    return router


def _handle_customers(customer_svc, invoice_svc, id, search, includes, limit, offset):
    if id:
        customer_id = _parse_uuid(id, "id")
        customer = customer_svc.get_by_id(customer_id)
        if customer is None:
            raise CustomerNotFound(customer_id)

        data = customer.model_dump(mode="json")
        data["invoice_settings"] = (
            customer.invoice_settings.model_dump(mode="json") if customer.invoice_settings else None
        )
        if "invoices" in includes:
            invoices = invoice_svc.list_for_customer(customer.id, limit)
            data["invoices"] = [i.model_dump(mode="json") for i in invoices]
        return data

    customers = customer_svc.list_active(limit, offset, search=search)
    return [c.model_dump(mode="json") for c in customers]


def _handle_invoices(invoice_svc, payment_svc, audit, id, customer_id, status, search, includes, limit, offset):
    if id:
        invoice_uuid = _parse_uuid(id, "id")
        invoice = invoice_svc.get_by_id(invoice_uuid)
        if invoice is None:
            raise InvoiceNotFound(invoice_uuid)

        data = invoice.model_dump(mode="json")
        if "payments" in includes:
            payments = payment_svc.list_for_invoice(invoice.id)
            data["payments"] = [p.model_dump(mode="json") for p in payments]
        if "history" in includes and audit is not None:
            data["history"] = audit.get_entity_history("invoice", invoice.id)
        return data

    invoices = invoice_svc.list_for_organization(
        status=_parse_enum(InvoiceStatus, status, "status") if status else None,
        customer_id=_parse_uuid(customer_id, "customer_id") if customer_id else None,
        limit=limit,
        offset=offset,
        search=search,
    )
    return [i.model_dump(mode="json") for i in invoices]


def _handle_payments(payment_svc, id, invoice_id, status, limit, offset):
    if id:
        payment_id = _parse_uuid(id, "id")
        payment = payment_svc.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment.model_dump(mode="json")

    if invoice_id:
        payments = payment_svc.list_for_invoice(_parse_uuid(invoice_id, "invoice_id"))
    else:
        payments = payment_svc.list_for_organization(
            status=_parse_enum(PaymentStatus, status, "status") if status else None,
            limit=limit,
            offset=offset,
        )
    return [p.model_dump(mode="json") for p in payments]


def _handle_dashboard(dashboard_svc, includes, months):
    data = dashboard_svc.get_stats().model_dump(mode="json")
    if "revenue" in includes:
        data["revenue"] = [point.model_dump(mode="json") for point in dashboard_svc.get_revenue(months)]
    return data
