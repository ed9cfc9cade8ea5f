"""GET /api/public/invoices/{public_id}: unauthenticated invoice view."""

from fastapi import APIRouter, Request

from api.base import success_response


def create_public_router(invoice_service) -> APIRouter:
    router = APIRouter()

    @router.get("/public/invoices/{public_id}")
    async def view_invoice(request: Request, public_id: str):
        invoice = invoice_service.view_public(public_id)
        return success_response(
            invoice.model_dump(mode="json"),
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(mode="json")

    return router
