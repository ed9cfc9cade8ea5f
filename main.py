"""
Application entry point.

Wires clients and services together, mounts the API routers behind the auth
middleware and runs the recurrence scheduler in a background thread.
"""

import logging
import os
import threading
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from api.actions import create_actions_router
from api.base import success_response
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from api.public import create_public_router
from auth.identity import HttpIdentityVerifier, IdentityVerifier
from auth.security_middleware import AuthMiddleware
from clients.email_client import EmailGatewayClient
from clients.payment_request_client import PaymentRequestClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_admin_database_url,
    get_database_url,
    get_email_config,
    get_identity_config,
    get_payment_network_config,
    get_valkey_url,
)
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import PaymentRecorded, RecurringInvoiceGenerated
from core.handlers.payment_receipt_handler import handle_payment_recorded
from core.handlers.recurring_invoice_handler import handle_recurring_invoice_generated
from core.notifications import InvoiceNotifier
from core.numbering import NumberingAllocator
from core.services.customer_service import CustomerService
from core.services.dashboard_service import DashboardService
from core.services.invoice_service import InvoiceService
from core.services.organization_service import OrganizationService
from core.services.payment_service import PaymentService
from core.services.payment_sync_service import PaymentSyncService
from core.services.recurrence_service import RecurrenceScheduler

logger = logging.getLogger(__name__)


def build_services(
    config: BillingConfig,
    postgres: PostgresClient,
    admin_postgres: PostgresClient | None = None,
    valkey: ValkeyClient | None = None,
    email_client: EmailGatewayClient | None = None,
    payment_client: PaymentRequestClient | None = None,
) -> dict:
    """
    Construct every service and subscribe the event handlers.

    ``admin_postgres`` backs the scheduler, which walks all organizations;
    without it the scheduler entry is omitted.
    """
    audit = AuditLogger(postgres)
    event_bus = EventBus()
    notifier = InvoiceNotifier(email_client)
    allocator = NumberingAllocator(postgres)

    organizations = OrganizationService(postgres, audit, config)
    customers = CustomerService(postgres, audit)
    invoices = InvoiceService(
        postgres, audit, event_bus, allocator, customers, organizations, notifier, config
    )
    payments = PaymentService(postgres, audit, event_bus, invoices, config)

    event_bus.subscribe(PaymentRecorded, handle_payment_recorded(customers, notifier))
    event_bus.subscribe(
        RecurringInvoiceGenerated,
        handle_recurring_invoice_generated(customers, organizations, notifier, config),
    )

    services = {
        "audit": audit,
        "event_bus": event_bus,
        "organization": organizations,
        "customer": customers,
        "invoice": invoices,
        "payment": payments,
        "dashboard": DashboardService(postgres),
    }

    if payment_client is not None:
        services["payment_sync"] = PaymentSyncService(
            payment_client, invoices, payments, customers, organizations
        )

    if admin_postgres is not None:
        # Cross-tenant reads go through the admin pool; every write runs under
        # the parent's organization context.
        admin_audit = AuditLogger(admin_postgres)
        admin_allocator = NumberingAllocator(admin_postgres)
        admin_invoices = InvoiceService(
            admin_postgres, admin_audit, event_bus, admin_allocator,
            CustomerService(admin_postgres, admin_audit),
            OrganizationService(admin_postgres, admin_audit, config),
            notifier, config,
        )
        services["scheduler"] = RecurrenceScheduler(
            admin_postgres, admin_invoices, admin_allocator, admin_audit, event_bus, config, valkey
        )

    return services


def create_app(services: dict, verifier: IdentityVerifier) -> FastAPI:
    """FastAPI app with auth middleware, error handlers and all routers."""
    app = FastAPI(title="Billing API")
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        AuthMiddleware, verifier=verifier, organization_service=services["organization"]
    )
    register_error_handlers(app)

    app.include_router(create_data_router(services, services.get("audit")), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")
    app.include_router(create_public_router(services["invoice"]), prefix="/api")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"}).model_dump(mode="json")

    return app


def start_scheduler(scheduler: RecurrenceScheduler) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=scheduler.run_forever, args=(stop_event,), name="recurrence-scheduler", daemon=True
    )
    thread.start()
    return thread, stop_event


def main():
    import uvicorn

    load_dotenv(Path(__file__).parent / ".env")
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = BillingConfig.from_env()
    postgres = PostgresClient(get_database_url())
    admin_postgres = PostgresClient(get_admin_database_url())
    valkey = ValkeyClient(get_valkey_url())

    email = get_email_config()
    email_client = EmailGatewayClient(email["gateway_url"], email["api_key"], email["hmac_secret"])

    payment_client = None
    if os.getenv("PAYMENT_NETWORK_ENABLED", "").lower() in ("1", "true", "yes"):
        network = get_payment_network_config()
        payment_client = PaymentRequestClient(network["base_url"], network["api_key"])

    services = build_services(config, postgres, admin_postgres, valkey, email_client, payment_client)
    verifier = HttpIdentityVerifier(get_identity_config()["userinfo_url"], valkey=valkey)
    app = create_app(services, verifier)

    _, stop_event = start_scheduler(services["scheduler"])
    try:
        uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
    finally:
        stop_event.set()
        PostgresClient.close_all_pools()
        valkey.close()


if __name__ == "__main__":
    main()
