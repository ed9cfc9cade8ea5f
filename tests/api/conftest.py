"""API test fixtures - authenticated TestClient over mocked services."""

from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.identity import HttpIdentityVerifier, VerifiedIdentity
from auth.security_middleware import AuthMiddleware
from core.audit import AuditLogger
from core.models import User
from core.services.customer_service import CustomerService
from core.services.dashboard_service import DashboardService
from core.services.invoice_service import InvoiceService
from core.services.organization_service import OrganizationService
from core.services.payment_service import PaymentService
from core.services.payment_sync_service import PaymentSyncService
from utils.timezone import now_utc


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def audit():
    return Mock(spec=AuditLogger)


@pytest.fixture
def organization_service(org_id, user_id):
    service = Mock(spec=OrganizationService)
    service.ensure_for_identity.return_value = User(
        id=user_id,
        external_id="idp|a",
        email="owner@test.local",
        organization_id=org_id,
        created_at=now_utc(),
    )
    return service


@pytest.fixture
def customer_service():
    return Mock(spec=CustomerService)


@pytest.fixture
def invoice_service():
    return Mock(spec=InvoiceService)


@pytest.fixture
def payment_service():
    return Mock(spec=PaymentService)


@pytest.fixture
def payment_sync_service():
    return Mock(spec=PaymentSyncService)


@pytest.fixture
def dashboard_service():
    return Mock(spec=DashboardService)


# =============================================================================
# SERVICES DICT
# =============================================================================


@pytest.fixture
def services(
    organization_service, customer_service, invoice_service, payment_service, payment_sync_service, dashboard_service
):
    return {
        "organization": organization_service,
        "customer": customer_service,
        "invoice": invoice_service,
        "payment": payment_service,
        "payment_sync": payment_sync_service,
        "dashboard": dashboard_service,
    }


# =============================================================================
# AUTH FIXTURES
# =============================================================================


@pytest.fixture
def mock_verifier():
    verifier = Mock(spec=HttpIdentityVerifier)
    verifier.verify.return_value = VerifiedIdentity(user_id="idp|a", email="owner@test.local")
    return verifier


# =============================================================================
# APP & CLIENT FIXTURES
# =============================================================================


@pytest.fixture
def app(mock_verifier, services, audit):
    """FastAPI app with auth middleware, error handlers, and data/actions/public routes."""
    from api.actions import create_actions_router
    from api.data import create_data_router
    from api.public import create_public_router

    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        AuthMiddleware,
        verifier=mock_verifier,
        organization_service=services["organization"],
    )
    register_error_handlers(app)

    app.include_router(create_data_router(services, audit), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")
    app.include_router(create_public_router(services["invoice"]), prefix="/api")

    return app


@pytest.fixture
def client(app):
    """Authenticated test client."""
    return TestClient(app, raise_server_exceptions=False, headers={"Authorization": "Bearer test-token"})


@pytest.fixture
def unauthed_client(app):
    """Unauthenticated test client (no bearer token)."""
    return TestClient(app, raise_server_exceptions=False)
