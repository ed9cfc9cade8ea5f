"""Tests for application wiring."""

from unittest.mock import Mock

from fastapi.testclient import TestClient

from auth.identity import HttpIdentityVerifier
from clients.payment_request_client import PaymentRequestClient
from clients.postgres_client import PostgresClient
from core.config import BillingConfig
from core.events import PaymentRecorded, RecurringInvoiceGenerated
from core.services.recurrence_service import RecurrenceScheduler
from main import build_services, create_app


class TestBuildServices:

    def test_core_services(self):
        services = build_services(BillingConfig(), Mock(spec=PostgresClient))

        assert {"organization", "customer", "invoice", "payment", "dashboard", "audit", "event_bus"} <= set(services)
        assert "payment_sync" not in services
        assert "scheduler" not in services

    def test_handlers_subscribed(self):
        event_bus = build_services(BillingConfig(), Mock(spec=PostgresClient))["event_bus"]

        assert event_bus.has_subscribers(PaymentRecorded)
        assert event_bus.has_subscribers(RecurringInvoiceGenerated)

    def test_optional_services(self):
        services = build_services(
            BillingConfig(),
            Mock(spec=PostgresClient),
            admin_postgres=Mock(spec=PostgresClient),
            payment_client=Mock(spec=PaymentRequestClient),
        )

        assert isinstance(services["scheduler"], RecurrenceScheduler)
        assert services["scheduler"].postgres is not services["invoice"].postgres
        assert "payment_sync" in services


class TestCreateApp:

    def test_health_is_public(self):
        services = build_services(BillingConfig(), Mock(spec=PostgresClient))
        verifier = Mock(spec=HttpIdentityVerifier)

        response = TestClient(create_app(services, verifier)).get("/health")

        assert response.status_code == 200
        assert response.json()["data"] == {"status": "ok"}
        verifier.verify.assert_not_called()

    def test_api_requires_token(self):
        services = build_services(BillingConfig(), Mock(spec=PostgresClient))

        response = TestClient(create_app(services, Mock(spec=HttpIdentityVerifier))).get(
            "/api/data", params={"type": "customers"}
        )

        assert response.status_code == 401
