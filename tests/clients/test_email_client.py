"""
Tests for EmailGatewayClient.

Tests verify the client's contract with calling code: signed requests out,
message ids or EmailGatewayError back.
"""

import hashlib
import hmac
import json

import pytest
import requests
import responses

from clients.email_client import EmailGatewayClient, EmailGatewayError

GATEWAY_URL = "https://gateway.example.com/send"


@pytest.fixture
def client():
    """Create client with test credentials."""
    return EmailGatewayClient(
        gateway_url=GATEWAY_URL,
        api_key="test-api-key",
        hmac_secret="test-hmac-secret",
    )


class TestEmailGatewayClientInit:
    """Test client initialization - fail-fast on invalid config."""

    def test_init_rejects_empty_gateway_url(self):
        """Empty gateway_url raises ValueError."""
        with pytest.raises(ValueError, match="gateway_url"):
            EmailGatewayClient(gateway_url="", api_key="k", hmac_secret="s")

    def test_init_rejects_empty_api_key(self):
        """Empty api_key raises ValueError."""
        with pytest.raises(ValueError, match="api_key"):
            EmailGatewayClient(gateway_url=GATEWAY_URL, api_key="", hmac_secret="s")

    def test_init_rejects_empty_hmac_secret(self):
        """Empty hmac_secret raises ValueError."""
        with pytest.raises(ValueError, match="hmac_secret"):
            EmailGatewayClient(gateway_url=GATEWAY_URL, api_key="k", hmac_secret="")


class TestSigning:

    @responses.activate
    def test_request_is_signed_over_timestamp_and_body(self, client):
        """X-Signature is HMAC-SHA256 of "{X-Timestamp}.{body}"."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        client.send_email(to="user@example.com", subject="Hello", body="Body")

        request = responses.calls[0].request
        body = request.body.decode() if isinstance(request.body, bytes) else request.body
        expected = hmac.new(
            b"test-hmac-secret",
            f"{request.headers['X-Timestamp']}.{body}".encode(),
            hashlib.sha256,
        ).hexdigest()
        assert request.headers["X-Signature"] == expected
        assert request.headers["X-API-Key"] == "test-api-key"

    def test_sign_changes_with_timestamp(self, client):
        assert client.sign("1", "{}") != client.sign("2", "{}")


class TestSendInvoiceEmail:
    """Test send_invoice_email - uses responses library for HTTP mocking."""

    @responses.activate
    def test_payload_carries_public_link(self, client):
        responses.add(responses.POST, GATEWAY_URL, json={"success": True, "message_id": "m-1"}, status=200)

        message_id = client.send_invoice_email(
            to="jane@buyer.test",
            invoice_number="INV-0001",
            amount="220.00",
            currency="USD",
            invoice_url="https://pay.example.com/invoice/AbCd",
            company_name="Acme",
            customer_name="Jane",
        )

        assert message_id == "m-1"
        payload = json.loads(responses.calls[0].request.body)
        assert payload["type"] == "invoice"
        assert payload["subject"] == "Invoice INV-0001 from Acme"
        assert payload["invoice_url"] == "https://pay.example.com/invoice/AbCd"

    @responses.activate
    def test_gateway_500_raises_error(self, client):
        """Server error from gateway raises EmailGatewayError."""
        responses.add(
            responses.POST,
            GATEWAY_URL,
            json={"success": False, "message": "Internal error"},
            status=500,
        )

        with pytest.raises(EmailGatewayError, match="Internal error"):
            client.send_invoice_email(
                to="jane@buyer.test", invoice_number="INV-0001", amount="1", currency="USD",
                invoice_url="u", company_name="Acme", customer_name="Jane",
            )


class TestSendEmail:
    """Test generic send_email method."""

    @responses.activate
    def test_successful_send_without_message_id(self, client):
        """Successful send returns None when the gateway reports no id."""
        responses.add(responses.POST, GATEWAY_URL, json={"success": True}, status=200)

        assert client.send_email(to="user@example.com", subject="Test", body="Body") is None

    @responses.activate
    def test_gateway_success_false_raises_error(self, client):
        """Gateway returns 200 but success=false raises EmailGatewayError."""
        responses.add(
            responses.POST,
            GATEWAY_URL,
            json={"success": False, "message": "Invalid email"},
            status=200,
        )

        with pytest.raises(EmailGatewayError):
            client.send_email(to="invalid", subject="Test", body="Body")

    @responses.activate
    def test_connection_failure_raises_error(self, client):
        """Network failure raises EmailGatewayError."""
        responses.add(
            responses.POST,
            GATEWAY_URL,
            body=requests.exceptions.ConnectionError("Network unreachable"),
        )

        with pytest.raises(EmailGatewayError):
            client.send_email(to="user@example.com", subject="Test", body="Body")

    @responses.activate
    def test_invalid_json_response_raises_error(self, client):
        """Non-JSON response raises EmailGatewayError."""
        responses.add(responses.POST, GATEWAY_URL, body="not json", status=200)

        with pytest.raises(EmailGatewayError):
            client.send_email(to="user@example.com", subject="Test", body="Body")
