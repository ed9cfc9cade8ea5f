"""
Email gateway client for invoice and receipt emails.

Requests are signed with HMAC-SHA256 over "{timestamp}.{body}" so the
gateway can reject replays older than its tolerance window.
"""

import hashlib
import hmac
import json
import logging
import time

import requests

logger = logging.getLogger(__name__)


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send transactional billing emails through the HTTP gateway."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: int = 10):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def sign(self, timestamp: str, body: str) -> str:
        message = f"{timestamp}.{body}".encode("utf-8")
        return hmac.new(self.hmac_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def _send(self, payload: dict) -> str | None:
        """
        Sign and post one payload.

        Returns:
            Gateway message id, if the gateway reports one

        Raises:
            EmailGatewayError: On any failure
        """
        body = json.dumps(payload, separators=(",", ":"))
        timestamp = str(int(time.time()))

        try:
            response = requests.post(
                self.gateway_url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "X-API-Key": self.api_key,
                    "X-Timestamp": timestamp,
                    "X-Signature": self.sign(timestamp, body),
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}")

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned non-JSON (HTTP {response.status_code})")
            raise EmailGatewayError(f"Invalid response from gateway (HTTP {response.status_code})")

        if not response.ok or not data.get("success"):
            message = data.get("message", "Unknown error")
            logger.error(f"Email gateway rejected {payload.get('type')} email: {message}")
            raise EmailGatewayError(f"Gateway error: {message}")

        return data.get("message_id")

    def send_email(self, to: str, subject: str, body: str) -> str | None:
        """
        Send a plain-text email.

        Raises:
            EmailGatewayError: On gateway failure
        """
        message_id = self._send({
            "type": "custom",
            "email": to,
            "subject": subject,
            "body": body,
        })
        logger.info(f"Email sent to {to}: {subject}")
        return message_id

    def send_invoice_email(
        self,
        to: str,
        invoice_number: str,
        amount: str,
        currency: str,
        invoice_url: str,
        company_name: str,
        customer_name: str,
        due_date: str | None = None,
    ) -> str | None:
        """
        Send the "you have a new invoice" email with the public link.

        Raises:
            EmailGatewayError: On gateway failure
        """
        message_id = self._send({
            "type": "invoice",
            "email": to,
            "subject": f"Invoice {invoice_number} from {company_name}",
            "invoice_number": invoice_number,
            "amount": amount,
            "currency": currency,
            "due_date": due_date,
            "invoice_url": invoice_url,
            "company_name": company_name,
            "customer_name": customer_name,
        })
        logger.info(f"Invoice email for {invoice_number} sent to {to}")
        return message_id
