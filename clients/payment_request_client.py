"""
Payment-request network client.

Creates on-chain payment requests for invoices and reads back the payment
events detected against them. The network speaks JSON over HTTPS with an
API key header; amounts travel as integer strings in the token's smallest
unit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import requests

logger = logging.getLogger(__name__)


class PaymentNetworkError(Exception):
    """Raised when the payment-request network call fails."""


@dataclass(frozen=True)
class PaymentEvent:
    """A payment observed on-chain against a payment request."""

    tx_hash: str
    amount: Decimal
    network: str
    occurred_at: datetime


class PaymentRequestClient:
    """HTTP client for the payment-request network."""

    def __init__(self, base_url: str, api_key: str, token_decimals: int = 6, timeout: int = 15):
        if not base_url:
            raise ValueError("base_url is required")
        if not api_key:
            raise ValueError("api_key is required")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token_decimals = token_decimals
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict:
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers={"x-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Payment network connection failed: {e}")
            raise PaymentNetworkError(f"Connection failed: {e}")

        if response.status_code >= 400:
            logger.error(f"Payment network error {response.status_code}: {response.text}")
            raise PaymentNetworkError(f"Payment network returned {response.status_code}")

        try:
            return response.json()
        except ValueError:
            raise PaymentNetworkError("Invalid response from payment network")

    def _to_units(self, amount: Decimal) -> str:
        return str(int(amount.scaleb(self.token_decimals)))

    def _from_units(self, units: str) -> Decimal:
        return Decimal(units).scaleb(-self.token_decimals)

    def create_request(
        self,
        payee_wallet: str,
        payer_wallet: str | None,
        amount: Decimal,
        currency: str,
        invoice_number: str,
        due_date: datetime | None = None,
    ) -> str:
        """
        Create a payment request.

        Returns:
            The network's request ID.

        Raises:
            PaymentNetworkError: On any failure
        """
        payload = {
            "payee": payee_wallet,
            "payer": payer_wallet,
            "expectedAmount": self._to_units(amount),
            "currency": currency,
            "contentData": {
                "invoiceNumber": invoice_number,
                "dueDate": due_date.isoformat() if due_date else None,
                "reason": f"Payment for Invoice {invoice_number}",
            },
        }
        data = self._request("POST", "/requests", payload)

        request_id = data.get("requestId")
        if not request_id:
            raise PaymentNetworkError("Payment network response has no requestId")

        logger.info(f"Payment request {request_id} created for invoice {invoice_number}")
        return request_id

    def get_payment_events(self, request_id: str) -> list[PaymentEvent]:
        """
        List payment events recorded against a request.

        Raises:
            PaymentNetworkError: On any failure
        """
        data = self._request("GET", f"/requests/{request_id}")
        events = (data.get("balance") or {}).get("events") or []

        result = []
        for event in events:
            parameters = event.get("parameters") or {}
            tx_hash = parameters.get("txHash")
            if not tx_hash:
                continue
            result.append(PaymentEvent(
                tx_hash=tx_hash,
                amount=self._from_units(event.get("amount") or "0"),
                network=parameters.get("network") or "mainnet",
                occurred_at=datetime.fromtimestamp(int(event.get("timestamp", 0)), tz=timezone.utc),
            ))

        return result
