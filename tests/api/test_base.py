"""Tests for the unified response envelope."""

from datetime import timezone
from decimal import Decimal

from api.base import ErrorCodes, error_response, success_response
from core.exceptions import AmountExceedsDue


class TestSuccessEnvelope:

    def test_shape(self):
        body = success_response({"invoice_number": "INV-0001"}).model_dump(mode="json")

        assert body["success"] is True
        assert body["data"] == {"invoice_number": "INV-0001"}
        assert body["error"] is None
        assert body["warnings"] == []
        assert body["meta"]["request_id"]

    def test_side_effect_failures_ride_along_as_warnings(self):
        envelope = success_response(
            {"status": "sent"}, warnings=["Invoice email could not be sent: gateway timeout"]
        )

        assert envelope.success is True
        assert envelope.warnings == ["Invoice email could not be sent: gateway timeout"]

    def test_decimal_amounts_serialize_as_strings(self):
        body = success_response({"total": Decimal("220.00")}).model_dump(mode="json")

        assert body["data"]["total"] == "220.00"

    def test_request_id_passed_through(self):
        assert success_response({}, request_id="req-1").meta.request_id == "req-1"

    def test_timestamp_is_utc(self):
        assert success_response({}).meta.timestamp.tzinfo == timezone.utc


class TestErrorEnvelope:

    def test_billing_error_code_and_message(self):
        exc = AmountExceedsDue(Decimal("500"), Decimal("100"))

        envelope = error_response(exc.code, str(exc), "req-2")

        assert envelope.success is False
        assert envelope.data is None
        assert envelope.error.code == "AMOUNT_EXCEEDS_DUE"
        assert envelope.error.message == "Payment amount 500 exceeds amount due 100"
        assert envelope.meta.request_id == "req-2"

    def test_no_warnings_on_failure(self):
        assert error_response(ErrorCodes.INTERNAL_ERROR, "boom").warnings == []


class TestErrorCodes:

    def test_transport_codes(self):
        assert ErrorCodes.NOT_AUTHENTICATED == "NOT_AUTHENTICATED"
        assert ErrorCodes.INVALID_TOKEN == "INVALID_TOKEN"
        assert ErrorCodes.SERVICE_UNAVAILABLE == "SERVICE_UNAVAILABLE"
        assert ErrorCodes.VALIDATION_ERROR == "VALIDATION_ERROR"
        assert ErrorCodes.INTERNAL_ERROR == "INTERNAL_ERROR"
