"""Tests for EventBus."""

import logging
from decimal import Decimal

import pytest

from core.event_bus import EventBus
from core.events import InvoiceSent, InvoicePaid, PaymentRecorded
from factories import make_invoice, make_payment


# =============================================================================
# FIXTURES - in-memory events, no DB needed
# =============================================================================


@pytest.fixture
def _invoice():
    return make_invoice()


@pytest.fixture
def _payment(_invoice):
    return make_payment(_invoice, Decimal("40"))


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe(InvoiceSent, received.append)

        event = InvoiceSent.create(invoice=_invoice)
        bus.publish(event)

        assert received == [event]
        assert received[0] is event

    def test_subscribe_by_name_or_class_is_equivalent(self, _invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceSent", lambda e: received.append("by name"))
        bus.subscribe(InvoiceSent, lambda e: received.append("by class"))

        bus.publish(InvoiceSent.create(invoice=_invoice))

        assert received == ["by name", "by class"]

    def test_multiple_handlers_called_in_subscription_order(self, _invoice):
        bus = EventBus()
        order = []
        bus.subscribe(InvoicePaid, lambda e: order.append("A"))
        bus.subscribe(InvoicePaid, lambda e: order.append("B"))
        bus.subscribe(InvoicePaid, lambda e: order.append("C"))

        bus.publish(InvoicePaid.create(invoice=_invoice))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, _invoice, _payment):
        bus = EventBus()
        invoice_calls = []
        payment_calls = []
        bus.subscribe(InvoiceSent, invoice_calls.append)
        bus.subscribe(PaymentRecorded, payment_calls.append)

        bus.publish(PaymentRecorded.create(payment=_payment, invoice=_invoice))

        assert invoice_calls == []
        assert len(payment_calls) == 1

    def test_no_subscribers_does_not_raise(self, _invoice):
        assert EventBus().publish(InvoiceSent.create(invoice=_invoice)) == 0

    def test_has_subscribers(self):
        bus = EventBus()
        assert not bus.has_subscribers(InvoicePaid)
        bus.subscribe("InvoicePaid", lambda e: None)
        assert bus.has_subscribers(InvoicePaid)


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, _invoice):
        bus = EventBus()

        def failing_handler(event):
            raise RuntimeError("boom")

        bus.subscribe(InvoiceSent, failing_handler)

        assert bus.publish(InvoiceSent.create(invoice=_invoice)) == 1

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, _invoice, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("receipt failed")

        bus.subscribe(InvoicePaid, failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoicePaid.create(invoice=_invoice)
            bus.publish(event)

        assert "receipt failed" in caplog.text
        assert "InvoicePaid" in caplog.text
        assert event.event_id in caplog.text

    def test_all_handlers_run_even_if_some_fail(self, _invoice, _payment):
        bus = EventBus()
        results = []

        def fail(event):
            raise RuntimeError("fail")

        bus.subscribe(PaymentRecorded, fail)
        bus.subscribe(PaymentRecorded, lambda e: results.append("survived_1"))
        bus.subscribe(PaymentRecorded, fail)
        bus.subscribe(PaymentRecorded, lambda e: results.append("survived_2"))

        failures = bus.publish(PaymentRecorded.create(payment=_payment, invoice=_invoice))

        assert results == ["survived_1", "survived_2"]
        assert failures == 2
