"""
Tests for the WEB-SRM fiscal client and the Stripe refund gateway.
"""

import json
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
import stripe

from rest_api.models import Branch, DailyClosing
from rest_api.services.fiscal import WebSrmClient, build_fer_payload
from rest_api.services.payments import CircuitBreaker, CircuitBreakerConfig, StripePaymentGateway
from shared.security.request_signing import RequestSigner
from shared.utils.exceptions import FiscalSubmissionError, PaymentProcessorError, UpstreamServiceError


DEVICE_SECRET = "device-secret-for-tests"


@pytest.fixture
def closing():
    return DailyClosing(
        id=11,
        chain_id=1,
        branch_id=3,
        closing_date=date(2026, 10, 16),
        status="draft",
        total_sales=Decimal("63.24"),
        total_refunds=Decimal("12.88"),
        net_sales=Decimal("50.36"),
        transaction_count=2,
        gst_collected=Decimal("2.75"),
        qst_collected=Decimal("5.49"),
        cash_total=Decimal("5.75"),
        card_total=Decimal("0"),
        online_total=Decimal("57.49"),
        created_by=4,
    )


@pytest.fixture
def branch():
    return Branch(id=3, chain_id=1, name="Plateau", gst_number="123456789RT0001", qst_number="1234567890TQ0001")


@pytest.fixture
def breaker():
    return CircuitBreaker(CircuitBreakerConfig(name="test", failure_threshold=2, timeout_seconds=60.0))


def make_client(handler, breaker, enabled=True):
    return WebSrmClient(
        base_url="https://websrm.test.local",
        device_secret=DEVICE_SECRET,
        enabled=enabled,
        breaker=breaker,
        transport=httpx.MockTransport(handler),
    )


class TestFerPayload:

    def test_amounts_are_cents(self, closing, branch):
        fer = build_fer_payload(closing, branch)["transaction"]["reqFer"]

        assert fer["montVente"] == 6324
        assert fer["montRembours"] == 1288
        assert fer["montNet"] == 5036
        assert fer["montCarte"] == 0
        assert fer["nbTrans"] == 2
        assert fer["sequence"] == "FER-3-2026-10-16"
        assert fer["noTPS"] == "123456789RT0001"
        assert fer["refEmpl"] == 4


class TestWebSrmClient:

    def test_successful_submission(self, closing, branch, breaker):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"retourFer": {"retourFerActu": {"psiNoFer": "FER-000123"}}})

        transaction_id = make_client(handler, breaker).submit_closing(closing, branch)

        request = seen["request"]
        assert transaction_id == "FER-000123"
        assert request.url.path == "/closing"
        assert request.headers["Idempotency-Key"] == "FER-3-2026-10-16"
        assert json.loads(request.content)["transaction"]["reqFer"]["idFer"] == 11
        assert RequestSigner(DEVICE_SECRET).verify(
            request.content, request.headers["X-Timestamp"], request.headers["X-Signature"]
        )

    def test_rejected_submission(self, closing, branch, breaker):
        client = make_client(lambda request: httpx.Response(500, json={"error": "boom"}), breaker)

        with pytest.raises(FiscalSubmissionError) as exc_info:
            client.submit_closing(closing, branch)

        assert exc_info.value.status_code == 502
        assert "HTTP 500" in exc_info.value.detail

    def test_client_error_does_not_trip_the_breaker(self, closing, branch, breaker):
        client = make_client(lambda request: httpx.Response(422, json={"error": "bad sequence"}), breaker)

        for _ in range(3):
            with pytest.raises(FiscalSubmissionError) as exc_info:
                client.submit_closing(closing, branch)
            assert "HTTP 422" in exc_info.value.detail

        assert breaker.stats.failed_calls == 0
        assert breaker.state.value == "closed"

    def test_missing_transaction_id(self, closing, branch, breaker):
        client = make_client(lambda request: httpx.Response(200, json={"retourFer": {}}), breaker)

        with pytest.raises(FiscalSubmissionError):
            client.submit_closing(closing, branch)

    def test_network_failure(self, closing, branch, breaker):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FiscalSubmissionError):
            make_client(handler, breaker).submit_closing(closing, branch)

    def test_open_circuit_fails_fast(self, closing, branch, breaker):
        """After repeated failures the endpoint is not called at all."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, breaker)
        for _ in range(2):
            with pytest.raises(FiscalSubmissionError):
                client.submit_closing(closing, branch)

        with pytest.raises(FiscalSubmissionError) as exc_info:
            client.submit_closing(closing, branch)

        assert len(calls) == 2
        assert exc_info.value.status_code == 503
        assert int(exc_info.value.headers["Retry-After"]) >= 1

    def test_disabled_client_is_a_dry_run(self, closing, branch, breaker):
        def handler(request):
            raise AssertionError("WEB-SRM must not be called")

        client = make_client(handler, breaker, enabled=False)

        first = client.submit_closing(closing, branch)
        assert first.startswith("DRYRUN-")
        assert client.submit_closing(closing, branch) == first


class TestStripeGateway:

    def test_refund_in_cents(self, monkeypatch):
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return SimpleNamespace(id="re_123", status="succeeded")

        monkeypatch.setattr(stripe.Refund, "create", fake_create)
        gateway = StripePaymentGateway(
            api_key="sk_test_123", breaker=CircuitBreaker(CircuitBreakerConfig(name="stripe-test"))
        )

        result = gateway.refund(
            payment_intent_id="pi_123",
            amount=Decimal("28.74"),
            reason="requested_by_customer",
            idempotency_key="refund-1",
            metadata={"order_id": 5},
        )

        assert result.refund_id == "re_123"
        assert captured["amount"] == 2874
        assert captured["payment_intent"] == "pi_123"
        assert captured["idempotency_key"] == "refund-1"
        assert captured["metadata"] == {"order_id": "5"}

    def test_declined_refund(self, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.InvalidRequestError("No such payment_intent", "payment_intent")

        monkeypatch.setattr(stripe.Refund, "create", fake_create)
        breaker = CircuitBreaker(CircuitBreakerConfig(name="stripe-test", failure_threshold=1))
        gateway = StripePaymentGateway(api_key="sk_test_123", breaker=breaker)

        with pytest.raises(PaymentProcessorError) as exc_info:
            gateway.refund(
                payment_intent_id="pi_missing",
                amount=Decimal("1.00"),
                reason="duplicate",
                idempotency_key="refund-2",
            )

        assert exc_info.value.status_code == 502
        # A decline is an answer, not an outage
        assert breaker.stats.failed_calls == 0
        assert breaker.state.value == "closed"

    def test_retrieve_payment_in_dollars(self, monkeypatch):
        captured = {}

        def fake_retrieve(payment_intent_id, **kwargs):
            captured["id"] = payment_intent_id
            captured.update(kwargs)
            return SimpleNamespace(id=payment_intent_id, status="succeeded", amount_received=5749)

        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)
        gateway = StripePaymentGateway(
            api_key="sk_test_123", breaker=CircuitBreaker(CircuitBreakerConfig(name="stripe-test"))
        )

        intent = gateway.retrieve_payment("pi_123")

        assert intent.succeeded
        assert intent.amount_received == Decimal("57.49")
        assert captured == {"id": "pi_123", "api_key": "sk_test_123"}

    def test_not_configured(self):
        gateway = StripePaymentGateway(api_key="")

        with pytest.raises(UpstreamServiceError):
            gateway.refund(
                payment_intent_id="pi_123", amount=Decimal("1.00"), reason="duplicate", idempotency_key="k"
            )
