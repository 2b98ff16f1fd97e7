"""Tests for the payment gateways."""

import json
from decimal import Decimal

import httpx
import pytest

from app.errors import PaymentUnavailableError
from app.models import PaymentRequest
from app.payments import HttpPaymentGateway, MockPaymentGateway


def _request(amount="20.00"):
    return PaymentRequest(amount=Decimal(amount), currency="GBP", token="tok_test")


def _gateway(handler):
    return HttpPaymentGateway("http://payments.test/", transport=httpx.MockTransport(handler))


class TestMockPaymentGateway:
    async def test_always_succeeds_with_mock_reference(self):
        outcome = await MockPaymentGateway().charge(_request())

        assert outcome.succeeded
        assert outcome.provider_reference.startswith("MOCK-")
        assert len(outcome.provider_reference) == len("MOCK-") + 32
        assert outcome.error is None


class TestHttpPaymentGateway:
    async def test_posts_charge_and_returns_reference(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"succeeded": True, "reference": "ch_123"})

        outcome = await _gateway(handler).charge(_request())

        assert outcome.succeeded
        assert outcome.provider_reference == "ch_123"
        assert seen["url"] == "http://payments.test/charges"
        assert seen["body"] == {"amount": "20.00", "currency": "GBP", "token": "tok_test"}

    async def test_402_is_a_decline(self):
        def handler(request):
            return httpx.Response(402, json={"error": "Insufficient funds"})

        outcome = await _gateway(handler).charge(_request())

        assert not outcome.succeeded
        assert outcome.error == "Insufficient funds"

    async def test_unsuccessful_body_is_a_decline(self):
        def handler(request):
            return httpx.Response(200, json={"succeeded": False, "error": "Do not honour"})

        outcome = await _gateway(handler).charge(_request())

        assert not outcome.succeeded
        assert outcome.error == "Do not honour"

    async def test_server_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(PaymentUnavailableError):
            await _gateway(handler).charge(_request())

    async def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentUnavailableError) as exc_info:
            await _gateway(handler).charge(_request())

        assert exc_info.value.status_code == 503

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>ok</html>"),
            httpx.Response(200, json=[1, 2]),
        ],
        ids=["html", "json-array"],
    )
    async def test_malformed_success_body_is_unavailable(self, response):
        def handler(request):
            return response

        with pytest.raises(PaymentUnavailableError) as exc_info:
            await _gateway(handler).charge(_request())

        assert exc_info.value.retryable
