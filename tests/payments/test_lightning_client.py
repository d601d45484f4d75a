"""LnbitsClient over httpx.MockTransport: invoice creation, status parsing, error wrapping."""
import json

import httpx
import pybreaker
import pytest

from creditledger.services.lightning.client import LnbitsClient, PaymentBackendError, parse_paid_flag


def _client(handler, breaker=None):
    return LnbitsClient(
        base_url="https://lnbits.test/",
        api_key="invoice-key",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
        breaker=breaker or pybreaker.CircuitBreaker(fail_max=100, reset_timeout=60),
    )


class TestParsePaidFlag:
    @pytest.mark.parametrize(
        "body",
        [
            {"paid": True},
            {"paid": "true"},
            {"paid": "TRUE"},
            {"paid": 1},
            {"status": "success"},
            {"details": {"status": "settled"}},
            {"paid": False, "details": {"status": "complete"}},
            {"details": {"paid": True}},
        ],
    )
    def test_paid_variants(self, body):
        assert parse_paid_flag(body) is True

    @pytest.mark.parametrize(
        "body",
        [
            {"paid": False},
            {"paid": "false"},
            {"paid": 0},
            {"paid": 2},
            {"status": "pending"},
            {},
            [],
            None,
        ],
    )
    def test_unpaid_variants(self, body):
        assert parse_paid_flag(body) is False


class TestLnbitsClient:
    def test_create_invoice_posts_incoming_payment(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["key"] = request.headers["X-Api-Key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"payment_request": "lnbc20u1...", "payment_hash": "abc"})

        invoice = _client(handler).create_invoice(2000, "memo")

        assert invoice.payment_request == "lnbc20u1..."
        assert invoice.payment_hash == "abc"
        assert seen["url"] == "https://lnbits.test/api/v1/payments"
        assert seen["key"] == "invoice-key"
        assert seen["body"] == {"out": False, "amount": 2000, "memo": "memo"}

    def test_create_invoice_missing_fields(self):
        client = _client(lambda request: httpx.Response(201, json={"payment_hash": "abc"}))
        with pytest.raises(PaymentBackendError):
            client.create_invoice(100)

    def test_check_payment(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/payments/abc"
            return httpx.Response(200, json={"paid": "true"})

        assert _client(handler).check_payment("abc") is True

    def test_non_2xx_is_backend_error(self):
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(PaymentBackendError) as exc_info:
            client.check_payment("abc")
        assert exc_info.value.status_code == 502

    def test_network_error_is_backend_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(PaymentBackendError):
            _client(handler).check_payment("abc")

    def test_invalid_json_is_backend_error(self):
        client = _client(lambda request: httpx.Response(200, text="not json"))
        with pytest.raises(PaymentBackendError):
            client.check_payment("abc")

    def test_open_breaker_is_backend_error_without_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        breaker = pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60)
        client = _client(handler, breaker)
        for _ in range(2):
            with pytest.raises(PaymentBackendError):
                client.check_payment("abc")
        with pytest.raises(PaymentBackendError):
            client.check_payment("abc")
        assert len(calls) == 2
