"""Tests del cliente de reembolsos ASAAS y el circuit breaker"""
from decimal import Decimal
import json

import httpx
import pytest

from shared.errors import GatewayError
from shared.utils.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from services.ticket_purchase.services.asaas_service import AsaasGateway


def _gateway(handler, breaker=None):
    gateway = AsaasGateway(api_key="clave-test", environment="sandbox", breaker=breaker)
    transport = httpx.MockTransport(handler)
    gateway._client = lambda: httpx.AsyncClient(
        base_url=gateway.base_url,
        headers={"access_token": gateway.api_key},
        transport=transport,
    )
    return gateway


class TestAsaasGateway:
    async def test_refund_request(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["token"] = request.headers["access_token"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "pay_1", "status": "REFUNDED"})

        gateway = _gateway(handler)
        data = await gateway.refund("pay_1", Decimal("206.00"), "Reembolso: No puedo asistir")

        assert data["status"] == "REFUNDED"
        assert seen["url"] == "https://sandbox.asaas.com/api/v3/payments/pay_1/refund"
        assert seen["token"] == "clave-test"
        assert seen["body"] == {"value": 206.0, "description": "Reembolso: No puedo asistir"}

    async def test_http_error(self):
        gateway = _gateway(lambda request: httpx.Response(400, json={"errors": []}))

        with pytest.raises(GatewayError, match="HTTP 400"):
            await gateway.refund("pay_1", Decimal("10"), "x")

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("lento", request=request)

        with pytest.raises(GatewayError, match="Timeout"):
            await _gateway(handler).refund("pay_1", Decimal("10"), "x")

    async def test_without_api_key(self):
        gateway = AsaasGateway(api_key="", environment="sandbox")
        with pytest.raises(GatewayError):
            await gateway.refund("pay_1", Decimal("10"), "x")

    async def test_open_circuit_fails_fast(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        breaker = CircuitBreaker("asaas-test", failure_threshold=2, recovery_timeout=60,
                                 expected_exception=httpx.HTTPError)
        gateway = _gateway(handler, breaker=breaker)

        for _ in range(2):
            with pytest.raises(GatewayError):
                await gateway.refund("pay_1", Decimal("10"), "x")
        with pytest.raises(GatewayError, match="no disponible"):
            await gateway.refund("pay_1", Decimal("10"), "x")

        assert len(calls) == 2
        assert breaker.state == CircuitState.OPEN


class TestCircuitBreaker:
    async def test_half_open_recovers(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=0, expected_exception=ValueError)

        async def boom():
            raise ValueError("fallo")

        async def ok():
            return "ok"

        with pytest.raises(ValueError):
            await breaker.call(boom)
        assert breaker.state == CircuitState.OPEN

        assert await breaker.call(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    async def test_open_raises(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=60, expected_exception=ValueError)

        async def boom():
            raise ValueError("fallo")

        with pytest.raises(ValueError):
            await breaker.call(boom)
        with pytest.raises(CircuitOpenError):
            await breaker.call(boom)

    async def test_unexpected_exceptions_do_not_count(self):
        breaker = CircuitBreaker("test", failure_threshold=1, expected_exception=ValueError)

        async def other():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await breaker.call(other)
        assert breaker.state == CircuitState.CLOSED
