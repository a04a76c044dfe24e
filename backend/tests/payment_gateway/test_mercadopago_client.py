"""Tests for the Mercado Pago gateway client.

Tests that:
- Requests carry the bearer token and the idempotency key
- Error bodies are mapped to GatewayRequestError using the first cause
- Timeouts and 5xx responses surface as GatewayTransportError
"""

import json

import httpx
import pytest

from app.modules.payment_gateway.factory import PaymentGatewayFactory
from app.modules.payment_gateway.gateways import MercadoPagoGateway
from app.modules.payment_gateway.interface import (
    ChargeRequest,
    GatewayConfig,
    GatewayRequestError,
    GatewayTransportError,
    PreferenceItem,
    PreferenceRequest,
)


def make_gateway(handler) -> MercadoPagoGateway:
    config = GatewayConfig(provider="mercadopago", access_token="TEST-123", base_url="https://api.test")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MercadoPagoGateway(config, client=client)


def charge_request() -> ChargeRequest:
    return ChargeRequest(
        amount=30,
        description="Membership Monthly",
        external_reference="acc1|inv1",
        payment_method_id="pix",
        payer={"email": "member@example.com"},
        metadata={"uid": "acc1", "invoice_id": "inv1"},
        binary_mode=False,
    )


class TestCreateCharge:

    @pytest.mark.asyncio
    async def test_request_headers_and_body(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["request"] = request
            return httpx.Response(201, json={
                "id": 42,
                "status": "pending",
                "status_detail": "pending_waiting_transfer",
                "external_reference": "acc1|inv1",
                "transaction_amount": 30,
            })

        gateway = make_gateway(handler)
        charge = await gateway.create_charge(charge_request(), idempotency_key="key-1")
        await gateway.close()

        request = seen["request"]
        assert request.method == "POST"
        assert str(request.url) == "https://api.test/v1/payments"
        assert request.headers["Authorization"] == "Bearer TEST-123"
        assert request.headers["X-Idempotency-Key"] == "key-1"
        body = json.loads(request.content)
        assert body["transaction_amount"] == 30.0
        assert body["binary_mode"] is False
        assert "token" not in body
        assert charge.id == "42"
        assert charge.status == "pending"
        assert charge.transaction_amount == 30.0

    @pytest.mark.asyncio
    async def test_error_uses_first_cause(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={
                "message": "bad request",
                "error": "bad_request",
                "cause": [{"code": 2034, "description": "Invalid users involved"}],
            })

        gateway = make_gateway(handler)
        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.create_charge(charge_request(), idempotency_key="key-1")

        error = exc_info.value
        assert error.description == "Invalid users involved"
        assert error.code == "2034"
        assert error.status_code == 400

    @pytest.mark.asyncio
    async def test_error_without_cause(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"message": "invalid access token", "error": "unauthorized"})

        gateway = make_gateway(handler)
        with pytest.raises(GatewayRequestError) as exc_info:
            await gateway.create_charge(charge_request(), idempotency_key="key-1")

        assert exc_info.value.description == "invalid access token"
        assert exc_info.value.code == "unauthorized"

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(self) -> None:
        gateway = make_gateway(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(GatewayTransportError):
            await gateway.create_charge(charge_request(), idempotency_key="key-1")

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        gateway = make_gateway(handler)
        with pytest.raises(GatewayTransportError):
            await gateway.create_charge(charge_request(), idempotency_key="key-1")


class TestLookupAndPreference:

    @pytest.mark.asyncio
    async def test_get_charge(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/payments/42"
            assert "X-Idempotency-Key" not in request.headers
            return httpx.Response(200, json={
                "id": 42,
                "status": "approved",
                "date_approved": "2024-02-01T10:00:00.000-03:00",
                "metadata": {"uid": "acc1"},
            })

        charge = await make_gateway(handler).get_charge("42")

        assert charge.status == "approved"
        assert charge.date_approved.isoformat() == "2024-02-01T10:00:00-03:00"
        assert charge.metadata == {"uid": "acc1"}

    @pytest.mark.asyncio
    async def test_create_preference(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/checkout/preferences"
            body = json.loads(request.content)
            assert body["items"][0]["currency_id"] == "BRL"
            return httpx.Response(201, json={
                "id": "pref-9",
                "init_point": "https://www.mercadopago.com/checkout/v1/redirect?pref_id=pref-9",
            })

        request = PreferenceRequest(
            items=[PreferenceItem(item_id="inv1", title="Membership Monthly", unit_price=30)],
            currency="BRL",
            external_reference="acc1|inv1",
        )
        preference = await make_gateway(handler).create_preference(request)

        assert preference.id == "pref-9"
        assert preference.sandbox_init_point is None


class TestFactory:

    def test_default_provider(self) -> None:
        config = GatewayConfig(provider="mercadopago", access_token="TEST-1")

        gateway = PaymentGatewayFactory.create(config)

        assert isinstance(gateway, MercadoPagoGateway)
        assert gateway.is_sandbox
