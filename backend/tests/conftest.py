"""Shared fixtures for membership billing tests.

The gateway is replaced by ``FakeGateway``, an in-memory implementation of
the gateway interface that records requests and answers from scripted
charges.
"""

from datetime import datetime, timezone
from typing import Optional

import pytest

from app.core.document_store import MemoryDocumentStore
from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.payment_gateway.interface import (
    Charge,
    ChargeRequest,
    CheckoutPreference,
    GatewayConfig,
    GatewayRequestError,
    PaymentGatewayInterface,
    PreferenceRequest,
)


class FakeGateway(PaymentGatewayInterface):
    """Scripted gateway.

    ``next_charge`` is the response body returned by the next
    ``create_charge``; ``charges`` holds the bodies returned by
    ``get_charge``. Setting ``create_error`` / ``get_error`` makes the
    corresponding call raise.
    """

    def __init__(self, sandbox: bool = True):
        super().__init__(GatewayConfig(provider="fake", access_token="TEST-token", sandbox_mode=sandbox))
        self.next_charge: dict = {"id": "pay-1", "status": "approved"}
        self.charges: dict[str, dict] = {}
        self.preference: dict = {
            "id": "pref-1",
            "init_point": "https://www.mercadopago.com/checkout/v1/redirect?pref_id=pref-1",
            "sandbox_init_point": "https://sandbox.mercadopago.com/checkout/v1/redirect?pref_id=pref-1",
        }
        self.create_error: Optional[Exception] = None
        self.get_error: Optional[Exception] = None
        self.preference_error: Optional[Exception] = None
        self.charge_requests: list[tuple[ChargeRequest, str]] = []
        self.preference_requests: list[PreferenceRequest] = []
        self.fetched: list[str] = []

    async def create_charge(self, request: ChargeRequest, idempotency_key: str) -> Charge:
        self.charge_requests.append((request, idempotency_key))
        if self.create_error is not None:
            raise self.create_error
        body = dict(self.next_charge)
        body.setdefault("external_reference", request.external_reference)
        body.setdefault("metadata", request.metadata)
        self.charges[str(body["id"])] = body
        return Charge.from_response(body)

    async def get_charge(self, payment_id: str) -> Charge:
        self.fetched.append(payment_id)
        if self.get_error is not None:
            raise self.get_error
        body = self.charges.get(payment_id)
        if body is None:
            raise GatewayRequestError("Payment not found", code="not_found", status_code=404)
        return Charge.from_response(body)

    async def create_preference(self, request: PreferenceRequest) -> CheckoutPreference:
        self.preference_requests.append(request)
        if self.preference_error is not None:
            raise self.preference_error
        return CheckoutPreference(
            id=self.preference["id"],
            init_point=self.preference.get("init_point"),
            sandbox_init_point=self.preference.get("sandbox_init_point"),
            raw=self.preference,
        )


class FixedClock:
    """Clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 1, 31, 15, 30, tzinfo=timezone.utc))


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def invoices(store, clock) -> InvoiceLifecycleService:
    return InvoiceLifecycleService(store, clock=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sandbox_env() -> BillingEnvironment:
    return BillingEnvironment(
        sandbox=True,
        notification_url="https://billing.example.com/api/v1/payments/webhook",
        back_urls={"success": "https://club.example.com/pay-success.html"},
    )


@pytest.fixture
def production_env() -> BillingEnvironment:
    return BillingEnvironment(
        sandbox=False,
        notification_url="https://billing.example.com/api/v1/payments/webhook",
    )
