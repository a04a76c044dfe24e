"""Tests for the payment submission service."""

import asyncio

import pytest

from app.modules.membership.exceptions import (
    GatewaySubmissionError,
    MissingChargeToken,
    TransientGatewayError,
    ValidationError,
)
from app.modules.membership.models import InvoiceStatus
from app.modules.membership.reference import decode_reference
from app.modules.membership.schemas import PaymentForm
from app.modules.membership.submission import (
    CREDENTIAL_MISMATCH_HINT,
    PaymentSubmissionService,
    credential_mismatch_hint,
    derive_idempotency_key,
)
from app.modules.membership.webhook import WebhookReconciler
from app.modules.payment_gateway.interface import GatewayRequestError, GatewayTransportError

VALID_CPF = "52998224725"


def card_form() -> PaymentForm:
    return PaymentForm(
        token="card-token",
        payment_method_id="visa",
        payment_type_id="credit_card",
        payer={"email": "member@example.com", "identification": {"number": VALID_CPF}},
    )


@pytest.fixture
def service(gateway, invoices, sandbox_env) -> PaymentSubmissionService:
    return PaymentSubmissionService(gateway, invoices, sandbox_env)


async def invoice_count(store) -> int:
    total = 0
    for status in InvoiceStatus:
        total += len(await store.query("invoices", "status", "==", status.value))
    return total


class TestSubmit:

    @pytest.mark.asyncio
    async def test_approved_card_charge(self, service, gateway, invoices) -> None:
        gateway.next_charge = {
            "id": 1001,
            "status": "approved",
            "status_detail": "accredited",
            "date_approved": "2024-01-31T16:00:00.000-03:00",
            "payment_method_id": "visa",
        }

        result = await service.submit("acc1", "monthly", card_form())

        assert result.payment_id == "1001"
        assert result.status == "approved"
        assert result.next_action is None
        invoice = await invoices.get_invoice("acc1", result.invoice_id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.gateway_charge_id == "1001"
        assert invoice.paid_at.isoformat() == "2024-01-31T16:00:00-03:00"

    @pytest.mark.asyncio
    async def test_charge_request_contents(self, service, gateway, sandbox_env) -> None:
        result = await service.submit("acc1", "quarterly", card_form(), idempotency_key="client-key")

        request, key = gateway.charge_requests[0]
        assert key == "client-key"
        assert request.amount == 85.0
        assert request.binary_mode is True
        assert request.notification_url == sandbox_env.notification_url
        assert request.metadata == {"uid": "acc1", "invoice_id": result.invoice_id, "plan_type": "quarterly"}
        reference = decode_reference(request.external_reference)
        assert (reference.account_id, reference.invoice_id) == ("acc1", result.invoice_id)
        payload = request.to_payload()
        assert payload["token"] == "card-token"
        assert payload["payer"]["identification"]["number"] == VALID_CPF

    @pytest.mark.asyncio
    async def test_derived_idempotency_key_is_deterministic(self, service, gateway, clock) -> None:
        await service.submit("acc1", "monthly", card_form())

        _, key = gateway.charge_requests[0]
        assert key == derive_idempotency_key("acc1", clock.now)

    @pytest.mark.asyncio
    async def test_pending_voucher_returns_next_action(self, service, gateway, invoices) -> None:
        gateway.next_charge = {
            "id": "2002",
            "status": "pending",
            "status_detail": "pending_waiting_payment",
            "barcode": {"content": "23793381286000000000000000000000000000000000"},
            "transaction_details": {"external_resource_url": "https://boleto.example.com/2002"},
        }
        form = PaymentForm(
            payment_type_id="ticket",
            payment_method_id="bolbradesco",
            identificationNumber=VALID_CPF,
        )

        result = await service.submit("acc1", "monthly", form)

        assert result.status == "pending"
        assert result.next_action.type == "voucher"
        assert result.next_action.barcode == "23793381286000000000000000000000000000000000"
        assert result.next_action.link == "https://boleto.example.com/2002"
        request, _ = gateway.charge_requests[0]
        assert request.binary_mode is False
        invoice = await invoices.get_invoice("acc1", result.invoice_id)
        assert invoice.status == InvoiceStatus.PENDING

    @pytest.mark.asyncio
    async def test_rejected_charge_expires_invoice(self, service, gateway, invoices) -> None:
        gateway.next_charge = {"id": "3003", "status": "rejected", "status_detail": "cc_rejected_bad_filled_security_code"}

        result = await service.submit("acc1", "monthly", card_form())

        assert result.status == "rejected"
        invoice = await invoices.get_invoice("acc1", result.invoice_id)
        assert invoice.status == InvoiceStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_retry_reenters_same_invoice(self, service, gateway, invoices) -> None:
        gateway.create_error = GatewayTransportError("timed out")
        with pytest.raises(TransientGatewayError) as exc_info:
            await service.submit("acc1", "monthly", card_form(), idempotency_key="k1")
        invoice_id = exc_info.value.invoice_id

        gateway.create_error = None
        result = await service.submit("acc1", "monthly", card_form(), idempotency_key="k1", invoice_id=invoice_id)

        assert result.invoice_id == invoice_id
        assert [key for _, key in gateway.charge_requests] == ["k1", "k1"]
        assert (await invoices.get_invoice("acc1", invoice_id)).status == InvoiceStatus.PAID


def hold_charges(gateway) -> tuple[asyncio.Event, asyncio.Event]:
    """Make ``create_charge`` block until released; returns (started, release)."""
    started, release = asyncio.Event(), asyncio.Event()
    create_charge = gateway.create_charge

    async def held(request, idempotency_key):
        started.set()
        await release.wait()
        return await create_charge(request, idempotency_key)

    gateway.create_charge = held
    return started, release


async def wait_for_status(invoices, invoice_id: str, status: InvoiceStatus) -> None:
    while (await invoices.get_invoice("acc1", invoice_id)).status != status:
        await asyncio.sleep(0.01)


class TestInFlightCharges:

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_records_outcome(self, service, gateway, invoices) -> None:
        gateway.next_charge = {"id": "4004", "status": "approved", "status_detail": "accredited"}
        started, release = hold_charges(gateway)

        caller = asyncio.ensure_future(service.submit("acc1", "monthly", card_form(), invoice_id="inv9"))
        await started.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        release.set()

        await asyncio.wait_for(wait_for_status(invoices, "inv9", InvoiceStatus.PAID), timeout=1)
        invoice = await invoices.get_invoice("acc1", "inv9")
        assert invoice.gateway_charge_id == "4004"

    @pytest.mark.asyncio
    async def test_webhook_approval_during_pending_submission(
        self, service, gateway, invoices, sandbox_env
    ) -> None:
        gateway.next_charge = {"id": "5005", "status": "pending", "status_detail": "pending_waiting_transfer"}
        gateway.charges["5005"] = {
            "id": "5005",
            "status": "approved",
            "status_detail": "accredited",
            "external_reference": "acc1|inv9",
            "date_approved": "2024-02-01T10:00:00+00:00",
        }
        started, release = hold_charges(gateway)
        form = PaymentForm(payment_type_id="bank_transfer", payment_method_id="pix")

        submission = asyncio.ensure_future(service.submit("acc1", "monthly", form, invoice_id="inv9"))
        await started.wait()
        await WebhookReconciler(gateway, invoices, sandbox_env).handle(
            {"type": "payment", "data": {"id": "5005"}}
        )
        release.set()
        result = await submission

        assert result.status == "pending"
        invoice = await invoices.get_invoice("acc1", "inv9")
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at is not None
        summary = await invoices.get_summary("acc1")
        assert summary.active_until == invoice.period_end


class TestSubmitFailures:

    @pytest.mark.asyncio
    async def test_gateway_rejection_records_error(self, service, gateway, invoices) -> None:
        gateway.create_error = GatewayRequestError("Invalid card_number_validation", code="E205", status_code=400)

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await service.submit("acc1", "monthly", card_form())

        error = exc_info.value
        assert error.to_dict() == {"description": "Invalid card_number_validation", "code": "E205", "hint": None}
        invoice = await invoices.get_invoice("acc1", error.invoice_id)
        assert invoice.status == InvoiceStatus.ERROR
        assert invoice.gateway_error == "Invalid card_number_validation"
        assert invoice.gateway_error_code == "E205"

    @pytest.mark.asyncio
    async def test_credential_mismatch_gets_hint(self, service, gateway) -> None:
        gateway.create_error = GatewayRequestError("Unauthorized use of live credentials", code="7", status_code=401)

        with pytest.raises(GatewaySubmissionError) as exc_info:
            await service.submit("acc1", "monthly", card_form())

        assert exc_info.value.hint == CREDENTIAL_MISMATCH_HINT

    @pytest.mark.asyncio
    async def test_transport_failure_is_transient(self, service, gateway, invoices) -> None:
        gateway.create_error = GatewayTransportError("Gateway create_charge timed out")

        with pytest.raises(TransientGatewayError) as exc_info:
            await service.submit("acc1", "monthly", card_form())

        invoice = await invoices.get_invoice("acc1", exc_info.value.invoice_id)
        assert invoice.status == InvoiceStatus.ERROR
        assert invoice.gateway_error_code == "transport_error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("account_id, plan, form", [
        ("", "monthly", card_form()),
        (None, "monthly", card_form()),
        ("acc|1", "monthly", card_form()),
        ("acc1", "weekly", card_form()),
        ("acc1", "monthly", None),
    ])
    async def test_invalid_input_mutates_nothing(self, service, gateway, store, account_id, plan, form) -> None:
        with pytest.raises(ValidationError):
            await service.submit(account_id, plan, form)

        assert gateway.charge_requests == []
        assert await invoice_count(store) == 0

    @pytest.mark.asyncio
    async def test_missing_token_mutates_nothing(self, service, gateway, store) -> None:
        form = PaymentForm(payment_method_id="visa", payment_type_id="credit_card")

        with pytest.raises(MissingChargeToken):
            await service.submit("acc1", "monthly", form)

        assert gateway.charge_requests == []
        assert await invoice_count(store) == 0


class TestCredentialMismatchHint:

    @pytest.mark.parametrize("description, code, matches", [
        ("Unauthorized use of live credentials", None, True),
        ("Invalid users involved", "2034", True),
        ("invalid access token", None, True),
        ("Invalid card_number_validation", "E205", False),
        (None, None, False),
    ])
    def test_pattern(self, description, code, matches) -> None:
        assert (credential_mismatch_hint(description, code) is not None) is matches
