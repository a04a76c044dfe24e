"""Payment submission.

Charges a plan for an account: opens (or re-enters) the cycle's invoice,
normalizes the payer, submits the charge with an idempotency key and applies
the gateway's immediate answer to the invoice. The webhook reconciler later
applies the authoritative outcome through the same lifecycle service.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.core.logging import billing_context, log_error
from app.core.metrics import CHARGE_SUBMISSIONS_TOTAL
from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.exceptions import (
    GatewaySubmissionError,
    TransientGatewayError,
    ValidationError,
)
from app.modules.membership.models import (
    GatewayOutcome,
    Invoice,
    is_known_plan,
)
from app.modules.membership.next_action import NextAction, build_next_action
from app.modules.membership.payer import (
    NormalizedPayment,
    PayerProfileNormalizer,
    PaymentMethodClass,
    detect_method_class,
)
from app.modules.membership.reference import encode_reference, is_encodable_id
from app.modules.membership.schemas import PaymentForm
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.payment_gateway.interface import (
    Charge,
    ChargeRequest,
    ChargeStatus,
    GatewayRequestError,
    GatewayTransportError,
    PaymentGatewayInterface,
)

logger = logging.getLogger(__name__)

PENDING_STATUSES = {
    ChargeStatus.PENDING.value,
    ChargeStatus.IN_PROCESS.value,
    ChargeStatus.AUTHORIZED.value,
}
CLOSED_STATUSES = {
    ChargeStatus.REJECTED.value,
    ChargeStatus.CANCELLED.value,
}

CREDENTIAL_MISMATCH_PATTERN = re.compile(
    r"(live|test|production|sandbox) credentials"
    r"|unauthorized use"
    r"|invalid (access )?token"
    r"|invalid users involved"
    r"|users? from different",
    re.IGNORECASE,
)
CREDENTIAL_MISMATCH_HINT = (
    "The gateway access token does not match the payer's environment. "
    "Use test credentials with test users and cards, and live credentials in production."
)

IDEMPOTENCY_NAMESPACE = uuid.UUID("5b0c7f0e-3f7d-4a43-9d55-1f5e8c2a9b10")


def credential_mismatch_hint(description: Optional[str], code: Optional[str] = None) -> Optional[str]:
    """Diagnostic hint for the credential/environment mismatch failure class."""
    text = f"{description or ''} {code or ''}"
    if CREDENTIAL_MISMATCH_PATTERN.search(text):
        return CREDENTIAL_MISMATCH_HINT
    return None


def derive_idempotency_key(account_id: str, now: datetime) -> str:
    return str(uuid.uuid5(IDEMPOTENCY_NAMESPACE, f"{account_id}:{now.isoformat()}"))


def outcome_from_charge(charge: Charge) -> GatewayOutcome:
    """Map a charge's status to the outcome applied to its invoice."""
    common = {
        "charge_id": charge.id,
        "gateway_status": charge.status,
        "payment_method": charge.payment_method_id,
    }
    if charge.status == ChargeStatus.APPROVED.value:
        return GatewayOutcome.approved(
            approved_at=charge.date_approved,
            detail=charge.status_detail,
            payer=charge.payer,
            **common,
        )
    if charge.status in CLOSED_STATUSES:
        return GatewayOutcome.rejected_or_cancelled(detail=charge.status_detail, **common)
    return GatewayOutcome.pending(detail=charge.status_detail, **common)


@dataclass
class SubmissionResult:
    """Result of a charge submission."""
    payment_id: str
    status: str
    status_detail: Optional[str]
    invoice_id: str
    next_action: Optional[NextAction] = None

    def to_dict(self) -> dict:
        return {
            "payment_id": self.payment_id,
            "status": self.status,
            "status_detail": self.status_detail,
            "invoice_id": self.invoice_id,
            "next_action": self.next_action.to_dict() if self.next_action else None,
        }


class PaymentSubmissionService:
    """Submits membership charges to the payment gateway."""

    def __init__(
        self,
        gateway: PaymentGatewayInterface,
        invoices: InvoiceLifecycleService,
        environment: BillingEnvironment,
        normalizer: Optional[PayerProfileNormalizer] = None,
    ):
        self.gateway = gateway
        self.invoices = invoices
        self.environment = environment
        self.normalizer = normalizer or PayerProfileNormalizer(environment)

    async def submit(
        self,
        account_id: str,
        plan_type: str,
        form: Optional[PaymentForm],
        idempotency_key: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> SubmissionResult:
        """Charge a plan for an account.

        Args:
            account_id: Account being charged
            plan_type: Plan identifier
            form: Raw payment form
            idempotency_key: Client key for retries; derived when absent
            invoice_id: Invoice to re-enter on a client retry

        Raises:
            ValidationError: Bad input; nothing was written
            GatewaySubmissionError: The gateway rejected the charge
            TransientGatewayError: The gateway did not answer; retry with the same key
        """
        if not is_encodable_id(account_id, account=True):
            raise ValidationError("A valid account id is required")
        if not is_known_plan(plan_type):
            raise ValidationError(f"Unknown plan type: {plan_type}")
        if form is None:
            raise ValidationError("Payment form is required")
        if invoice_id is not None and not is_encodable_id(invoice_id):
            raise ValidationError("Invalid invoice id")

        method_class = detect_method_class(form)
        payment = self.normalizer.normalize(account_id, form, method_class)

        now = self.invoices.clock()
        invoice = await self.invoices.open_invoice(
            account_id, plan_type, now=now, invoice_id=invoice_id
        )
        key = idempotency_key or derive_idempotency_key(account_id, now)
        request = self._build_request(account_id, invoice, payment)

        # Once sent, a charge must have its outcome recorded even if the
        # caller goes away, so the gateway call runs shielded. The task
        # copies the bound billing context when it is created.
        with billing_context(account_id=account_id, invoice_id=invoice.id, plan_type=plan_type):
            task = asyncio.ensure_future(
                self._charge_and_apply(account_id, invoice, payment, request, key)
            )
        task.add_done_callback(self._log_orphaned_failure)
        return await asyncio.shield(task)

    def _build_request(
        self,
        account_id: str,
        invoice: Invoice,
        payment: NormalizedPayment,
    ) -> ChargeRequest:
        return ChargeRequest(
            amount=invoice.amount,
            description=f"Membership {invoice.plan_name}",
            external_reference=encode_reference(account_id, invoice.id),
            payment_method_id=payment.payment_method_id,
            payer=payment.payer.to_gateway(),
            metadata={
                "uid": account_id,
                "invoice_id": invoice.id,
                "plan_type": invoice.plan_type,
            },
            installments=payment.installments,
            token=payment.token,
            issuer_id=payment.issuer_id,
            binary_mode=payment.method_class == PaymentMethodClass.CARD,
            notification_url=self.environment.notification_url,
        )

    async def _charge_and_apply(
        self,
        account_id: str,
        invoice: Invoice,
        payment: NormalizedPayment,
        request: ChargeRequest,
        idempotency_key: str,
    ) -> SubmissionResult:
        try:
            charge = await self.gateway.create_charge(request, idempotency_key)
        except GatewayRequestError as e:
            CHARGE_SUBMISSIONS_TOTAL.labels(status="gateway_rejected").inc()
            logger.warning(
                f"Gateway rejected charge for invoice {invoice.id}",
                extra={"description": e.description, "code": e.code, "http_status": e.status_code},
            )
            await self.invoices.apply_gateway_outcome(
                account_id, invoice.id, GatewayOutcome.error(e.description, e.code)
            )
            raise GatewaySubmissionError(
                description=e.description,
                code=e.code,
                hint=credential_mismatch_hint(e.description, e.code),
                invoice_id=invoice.id,
            ) from e
        except GatewayTransportError as e:
            CHARGE_SUBMISSIONS_TOTAL.labels(status="transport_error").inc()
            logger.warning(
                f"Gateway unreachable while charging invoice {invoice.id}",
                extra={"error": str(e)},
            )
            await self.invoices.apply_gateway_outcome(
                account_id, invoice.id, GatewayOutcome.error(str(e), "transport_error")
            )
            raise TransientGatewayError(str(e), invoice_id=invoice.id) from e

        CHARGE_SUBMISSIONS_TOTAL.labels(status=charge.status or "unknown").inc()
        try:
            await self.invoices.apply_gateway_outcome(
                account_id, invoice.id, outcome_from_charge(charge)
            )
        except Exception as e:
            # The gateway holds the charge; the webhook will reapply it.
            log_error(
                logger,
                f"Charge {charge.id} accepted but invoice {invoice.id} not updated",
                exception=e,
                account_id=account_id,
            )
            raise

        next_action = None
        if charge.status in PENDING_STATUSES:
            next_action = build_next_action(payment.method_class, charge.raw)

        logger.info(
            f"Charge {charge.id} submitted for invoice {invoice.id}",
            extra={
                "status": charge.status,
                "status_detail": charge.status_detail,
                "method_class": payment.method_class.value,
            },
        )
        return SubmissionResult(
            payment_id=charge.id,
            status=charge.status,
            status_detail=charge.status_detail,
            invoice_id=invoice.id,
            next_action=next_action,
        )

    @staticmethod
    def _log_orphaned_failure(task: "asyncio.Future") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, (GatewaySubmissionError, TransientGatewayError)):
            logger.error(f"Charge submission failed: {exc}")
