"""Webhook reconciler.

Gateway notifications are only a trigger: the reconciler fetches the
authoritative charge by id, maps it back to its invoice through the
correlation reference and applies the outcome through the invoice
lifecycle service. Every branch is acknowledged except a failed
confirmatory fetch, which is surfaced as retriable so the gateway
redelivers.
"""

import hashlib
import hmac
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional

from app.core.logging import billing_context, log_warning
from app.core.metrics import WEBHOOK_NOTIFICATIONS_TOTAL
from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.exceptions import (
    InvalidWebhookSignature,
    InvoiceNotFoundError,
    TransientGatewayFetchFailure,
    UnresolvedReference,
)
from app.modules.membership.models import GatewayOutcome
from app.modules.membership.reference import CorrelationReference, decode_reference
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.payment_gateway.interface import (
    Charge,
    ChargeStatus,
    GatewayRequestError,
    GatewayTransportError,
    PaymentGatewayInterface,
)

logger = logging.getLogger(__name__)

PAYMENT_TOPIC = "payment"

# Settlement details that mean funds cleared for delayed-settlement methods
APPROVED_DETAILS = {"accredited"}
CLOSED_STATUSES = {ChargeStatus.CANCELLED.value, ChargeStatus.REJECTED.value}
CLOSED_DETAIL_PATTERN = re.compile(r"expired|rejected", re.IGNORECASE)
PAYMENT_ID_PATTERN = re.compile(r"[A-Za-z0-9]{1,64}")


class ChargeClass(str, Enum):
    APPROVED = "approved"
    EXPIRED_OR_CANCELLED = "expired_or_cancelled"
    OTHER = "other"


class ReconciliationAction(str, Enum):
    IGNORED = "ignored"
    NO_PAYMENT_ID = "no_payment_id"
    CHARGE_NOT_FOUND = "charge_not_found"
    UNRESOLVED_REFERENCE = "unresolved_reference"
    INVOICE_NOT_FOUND = "invoice_not_found"
    PAID = "paid"
    EXPIRED = "expired"
    NO_CHANGE = "no_change"


@dataclass
class ReconciliationResult:
    """Outcome of handling one notification. Always acknowledged."""
    action: ReconciliationAction
    payment_id: Optional[str] = None
    account_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_status: Optional[str] = None

    @property
    def mutated(self) -> bool:
        return self.action in (ReconciliationAction.PAID, ReconciliationAction.EXPIRED)


def classify_charge(charge: Charge) -> ChargeClass:
    status = (charge.status or "").lower()
    detail = (charge.status_detail or "").lower()
    if status == ChargeStatus.APPROVED.value or detail in APPROVED_DETAILS:
        return ChargeClass.APPROVED
    if status in CLOSED_STATUSES or CLOSED_DETAIL_PATTERN.search(detail):
        return ChargeClass.EXPIRED_OR_CANCELLED
    return ChargeClass.OTHER


def notification_topic(envelope: Mapping[str, Any]) -> str:
    for key in ("type", "topic", "action"):
        value = envelope.get(key)
        if value:
            return str(value).lower()
    return ""


def extract_payment_id(envelope: Mapping[str, Any]) -> Optional[str]:
    """Payment id from ``{data: {id}}``, ``{id}`` or ``{resource: ".../<id>"}``.

    Ids that are not plain alphanumeric tokens are discarded; they end up in
    the gateway URL path.
    """
    candidate = None
    data = envelope.get("data")
    if isinstance(data, dict) and data.get("id"):
        candidate = data["id"]
    elif envelope.get("data.id"):
        candidate = envelope["data.id"]
    elif envelope.get("id"):
        candidate = envelope["id"]
    elif envelope.get("resource"):
        candidate = str(envelope["resource"]).rstrip("/").rsplit("/", 1)[-1]
    if candidate is None:
        return None
    payment_id = str(candidate).strip()
    return payment_id if PAYMENT_ID_PATTERN.fullmatch(payment_id) else None


def parse_signature_header(value: Optional[str]) -> dict[str, str]:
    """Split ``ts=...,v1=...`` into its parts."""
    parts = {}
    for item in (value or "").split(","):
        key, sep, part = item.partition("=")
        if sep:
            parts[key.strip()] = part.strip()
    return parts


def signature_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    manifest = ""
    if data_id:
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def compute_signature(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


class WebhookReconciler:
    """Applies gateway notifications to invoices.

    Args:
        gateway: Client used for the authoritative charge lookup
        invoices: Invoice lifecycle service
        environment: Billing environment (carries the webhook secret)
    """

    def __init__(
        self,
        gateway: PaymentGatewayInterface,
        invoices: InvoiceLifecycleService,
        environment: BillingEnvironment,
    ):
        self.gateway = gateway
        self.invoices = invoices
        self.environment = environment

    def verify_signature(
        self,
        envelope: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> bool:
        """Check the ``x-signature`` header when a webhook secret is configured."""
        secret = self.environment.webhook_secret
        if not secret:
            return True

        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        parts = parse_signature_header(lowered.get("x-signature"))
        ts, received = parts.get("ts"), parts.get("v1")
        if not ts or not received:
            return False

        manifest = signature_manifest(
            extract_payment_id(envelope), lowered.get("x-request-id"), ts
        )
        return hmac.compare_digest(compute_signature(secret, manifest), received)

    async def handle(
        self,
        envelope: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> ReconciliationResult:
        """Handle one notification.

        Raises:
            InvalidWebhookSignature: Signature verification is on and failed
            TransientGatewayFetchFailure: The charge could not be fetched; redeliver
        """
        envelope = envelope or {}
        if not self.verify_signature(envelope, headers):
            WEBHOOK_NOTIFICATIONS_TOTAL.labels(action="invalid_signature").inc()
            raise InvalidWebhookSignature()

        result = await self._reconcile(envelope)
        WEBHOOK_NOTIFICATIONS_TOTAL.labels(action=result.action.value).inc()
        return result

    async def _reconcile(self, envelope: Mapping[str, Any]) -> ReconciliationResult:
        topic = notification_topic(envelope)
        if PAYMENT_TOPIC not in topic:
            logger.info("Ignoring non-payment notification", extra={"topic": topic})
            return ReconciliationResult(ReconciliationAction.IGNORED)

        payment_id = extract_payment_id(envelope)
        if not payment_id:
            logger.info("Payment notification without payment id", extra={"topic": topic})
            return ReconciliationResult(ReconciliationAction.NO_PAYMENT_ID)

        charge = await self._fetch_charge(payment_id)
        if charge is None:
            return ReconciliationResult(ReconciliationAction.CHARGE_NOT_FOUND, payment_id)

        try:
            reference = decode_reference(charge.external_reference, charge.metadata)
        except UnresolvedReference as e:
            log_warning(
                logger,
                f"Dropping notification for payment {payment_id}: {e.reason}",
                external_reference=charge.external_reference,
            )
            return ReconciliationResult(ReconciliationAction.UNRESOLVED_REFERENCE, payment_id)

        with billing_context(
            payment_id=payment_id,
            account_id=reference.account_id,
            invoice_id=reference.invoice_id,
        ):
            return await self._apply(payment_id, charge, reference)

    async def _apply(
        self,
        payment_id: str,
        charge: Charge,
        reference: CorrelationReference,
    ) -> ReconciliationResult:
        charge_class = classify_charge(charge)
        if charge_class == ChargeClass.OTHER:
            logger.info(
                f"Payment {payment_id} not settled yet",
                extra={"status": charge.status, "status_detail": charge.status_detail},
            )
            return self._result(ReconciliationAction.NO_CHANGE, payment_id, reference)

        outcome = self._outcome(charge, charge_class)
        try:
            invoice = await self.invoices.apply_gateway_outcome(
                reference.account_id, reference.invoice_id, outcome
            )
        except InvoiceNotFoundError:
            log_warning(logger, f"Payment {payment_id} references a missing invoice")
            return self._result(ReconciliationAction.INVOICE_NOT_FOUND, payment_id, reference)

        action = (
            ReconciliationAction.PAID
            if charge_class == ChargeClass.APPROVED
            else ReconciliationAction.EXPIRED
        )
        logger.info(
            f"Reconciled payment {payment_id}",
            extra={
                "invoice_status": invoice.status.value,
                "reference_shape": reference.shape.value,
            },
        )
        return self._result(action, payment_id, reference, invoice.status.value)

    async def _fetch_charge(self, payment_id: str) -> Optional[Charge]:
        try:
            return await self.gateway.get_charge(payment_id)
        except GatewayTransportError as e:
            logger.warning(f"Fetching payment {payment_id} failed; asking for redelivery")
            raise TransientGatewayFetchFailure(payment_id, str(e)) from e
        except GatewayRequestError as e:
            # Unknown or forbidden ids will not get better on redelivery
            log_warning(
                logger,
                f"Gateway refused lookup of payment {payment_id}",
                description=e.description,
                http_status=e.status_code,
            )
            return None

    @staticmethod
    def _outcome(charge: Charge, charge_class: ChargeClass) -> GatewayOutcome:
        common = {
            "charge_id": charge.id,
            "gateway_status": charge.status,
            "detail": charge.status_detail,
            "payment_method": charge.payment_method_id,
        }
        if charge_class == ChargeClass.APPROVED:
            return GatewayOutcome.approved(
                approved_at=charge.date_approved, payer=charge.payer, **common
            )
        return GatewayOutcome.rejected_or_cancelled(**common)

    @staticmethod
    def _result(
        action: ReconciliationAction,
        payment_id: str,
        reference: CorrelationReference,
        invoice_status: Optional[str] = None,
    ) -> ReconciliationResult:
        return ReconciliationResult(
            action=action,
            payment_id=payment_id,
            account_id=reference.account_id,
            invoice_id=reference.invoice_id,
            invoice_status=invoice_status,
        )
