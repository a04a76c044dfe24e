"""Hosted checkout links.

Opens an invoice and creates a gateway checkout preference for it. The
payer completes the payment on the gateway's page and the webhook
reconciler settles the invoice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.exceptions import ValidationError
from app.modules.membership.models import CURRENCY, Invoice, is_known_plan
from app.modules.membership.reference import encode_reference, is_encodable_id
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.payment_gateway.interface import (
    CheckoutPreference,
    PaymentGatewayInterface,
    PreferenceItem,
    PreferenceRequest,
)

logger = logging.getLogger(__name__)

PRODUCTION_HOST = "://www.mercadopago.com"
SANDBOX_HOST = "://sandbox.mercadopago.com"


def to_sandbox_url(url: Optional[str]) -> Optional[str]:
    return url.replace(PRODUCTION_HOST, SANDBOX_HOST) if url else None


def to_production_url(url: Optional[str]) -> Optional[str]:
    return url.replace(SANDBOX_HOST, PRODUCTION_HOST) if url else None


def select_init_point(preference: CheckoutPreference, sandbox: bool) -> Optional[str]:
    """Pick the checkout entry link matching the environment."""
    if sandbox:
        return (
            preference.sandbox_init_point
            or to_sandbox_url(preference.init_point)
            or preference.init_point
        )
    return (
        preference.init_point
        or to_production_url(preference.sandbox_init_point)
        or preference.sandbox_init_point
    )


@dataclass
class CheckoutLink:
    init_point: Optional[str]
    preference_id: str
    invoice_id: str
    environment: str


class CheckoutService:
    """Creates hosted checkout links for membership plans."""

    def __init__(
        self,
        gateway: PaymentGatewayInterface,
        invoices: InvoiceLifecycleService,
        environment: BillingEnvironment,
    ):
        self.gateway = gateway
        self.invoices = invoices
        self.environment = environment

    async def create_checkout(
        self,
        account_id: str,
        plan_type: str,
        period_start: Optional[datetime] = None,
    ) -> CheckoutLink:
        """Open an invoice and create its checkout link.

        Raises:
            ValidationError: Bad account id or unknown plan
            GatewayRequestError: The gateway rejected the preference
            GatewayTransportError: The gateway could not be reached
        """
        if not is_encodable_id(account_id, account=True):
            raise ValidationError("A valid account id is required")
        if not is_known_plan(plan_type):
            raise ValidationError(f"Unknown plan type: {plan_type}")

        invoice = await self.invoices.open_invoice(
            account_id, plan_type, period_start=period_start
        )
        return await self.attach_checkout(account_id, invoice)

    async def attach_checkout(self, account_id: str, invoice: Invoice) -> CheckoutLink:
        """Create a checkout preference for an existing invoice."""
        request = PreferenceRequest(
            items=[
                PreferenceItem(
                    item_id=invoice.id,
                    title=f"Membership {invoice.plan_name}",
                    unit_price=invoice.amount,
                )
            ],
            currency=CURRENCY,
            external_reference=encode_reference(account_id, invoice.id),
            metadata={
                "uid": account_id,
                "invoice_id": invoice.id,
                "plan_type": invoice.plan_type,
            },
            notification_url=self.environment.notification_url,
            back_urls={k: v for k, v in self.environment.back_urls.items() if v},
        )
        preference = await self.gateway.create_preference(request)
        init_point = select_init_point(preference, self.environment.sandbox)

        await self.invoices.record_checkout_link(
            account_id, invoice.id, init_point, preference.id
        )
        logger.info(
            f"Checkout link created for invoice {invoice.id}",
            extra={"preference_id": preference.id, "environment": self.environment.name},
        )
        return CheckoutLink(
            init_point=init_point,
            preference_id=preference.id,
            invoice_id=invoice.id,
            environment=self.environment.name,
        )
