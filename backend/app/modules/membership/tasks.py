"""Membership background tasks.

Renewal generation: opens the next cycle's invoice for every account whose
billing summary has come due, and attaches a hosted checkout link to it.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.document_store import DocumentStore, get_document_store
from app.modules.membership.checkout import CheckoutService
from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.models import (
    PlanType,
    add_months_safe,
    is_known_plan,
    truncate_to_day,
)
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.payment_gateway.factory import PaymentGatewayFactory
from app.modules.payment_gateway.interface import GatewayError, PaymentGatewayInterface

logger = logging.getLogger(__name__)

# Open invoices due within this many months block a new one
OPEN_INVOICE_LOOKBACK_MONTHS = 6


async def generate_due_invoices(
    invoices: InvoiceLifecycleService,
    checkout: CheckoutService,
    now: Optional[datetime] = None,
) -> dict:
    """Open renewal invoices for accounts whose next due date has passed.

    Should be run daily via scheduler.

    Args:
        invoices: Invoice lifecycle service
        checkout: Checkout service used to attach payment links
        now: Current time

    Returns:
        Summary of the run
    """
    now = now or invoices.clock()
    today = truncate_to_day(now)
    lookback = add_months_safe(today, -OPEN_INVOICE_LOOKBACK_MONTHS)

    due = await invoices.repository.get_due_summaries(today)
    created = 0
    skipped = 0
    failed = 0

    for account_id, summary in due:
        if summary.exempt:
            skipped += 1
            continue

        open_invoices = await invoices.repository.get_open_invoices(account_id)
        if any(inv.due_date and inv.due_date >= lookback for inv in open_invoices):
            logger.info(f"Account {account_id} already has an open invoice; skipping renewal")
            skipped += 1
            continue

        plan_type = summary.plan_type if is_known_plan(summary.plan_type) else PlanType.MONTHLY.value
        invoice = await invoices.open_invoice(
            account_id,
            plan_type,
            now=now,
            period_start=summary.next_due_at,
        )
        created += 1

        try:
            await checkout.attach_checkout(account_id, invoice)
        except GatewayError as e:
            # The invoice stands; the member can still pay it from the app.
            logger.error(f"Checkout link for renewal invoice {invoice.id} failed: {e}")
            failed += 1

    logger.info(
        "Renewal run finished",
        extra={"due": len(due), "created": created, "skipped": skipped, "link_failures": failed},
    )
    return {
        "due_accounts": len(due),
        "invoices_created": created,
        "skipped": skipped,
        "checkout_failures": failed,
        "run_at": now.isoformat(),
    }


async def run_renewals(
    store: Optional[DocumentStore] = None,
    gateway: Optional[PaymentGatewayInterface] = None,
) -> dict:
    """Wire the services from settings and run one renewal pass."""
    store = store or get_document_store()
    gateway = gateway or PaymentGatewayFactory.from_settings(settings)
    environment = BillingEnvironment.from_settings(settings)
    invoices = InvoiceLifecycleService(store)
    checkout = CheckoutService(gateway, invoices, environment)
    try:
        return await generate_due_invoices(invoices, checkout)
    finally:
        await gateway.close()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="membership.generate_due_invoices",
)
def generate_due_invoices_task(self) -> dict:
    """Daily renewal invoice generation."""
    try:
        return asyncio.run(run_renewals())
    except Exception as e:
        logger.error(f"Renewal run failed: {e}")
        raise self.retry(exc=e)
