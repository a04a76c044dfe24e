"""Invoice lifecycle service.

Owns invoice creation, invoice status transitions and the per-account
billing summary. Both the synchronous submission path and the webhook
reconciler funnel every gateway outcome through ``apply_gateway_outcome``,
which is idempotent for repeated outcomes and never regresses a terminal
invoice, so the two paths converge whatever order they run in.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from app.core.document_store import DocumentStore
from app.core.metrics import INVOICE_TRANSITIONS_TOTAL
from app.modules.membership.exceptions import (
    InvoiceClosedError,
    InvoiceNotFoundError,
    ValidationError,
)
from app.modules.membership.models import (
    ACCOUNT_STATUS_UP_TO_DATE,
    BillingSummary,
    GatewayOutcome,
    Invoice,
    InvoiceStatus,
    OutcomeKind,
    add_months_safe,
    can_transition,
    is_known_plan,
    plan_label,
    plan_months,
    plan_price,
    truncate_to_day,
    utcnow,
)
from app.modules.membership.repository import InvoiceRepository

logger = logging.getLogger(__name__)


class InvoiceLifecycleService:
    """Authoritative state machine for invoices.

    Args:
        store: Document store holding invoices and summaries
        clock: Source of the current time
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = InvoiceRepository(store)
        self.clock = clock

    async def get_invoice(self, account_id: str, invoice_id: str) -> Optional[Invoice]:
        return await self.repository.get_invoice(account_id, invoice_id)

    async def get_summary(self, account_id: str) -> Optional[BillingSummary]:
        return await self.repository.get_summary(account_id)

    async def open_invoice(
        self,
        account_id: str,
        plan_type: str,
        now: Optional[datetime] = None,
        invoice_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
    ) -> Invoice:
        """Open an invoice for one billing cycle.

        The period starts at ``period_start`` (default ``now``) truncated to
        the day and runs for the plan's number of months; the due date is the
        end of the period.

        When ``invoice_id`` is given the invoice is upserted at that id, so a
        client retrying the same charge attempt re-enters the same invoice.

        Raises:
            ValidationError: Unknown plan, missing account, or plan mismatch on reuse
            InvoiceClosedError: The reused invoice is already paid or expired
        """
        if not account_id:
            raise ValidationError("Account id is required")
        if not is_known_plan(plan_type):
            raise ValidationError(f"Unknown plan type: {plan_type}")

        now = now or self.clock()

        if invoice_id:
            existing = await self.repository.get_invoice(account_id, invoice_id)
            if existing is not None:
                if existing.status.is_terminal:
                    raise InvoiceClosedError(invoice_id, existing.status.value)
                if existing.plan_type != plan_type:
                    raise ValidationError(
                        f"Invoice {invoice_id} belongs to plan {existing.plan_type}"
                    )
                logger.info(
                    f"Reusing invoice {invoice_id} for account {account_id}",
                    extra={"invoice_status": existing.status.value},
                )
                return existing

        period_start = truncate_to_day(period_start or now)
        period_end = add_months_safe(period_start, plan_months(plan_type))

        invoice = Invoice(
            id=invoice_id or "",
            account_id=account_id,
            plan_type=plan_type,
            plan_name=plan_label(plan_type),
            amount=plan_price(plan_type),
            period_start=period_start,
            period_end=period_end,
            due_date=period_end,
            status=InvoiceStatus.OPEN,
            recorded_at=now,
            updated_at=now,
        )

        if invoice_id:
            await self.repository.merge_invoice(account_id, invoice_id, invoice.to_document())
        else:
            invoice.id = await self.repository.add_invoice(account_id, invoice.to_document())

        INVOICE_TRANSITIONS_TOTAL.labels(status=InvoiceStatus.OPEN.value).inc()
        logger.info(
            f"Opened invoice {invoice.id} for account {account_id}",
            extra={
                "plan_type": plan_type,
                "amount": invoice.amount,
                "period_end": period_end.isoformat(),
            },
        )
        return invoice

    async def record_checkout_link(
        self,
        account_id: str,
        invoice_id: str,
        payment_url: Optional[str],
        preference_id: str,
    ) -> None:
        await self.repository.merge_invoice(account_id, invoice_id, {
            "payment_url": payment_url,
            "preference_id": preference_id,
            "updated_at": self.clock(),
        })

    async def apply_gateway_outcome(
        self,
        account_id: str,
        invoice_id: str,
        outcome: GatewayOutcome,
    ) -> Invoice:
        """Apply a gateway outcome to an invoice.

        approved -> paid, pending -> pending, rejected/cancelled -> expired,
        error -> error. Safe to call repeatedly with the same outcome. A paid
        invoice is never moved to a lesser status.

        Raises:
            InvoiceNotFoundError: No such invoice (invoices are never created here)
        """
        target = outcome.target_status
        now = self.clock()
        seen: dict = {}

        def transition(current: Optional[dict]) -> Optional[dict]:
            # Runs inside the store's atomic update; no awaits allowed here
            if current is None:
                return None
            invoice = Invoice.from_document(invoice_id, current)
            seen["before"] = invoice
            if invoice.status == InvoiceStatus.PAID and target == InvoiceStatus.PAID:
                return None
            if not can_transition(invoice.status, target):
                return None
            seen["patch"] = self._build_patch(invoice, outcome, now)
            return seen["patch"]

        data = await self.repository.update_invoice(account_id, invoice_id, transition)
        if data is None:
            raise InvoiceNotFoundError(account_id, invoice_id)
        before = seen["before"]
        updated = Invoice.from_document(invoice_id, data)

        if "patch" not in seen:
            if updated.status == InvoiceStatus.PAID and target == InvoiceStatus.PAID:
                # Redelivered approval: the invoice is settled, make sure the
                # summary caught up in case an earlier write was lost.
                logger.info(f"Invoice {invoice_id} already paid; refreshing summary only")
                await self.refresh_summary(account_id, updated)
            else:
                logger.info(
                    f"Ignoring stale outcome for invoice {invoice_id}",
                    extra={
                        "current_status": updated.status.value,
                        "outcome": outcome.kind.value,
                    },
                )
            return updated

        INVOICE_TRANSITIONS_TOTAL.labels(status=target.value).inc()
        logger.info(
            f"Invoice {invoice_id} moved {before.status.value} -> {target.value}",
            extra={
                "account_id": account_id,
                "charge_id": outcome.charge_id,
                "detail": outcome.detail,
            },
        )

        if updated.status == InvoiceStatus.PAID:
            await self.refresh_summary(account_id, updated)
        return updated

    def _build_patch(self, invoice: Invoice, outcome: GatewayOutcome, now: datetime) -> dict:
        patch = {
            "status": outcome.target_status.value,
            "updated_at": now,
        }
        if outcome.charge_id:
            patch["gateway_charge_id"] = outcome.charge_id
        if outcome.gateway_status:
            patch["gateway_status"] = outcome.gateway_status
        if outcome.detail:
            patch["gateway_status_detail"] = outcome.detail
        if outcome.payment_method:
            patch["payment_method"] = outcome.payment_method

        if outcome.kind == OutcomeKind.ERROR:
            patch["gateway_error"] = outcome.message
            patch["gateway_error_code"] = outcome.code
        elif outcome.kind == OutcomeKind.APPROVED:
            patch["paid_at"] = invoice.paid_at or outcome.approved_at or now
            payer = outcome.payer or {}
            patch["gateway"] = {
                "payment_id": outcome.charge_id,
                "status": outcome.gateway_status,
                "status_detail": outcome.detail,
                "payer": {"id": payer.get("id"), "email": payer.get("email")},
            }
        return patch

    async def refresh_summary(self, account_id: str, invoice: Invoice) -> Optional[BillingSummary]:
        """Rewrite the billing summary from a paid invoice.

        Re-applying the same invoice leaves the summary untouched.
        """
        if invoice.status != InvoiceStatus.PAID:
            logger.warning(
                f"Not refreshing summary from unpaid invoice {invoice.id}",
                extra={"invoice_status": invoice.status.value},
            )
            return await self.repository.get_summary(account_id)

        now = self.clock()
        summary = BillingSummary.from_paid_invoice(invoice, updated_at=now)
        existing = await self.repository.get_summary(account_id)
        if existing is not None and existing.same_standing(summary):
            summary = existing
        else:
            await self.repository.merge_summary(account_id, summary)
            logger.info(
                f"Billing summary refreshed for account {account_id}",
                extra={"invoice_id": invoice.id, "active_until": summary.active_until.isoformat()},
            )

        account = await self.repository.get_account(account_id) or {}
        if not account.get("active") or account.get("status_label") != ACCOUNT_STATUS_UP_TO_DATE:
            await self.repository.merge_account(account_id, {
                "active": True,
                "status_label": ACCOUNT_STATUS_UP_TO_DATE,
                "updated_at": now,
            })
        return summary
