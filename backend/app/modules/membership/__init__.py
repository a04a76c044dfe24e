"""Membership module.

Invoice lifecycle, charge submission, webhook reconciliation, hosted
checkout links and renewal generation for membership plans.
"""

from app.modules.membership.router import router
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.membership.submission import PaymentSubmissionService
from app.modules.membership.webhook import WebhookReconciler
from app.modules.membership.checkout import CheckoutService
from app.modules.membership.models import (
    Invoice,
    InvoiceStatus,
    BillingSummary,
    GatewayOutcome,
    PlanType,
    PLAN_CATALOG,
)

__all__ = [
    "router",
    "InvoiceLifecycleService",
    "PaymentSubmissionService",
    "WebhookReconciler",
    "CheckoutService",
    "Invoice",
    "InvoiceStatus",
    "BillingSummary",
    "GatewayOutcome",
    "PlanType",
    "PLAN_CATALOG",
]
