"""Billing environment resolved once from settings and injected into services."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class TransferEmailPolicy(str, Enum):
    """Payer email handling for digital transfers.

    SYNTHETIC always sends an email, falling back to the account's synthetic
    address. OMIT only forwards a valid client-supplied email.
    """
    SYNTHETIC = "synthetic"
    OMIT = "omit"


@dataclass(frozen=True)
class BillingEnvironment:
    """Environment-dependent behavior of the billing services."""
    sandbox: bool = True
    sandbox_legal_id: str = "12345678909"
    transfer_email_policy: TransferEmailPolicy = TransferEmailPolicy.SYNTHETIC
    synthetic_email_domain: str = "example.com"
    notification_url: Optional[str] = None
    back_urls: dict = field(default_factory=dict)
    webhook_secret: Optional[str] = None

    @property
    def name(self) -> str:
        return "sandbox" if self.sandbox else "production"

    @classmethod
    def from_settings(cls, settings: Any) -> "BillingEnvironment":
        base_url = settings.PUBLIC_BASE_URL.rstrip("/")
        return cls(
            sandbox=settings.is_sandbox,
            sandbox_legal_id=settings.SANDBOX_LEGAL_ID,
            transfer_email_policy=TransferEmailPolicy(settings.TRANSFER_EMAIL_POLICY.lower()),
            synthetic_email_domain=settings.SYNTHETIC_EMAIL_DOMAIN,
            notification_url=f"{base_url}{settings.API_V1_PREFIX}/payments/webhook",
            back_urls={
                "success": settings.CHECKOUT_SUCCESS_URL,
                "pending": settings.CHECKOUT_PENDING_URL,
                "failure": settings.CHECKOUT_FAILURE_URL,
            },
            webhook_secret=settings.GATEWAY_WEBHOOK_SECRET or None,
        )
