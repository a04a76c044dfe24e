"""Membership billing errors."""

from typing import Optional


class BillingError(Exception):
    """Base class for membership billing errors."""
    pass


class ValidationError(BillingError):
    """Client input is missing or malformed. No state was changed."""
    pass


class MissingChargeToken(ValidationError):
    def __init__(self):
        super().__init__("Card payments require a charge token")


class MissingMethodIdentifier(ValidationError):
    def __init__(self):
        super().__init__("Card payments require a payment method id")


class UnsupportedPaymentMethod(ValidationError):
    def __init__(self, method: Optional[str]):
        super().__init__(f"Unsupported payment method: {method or 'unknown'}")
        self.method = method


class InvalidPayerIdentification(ValidationError):
    def __init__(self, message: str = "Payer identification number is invalid"):
        super().__init__(message)


class InvoiceClosedError(ValidationError):
    """A charge was attempted against an invoice already in a terminal state."""

    def __init__(self, invoice_id: str, status: str):
        super().__init__(f"Invoice {invoice_id} is already {status}")
        self.invoice_id = invoice_id
        self.status = status


class InvoiceNotFoundError(BillingError):
    def __init__(self, account_id: str, invoice_id: str):
        super().__init__(f"Invoice {invoice_id} not found for account {account_id}")
        self.account_id = account_id
        self.invoice_id = invoice_id


class UnresolvedReference(BillingError):
    """A gateway correlation reference could not be mapped to an invoice."""

    def __init__(self, token: Optional[str], reason: str):
        super().__init__(f"Unresolved reference {token!r}: {reason}")
        self.token = token
        self.reason = reason


class GatewaySubmissionError(BillingError):
    """The gateway rejected a charge submission."""

    def __init__(
        self,
        description: str,
        code: Optional[str] = None,
        hint: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ):
        super().__init__(description)
        self.description = description
        self.code = code
        self.hint = hint
        self.invoice_id = invoice_id

    def to_dict(self) -> dict:
        return {"description": self.description, "code": self.code, "hint": self.hint}


class TransientGatewayError(BillingError):
    """The gateway did not answer a submission in time; safe to retry with
    the same idempotency key."""

    def __init__(self, message: str, invoice_id: Optional[str] = None):
        super().__init__(message)
        self.invoice_id = invoice_id


class InvalidWebhookSignature(BillingError):
    def __init__(self, reason: str = "Invalid webhook signature"):
        super().__init__(reason)


class TransientGatewayFetchFailure(BillingError):
    """The reconciler could not fetch the charge; the notification must be
    redelivered."""

    def __init__(self, payment_id: str, message: str):
        super().__init__(f"Could not fetch payment {payment_id}: {message}")
        self.payment_id = payment_id
