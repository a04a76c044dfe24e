"""Payment Gateway Interface - Abstract base class for gateway clients.

Defines the contract the billing core needs from the payment gateway:
charge creation with an idempotency key, authoritative charge lookup by id,
and hosted checkout preferences.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ChargeStatus(str, Enum):
    """Gateway-side charge status values."""
    APPROVED = "approved"
    PENDING = "pending"
    IN_PROCESS = "in_process"
    AUTHORIZED = "authorized"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    CHARGED_BACK = "charged_back"


class GatewayError(Exception):
    """Base error raised by gateway clients."""
    pass


class GatewayRequestError(GatewayError):
    """The gateway answered and rejected the request."""

    def __init__(
        self,
        description: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        response: Optional[dict] = None,
    ):
        super().__init__(description)
        self.description = description
        self.code = code
        self.status_code = status_code
        self.response = response or {}


class GatewayTransportError(GatewayError):
    """The gateway could not be reached or failed on its side (timeout, 5xx).

    The outcome of the request is unknown; callers treat it as transient.
    """
    pass


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent by the gateway."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass
class GatewayConfig:
    """Connection settings for a gateway client."""
    provider: str
    access_token: str
    sandbox_mode: bool = True
    base_url: str = "https://api.mercadopago.com"
    timeout_seconds: float = 15.0

    @classmethod
    def from_settings(cls, settings: Any) -> "GatewayConfig":
        return cls(
            provider="mercadopago",
            access_token=settings.gateway_access_token,
            sandbox_mode=settings.is_sandbox,
            base_url=settings.GATEWAY_BASE_URL,
            timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
        )


@dataclass
class ChargeRequest:
    """Charge creation request."""
    amount: float
    description: str
    external_reference: str
    payment_method_id: Optional[str] = None
    payer: dict = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)
    installments: int = 1
    token: Optional[str] = None
    issuer_id: Optional[str] = None
    binary_mode: bool = True
    notification_url: Optional[str] = None

    def to_payload(self) -> dict:
        """Build the gateway request body, leaving out unset fields."""
        payload = {
            "transaction_amount": float(self.amount),
            "description": self.description,
            "payment_method_id": self.payment_method_id,
            "installments": self.installments,
            "binary_mode": self.binary_mode,
            "external_reference": self.external_reference,
            "metadata": self.metadata,
            "payer": self.payer,
        }
        if self.token:
            payload["token"] = self.token
        if self.issuer_id:
            payload["issuer_id"] = self.issuer_id
        if self.notification_url:
            payload["notification_url"] = self.notification_url
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class Charge:
    """A gateway-side charge (payment attempt) as reported by the gateway."""
    id: str
    status: str
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    date_approved: Optional[datetime] = None
    payment_method_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    transaction_amount: Optional[float] = None
    payer: dict = field(default_factory=dict)
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict) -> "Charge":
        amount = data.get("transaction_amount")
        return cls(
            id=str(data.get("id", "")),
            status=str(data.get("status") or "").lower(),
            status_detail=data.get("status_detail"),
            external_reference=data.get("external_reference"),
            metadata=data.get("metadata") or {},
            date_approved=parse_timestamp(data.get("date_approved")),
            payment_method_id=data.get("payment_method_id"),
            payment_type_id=data.get("payment_type_id"),
            transaction_amount=float(amount) if amount is not None else None,
            payer=data.get("payer") or {},
            raw=data,
        )


@dataclass
class PreferenceItem:
    """One line of a hosted checkout preference."""
    item_id: str
    title: str
    unit_price: float
    quantity: int = 1


@dataclass
class PreferenceRequest:
    """Hosted checkout preference request."""
    items: list[PreferenceItem]
    currency: str
    external_reference: str
    metadata: dict = field(default_factory=dict)
    notification_url: Optional[str] = None
    back_urls: dict = field(default_factory=dict)
    auto_return: Optional[str] = "approved"

    def to_payload(self) -> dict:
        payload = {
            "items": [
                {
                    "id": item.item_id,
                    "title": item.title,
                    "quantity": item.quantity,
                    "currency_id": self.currency,
                    "unit_price": float(item.unit_price),
                }
                for item in self.items
            ],
            "external_reference": self.external_reference,
            "metadata": self.metadata,
        }
        if self.notification_url:
            payload["notification_url"] = self.notification_url
        if self.back_urls:
            payload["back_urls"] = self.back_urls
            if self.auto_return:
                payload["auto_return"] = self.auto_return
        return payload


@dataclass
class CheckoutPreference:
    """Hosted checkout preference created by the gateway."""
    id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None
    raw: dict = field(default_factory=dict)


class PaymentGatewayInterface(ABC):
    """Abstract interface for payment gateway clients."""

    def __init__(self, config: GatewayConfig):
        self.config = config

    @property
    def is_sandbox(self) -> bool:
        """Check if gateway is in sandbox mode."""
        return self.config.sandbox_mode

    @property
    def provider(self) -> str:
        """Get gateway provider name."""
        return self.config.provider

    @abstractmethod
    async def create_charge(
        self,
        request: ChargeRequest,
        idempotency_key: str,
    ) -> Charge:
        """Create a charge.

        Args:
            request: Charge request
            idempotency_key: Key that makes retries of the same charge safe

        Returns:
            The created charge

        Raises:
            GatewayRequestError: The gateway rejected the request
            GatewayTransportError: The outcome is unknown
        """
        pass

    @abstractmethod
    async def get_charge(self, payment_id: str) -> Charge:
        """Fetch the authoritative charge state by id.

        Raises:
            GatewayRequestError: The gateway rejected the lookup (e.g. unknown id)
            GatewayTransportError: The gateway could not be reached
        """
        pass

    @abstractmethod
    async def create_preference(self, request: PreferenceRequest) -> CheckoutPreference:
        """Create a hosted checkout preference."""
        pass

    async def close(self) -> None:
        """Release network resources held by the client."""
        return None
