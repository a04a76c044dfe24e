"""Payment Gateway Module.

Client side of the external payment gateway: charge creation, charge lookup
and hosted checkout preferences.
"""

from app.modules.payment_gateway.interface import (
    PaymentGatewayInterface,
    GatewayConfig,
    GatewayError,
    GatewayRequestError,
    GatewayTransportError,
    Charge,
    ChargeRequest,
    ChargeStatus,
    CheckoutPreference,
    PreferenceItem,
    PreferenceRequest,
)
from app.modules.payment_gateway.factory import PaymentGatewayFactory
from app.modules.payment_gateway.gateways import MercadoPagoGateway

__all__ = [
    # Interface
    "PaymentGatewayInterface",
    "GatewayConfig",
    "GatewayError",
    "GatewayRequestError",
    "GatewayTransportError",
    "Charge",
    "ChargeRequest",
    "ChargeStatus",
    "CheckoutPreference",
    "PreferenceItem",
    "PreferenceRequest",
    # Factory
    "PaymentGatewayFactory",
    # Gateways
    "MercadoPagoGateway",
]
