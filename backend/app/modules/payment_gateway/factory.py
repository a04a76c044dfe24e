"""Factory for payment gateway clients."""

from typing import Any, Type

from app.modules.payment_gateway.interface import (
    GatewayConfig,
    PaymentGatewayInterface,
)
from app.modules.payment_gateway.gateways import MercadoPagoGateway


class PaymentGatewayFactory:
    """Creates gateway clients from configuration."""

    _gateways: dict[str, Type[PaymentGatewayInterface]] = {
        "mercadopago": MercadoPagoGateway,
    }

    @classmethod
    def create(cls, config: GatewayConfig) -> PaymentGatewayInterface:
        """Create a gateway client.

        Raises:
            ValueError: If provider is not supported
        """
        gateway_class = cls._gateways.get(config.provider)
        if not gateway_class:
            raise ValueError(f"Unsupported gateway provider: {config.provider}")
        return gateway_class(config)

    @classmethod
    def register(
        cls,
        provider: str,
        gateway_class: Type[PaymentGatewayInterface],
    ) -> None:
        """Register a gateway implementation."""
        cls._gateways[provider] = gateway_class

    @classmethod
    def get_supported_providers(cls) -> list[str]:
        return list(cls._gateways.keys())

    @classmethod
    def from_settings(cls, settings: Any) -> PaymentGatewayInterface:
        """Create the client configured in application settings."""
        return cls.create(GatewayConfig.from_settings(settings))
