"""Payment gateway client implementations."""

from .mercadopago import MercadoPagoGateway

__all__ = ["MercadoPagoGateway"]
