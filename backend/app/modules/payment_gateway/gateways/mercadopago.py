"""Mercado Pago payment gateway client.

Talks to the Payments API (card, Pix, boleto) and the Checkout Pro
preferences API over HTTPS with a bearer access token.
"""

import logging
import time
from typing import Optional

import httpx

from app.core.metrics import GATEWAY_REQUEST_DURATION_SECONDS
from app.modules.payment_gateway.interface import (
    PaymentGatewayInterface,
    GatewayConfig,
    GatewayRequestError,
    GatewayTransportError,
    Charge,
    ChargeRequest,
    CheckoutPreference,
    PreferenceRequest,
)

logger = logging.getLogger(__name__)


class MercadoPagoGateway(PaymentGatewayInterface):
    """Mercado Pago gateway client.

    Supports:
    - Credit and debit cards (tokenized by the Payment Brick)
    - Pix instant transfers
    - Boleto vouchers
    - Checkout Pro hosted checkout
    """

    PAYMENTS_PATH = "/v1/payments"
    PREFERENCES_PATH = "/checkout/preferences"

    def __init__(self, config: GatewayConfig, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._client = client
        if not config.access_token:
            logger.warning(
                "Gateway access token not configured",
                extra={"environment": "sandbox" if config.sandbox_mode else "production"},
            )

    def _headers(self, idempotency_key: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    async def _make_request(
        self,
        operation: str,
        method: str,
        path: str,
        data: Optional[dict] = None,
        idempotency_key: Optional[str] = None,
    ) -> dict:
        """Make an authenticated request to the gateway.

        Args:
            operation: Operation name for metrics
            method: HTTP method
            path: API path
            data: Request body data
            idempotency_key: Optional idempotency header value

        Returns:
            Response JSON
        """
        url = f"{self.config.base_url.rstrip('/')}{path}"
        start_time = time.perf_counter()
        try:
            if self._client is not None:
                response = await self._client.request(
                    method,
                    url,
                    headers=self._headers(idempotency_key),
                    json=data,
                    timeout=self.config.timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                    response = await client.request(
                        method,
                        url,
                        headers=self._headers(idempotency_key),
                        json=data,
                    )
        except httpx.TimeoutException as e:
            raise GatewayTransportError(f"Gateway {operation} timed out: {e}") from e
        except httpx.TransportError as e:
            raise GatewayTransportError(f"Gateway {operation} failed: {e}") from e
        finally:
            GATEWAY_REQUEST_DURATION_SECONDS.labels(operation=operation).observe(
                time.perf_counter() - start_time
            )

        if response.status_code >= 500:
            raise GatewayTransportError(
                f"Gateway {operation} returned HTTP {response.status_code}"
            )

        body = self._parse_body(response)
        if response.status_code >= 400:
            raise self._request_error(response.status_code, body)
        return body

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text}
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _request_error(status_code: int, body: dict) -> GatewayRequestError:
        """Map an error body to a GatewayRequestError.

        The first ``cause`` entry carries the most specific description;
        ``message``/``error`` are the fallback.
        """
        description = body.get("message") or "Gateway rejected the request"
        code = body.get("error")
        causes = body.get("cause") or []
        if isinstance(causes, list) and causes and isinstance(causes[0], dict):
            cause = causes[0]
            description = cause.get("description") or description
            if cause.get("code") is not None:
                code = str(cause["code"])
        return GatewayRequestError(
            description=str(description),
            code=str(code) if code is not None else None,
            status_code=status_code,
            response=body,
        )

    async def create_charge(
        self,
        request: ChargeRequest,
        idempotency_key: str,
    ) -> Charge:
        response = await self._make_request(
            "create_charge",
            "POST",
            self.PAYMENTS_PATH,
            data=request.to_payload(),
            idempotency_key=idempotency_key,
        )
        return Charge.from_response(response)

    async def get_charge(self, payment_id: str) -> Charge:
        response = await self._make_request(
            "get_charge",
            "GET",
            f"{self.PAYMENTS_PATH}/{payment_id}",
        )
        return Charge.from_response(response)

    async def create_preference(self, request: PreferenceRequest) -> CheckoutPreference:
        response = await self._make_request(
            "create_preference",
            "POST",
            self.PREFERENCES_PATH,
            data=request.to_payload(),
        )
        return CheckoutPreference(
            id=str(response.get("id", "")),
            init_point=response.get("init_point"),
            sandbox_init_point=response.get("sandbox_init_point"),
            raw=response,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
