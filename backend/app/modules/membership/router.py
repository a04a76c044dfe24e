"""Membership payments router.

Provides API endpoints for:
- Charge submission (card, Pix, boleto)
- Gateway webhook intake
- Hosted checkout links
"""

import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.document_store import DocumentStore, get_document_store
from app.modules.membership.checkout import CheckoutService
from app.modules.membership.environment import BillingEnvironment
from app.modules.membership.exceptions import (
    GatewaySubmissionError,
    InvalidPayerIdentification,
    InvalidWebhookSignature,
    TransientGatewayError,
    TransientGatewayFetchFailure,
    ValidationError,
)
from app.modules.membership.schemas import (
    ChargeResponse,
    ChargeSubmissionRequest,
    CheckoutRequest,
    CheckoutResponse,
    GatewayErrorResponse,
    WebhookAckResponse,
)
from app.modules.membership.service import InvoiceLifecycleService
from app.modules.membership.submission import (
    PaymentSubmissionService,
    credential_mismatch_hint,
)
from app.modules.membership.webhook import WebhookReconciler
from app.modules.payment_gateway.factory import PaymentGatewayFactory
from app.modules.payment_gateway.interface import (
    GatewayRequestError,
    GatewayTransportError,
    PaymentGatewayInterface,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# ==================== Dependencies ====================

def get_billing_environment() -> BillingEnvironment:
    return BillingEnvironment.from_settings(settings)


def get_store() -> DocumentStore:
    return get_document_store()


async def get_gateway() -> AsyncIterator[PaymentGatewayInterface]:
    gateway = PaymentGatewayFactory.from_settings(settings)
    try:
        yield gateway
    finally:
        await gateway.close()


def get_invoice_service(
    store: DocumentStore = Depends(get_store),
) -> InvoiceLifecycleService:
    return InvoiceLifecycleService(store)


def get_submission_service(
    gateway: PaymentGatewayInterface = Depends(get_gateway),
    invoices: InvoiceLifecycleService = Depends(get_invoice_service),
    environment: BillingEnvironment = Depends(get_billing_environment),
) -> PaymentSubmissionService:
    return PaymentSubmissionService(gateway, invoices, environment)


def get_webhook_reconciler(
    gateway: PaymentGatewayInterface = Depends(get_gateway),
    invoices: InvoiceLifecycleService = Depends(get_invoice_service),
    environment: BillingEnvironment = Depends(get_billing_environment),
) -> WebhookReconciler:
    return WebhookReconciler(gateway, invoices, environment)


def get_checkout_service(
    gateway: PaymentGatewayInterface = Depends(get_gateway),
    invoices: InvoiceLifecycleService = Depends(get_invoice_service),
    environment: BillingEnvironment = Depends(get_billing_environment),
) -> CheckoutService:
    return CheckoutService(gateway, invoices, environment)


def _validation_exception(e: ValidationError) -> HTTPException:
    status_code = (
        status.HTTP_422_UNPROCESSABLE_ENTITY
        if isinstance(e, InvalidPayerIdentification)
        else status.HTTP_400_BAD_REQUEST
    )
    return HTTPException(status_code=status_code, detail=str(e))


# ==================== Endpoints ====================

@router.post(
    "/charge",
    response_model=ChargeResponse,
    responses={402: {"model": GatewayErrorResponse}},
)
async def submit_charge(
    data: ChargeSubmissionRequest,
    service: PaymentSubmissionService = Depends(get_submission_service),
):
    """Charge a membership plan.

    Card payments settle immediately; Pix and boleto return a pending
    status with the next action the payer must take.
    """
    try:
        result = await service.submit(
            account_id=data.account_id,
            plan_type=data.plan_type,
            form=data.form_data,
            idempotency_key=data.idempotency_key,
            invoice_id=data.invoice_id,
        )
    except ValidationError as e:
        raise _validation_exception(e)
    except GatewaySubmissionError as e:
        return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=e.to_dict())
    except TransientGatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Payment gateway unavailable, retry with the same idempotency key: {e}",
        )

    return ChargeResponse(**result.to_dict())


@router.post("/webhook", response_model=WebhookAckResponse)
async def handle_webhook(
    request: Request,
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler),
):
    """Handle a payment gateway notification.

    The envelope is the JSON body merged over the query parameters; the
    gateway sends ``topic``/``id`` or ``type``/``data.id`` in either place.
    """
    envelope = dict(request.query_params)
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            logger.warning("Webhook body is not valid JSON; using query parameters only")
            body = None
        if isinstance(body, dict):
            envelope.update(body)

    try:
        result = await reconciler.handle(envelope, dict(request.headers))
    except InvalidWebhookSignature as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except TransientGatewayFetchFailure as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return WebhookAckResponse(
        status="ok",
        action=result.action.value,
        payment_id=result.payment_id,
        invoice_id=result.invoice_id,
        invoice_status=result.invoice_status,
        processed_at=datetime.now(timezone.utc),
    )


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    responses={402: {"model": GatewayErrorResponse}},
)
async def create_checkout(
    data: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Create a hosted checkout link for a membership plan."""
    try:
        link = await service.create_checkout(data.account_id, data.plan_type)
    except ValidationError as e:
        raise _validation_exception(e)
    except GatewayRequestError as e:
        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=GatewayErrorResponse(
                description=e.description,
                code=e.code,
                hint=credential_mismatch_hint(e.description, e.code),
            ).model_dump(),
        )
    except GatewayTransportError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return CheckoutResponse(
        init_point=link.init_point,
        preference_id=link.preference_id,
        invoice_id=link.invoice_id,
        environment=link.environment,
    )
