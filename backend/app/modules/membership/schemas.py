"""Pydantic schemas for the membership billing API."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from app.modules.membership.models import PlanType


# ==================== Payment Form Schemas ====================

class PayerIdentificationForm(BaseModel):
    """Payer legal identification as sent by the payment form."""
    type: Optional[str] = None
    number: Optional[Union[str, int]] = None


class PayerForm(BaseModel):
    """Nested payer block of the payment form."""
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    identification: Optional[PayerIdentificationForm] = None


class PaymentForm(BaseModel):
    """Raw payment form fields.

    Payer data arrives either nested under ``payer`` or as the flat
    ``email`` / ``identification_type`` / ``identification_number`` fields.
    """
    token: Optional[str] = None
    payment_method_id: Optional[str] = None
    payment_type_id: Optional[str] = None
    issuer_id: Optional[Union[str, int]] = None
    installments: Optional[int] = 1
    payer: Optional[PayerForm] = None
    email: Optional[str] = None
    identification_type: Optional[str] = Field(None, alias="identificationType")
    identification_number: Optional[Union[str, int]] = Field(None, alias="identificationNumber")

    class Config:
        populate_by_name = True
        extra = "ignore"

    @field_validator("installments", mode="before")
    @classmethod
    def default_installments(cls, v):
        if v in (None, ""):
            return 1
        return v


# ==================== Charge Schemas ====================

class ChargeSubmissionRequest(BaseModel):
    """Charge submission request."""
    account_id: Optional[str] = Field(None, alias="uid")
    plan_type: str = Field(PlanType.MONTHLY.value, alias="planType")
    form_data: Optional[PaymentForm] = Field(None, alias="formData")
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")
    invoice_id: Optional[str] = Field(None, alias="invoiceId")

    class Config:
        populate_by_name = True


class NextActionResponse(BaseModel):
    """What the payer must do next to complete a pending payment."""
    type: str
    code: Optional[str] = None
    qr_base64: Optional[str] = None
    barcode: Optional[str] = None
    link: Optional[str] = None


class ChargeResponse(BaseModel):
    """Charge submission response."""
    payment_id: str
    status: str
    status_detail: Optional[str] = None
    invoice_id: str
    next_action: Optional[NextActionResponse] = None


class GatewayErrorResponse(BaseModel):
    """Structured gateway rejection."""
    description: str
    code: Optional[str] = None
    hint: Optional[str] = None


# ==================== Checkout Schemas ====================

class CheckoutRequest(BaseModel):
    """Hosted checkout link request."""
    account_id: Optional[str] = Field(None, alias="uid")
    plan_type: str = Field(PlanType.MONTHLY.value, alias="planType")

    class Config:
        populate_by_name = True


class CheckoutResponse(BaseModel):
    """Hosted checkout link."""
    init_point: Optional[str]
    preference_id: str
    invoice_id: str
    environment: str


# ==================== Webhook Schemas ====================

class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the gateway."""
    status: str
    action: str
    payment_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_status: Optional[str] = None
    processed_at: datetime
