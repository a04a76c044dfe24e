"""Payer profile normalization.

Turns the payment form into the payer object the gateway accepts. Which
fields are mandatory depends on the payment method class:

- CARD: charge token and method id required; valid legal id and email
- DIGITAL_TRANSFER (Pix): no token; email per the configured policy
- VOUCHER (boleto): no token; valid legal id and email
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.modules.membership.environment import BillingEnvironment, TransferEmailPolicy
from app.modules.membership.exceptions import (
    InvalidPayerIdentification,
    MissingChargeToken,
    MissingMethodIdentifier,
    UnsupportedPaymentMethod,
)
from app.modules.membership.national_id import is_valid_cpf, only_digits
from app.modules.membership.schemas import PaymentForm

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DEFAULT_IDENTIFICATION_TYPE = "CPF"


class PaymentMethodClass(str, Enum):
    CARD = "card"
    DIGITAL_TRANSFER = "digital_transfer"
    VOUCHER = "voucher"


CARD_PAYMENT_TYPES = {"credit_card", "debit_card", "prepaid_card"}
TRANSFER_PAYMENT_TYPES = {"bank_transfer", "pix"}
TRANSFER_METHOD_IDS = {"pix"}
VOUCHER_PAYMENT_TYPES = {"ticket", "atm"}


def detect_method_class(form: PaymentForm) -> PaymentMethodClass:
    """Classify the payment form by its method type and method id.

    Raises:
        UnsupportedPaymentMethod: Neither field names a supported class
    """
    payment_type = (form.payment_type_id or "").lower()
    method_id = (form.payment_method_id or "").lower()

    if payment_type in TRANSFER_PAYMENT_TYPES or method_id in TRANSFER_METHOD_IDS:
        return PaymentMethodClass.DIGITAL_TRANSFER
    if payment_type in VOUCHER_PAYMENT_TYPES:
        return PaymentMethodClass.VOUCHER
    if payment_type in CARD_PAYMENT_TYPES:
        return PaymentMethodClass.CARD
    if not payment_type and form.token:
        return PaymentMethodClass.CARD
    raise UnsupportedPaymentMethod(form.payment_type_id or form.payment_method_id)


def is_valid_email(value: Optional[str]) -> bool:
    return bool(value) and EMAIL_PATTERN.match(value.strip()) is not None


def synthetic_email(account_id: str, domain: str) -> str:
    """Stable, always-valid address for an account without a usable email."""
    digest = hashlib.sha256(account_id.encode("utf-8")).hexdigest()[:16]
    return f"member-{digest}@{domain}"


@dataclass
class PayerProfile:
    """Gateway-compliant payer."""
    email: Optional[str] = None
    identification_type: Optional[str] = None
    identification_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    sandbox_substituted: bool = False

    def to_gateway(self) -> dict:
        payer = {}
        if self.email:
            payer["email"] = self.email
        if self.identification_number:
            payer["identification"] = {
                "type": self.identification_type or DEFAULT_IDENTIFICATION_TYPE,
                "number": self.identification_number,
            }
        if self.first_name:
            payer["first_name"] = self.first_name
        if self.last_name:
            payer["last_name"] = self.last_name
        return payer


@dataclass
class NormalizedPayment:
    """Validated payment form ready for the charge request."""
    method_class: PaymentMethodClass
    payer: PayerProfile
    payment_method_id: Optional[str]
    token: Optional[str] = None
    issuer_id: Optional[str] = None
    installments: int = 1


class PayerProfileNormalizer:
    """Builds payer profiles from heterogeneous payment forms."""

    def __init__(self, environment: BillingEnvironment):
        self.environment = environment

    def normalize(
        self,
        account_id: str,
        form: PaymentForm,
        method_class: Optional[PaymentMethodClass] = None,
    ) -> NormalizedPayment:
        """Normalize a payment form.

        Raises:
            MissingChargeToken: Card payment without token
            MissingMethodIdentifier: Card payment without method id
            InvalidPayerIdentification: Invalid legal id outside the sandbox
            UnsupportedPaymentMethod: Unknown method class
        """
        method_class = method_class or detect_method_class(form)

        if method_class == PaymentMethodClass.CARD:
            if not form.token:
                raise MissingChargeToken()
            if not form.payment_method_id:
                raise MissingMethodIdentifier()

        payer = PayerProfile(
            email=self._resolve_email(account_id, form, method_class),
            first_name=form.payer.first_name if form.payer else None,
            last_name=form.payer.last_name if form.payer else None,
        )
        id_type, id_number = self._raw_identification(form)
        payer.identification_type = (id_type or DEFAULT_IDENTIFICATION_TYPE).upper()
        payer.identification_number, payer.sandbox_substituted = self._resolve_identification(
            id_number, method_class
        )

        is_card = method_class == PaymentMethodClass.CARD
        return NormalizedPayment(
            method_class=method_class,
            payer=payer,
            payment_method_id=form.payment_method_id,
            token=form.token if is_card else None,
            issuer_id=str(form.issuer_id) if is_card and form.issuer_id else None,
            installments=max(int(form.installments or 1), 1) if is_card else 1,
        )

    def _raw_email(self, form: PaymentForm) -> Optional[str]:
        if form.payer and form.payer.email:
            return form.payer.email.strip()
        return form.email.strip() if form.email else None

    def _raw_identification(self, form: PaymentForm) -> tuple[Optional[str], Optional[str]]:
        identification = form.payer.identification if form.payer else None
        id_type = (identification.type if identification else None) or form.identification_type
        id_number = identification.number if identification and identification.number else None
        if id_number is None:
            id_number = form.identification_number
        return id_type, str(id_number) if id_number is not None else None

    def _resolve_email(
        self,
        account_id: str,
        form: PaymentForm,
        method_class: PaymentMethodClass,
    ) -> Optional[str]:
        email = self._raw_email(form)
        if is_valid_email(email):
            return email
        if (
            method_class == PaymentMethodClass.DIGITAL_TRANSFER
            and self.environment.transfer_email_policy == TransferEmailPolicy.OMIT
        ):
            return None
        return synthetic_email(account_id, self.environment.synthetic_email_domain)

    def _resolve_identification(
        self,
        id_number: Optional[str],
        method_class: PaymentMethodClass,
    ) -> tuple[Optional[str], bool]:
        digits = only_digits(id_number)
        if is_valid_cpf(digits):
            return digits, False

        if method_class == PaymentMethodClass.DIGITAL_TRANSFER:
            return None, False

        if self.environment.sandbox:
            logger.info(
                "Substituting sandbox payer identification",
                extra={"method_class": method_class.value},
            )
            return self.environment.sandbox_legal_id, True

        raise InvalidPayerIdentification()
