"""Tests for payment method detection and payer normalization."""

import pytest

from app.modules.membership.environment import BillingEnvironment, TransferEmailPolicy
from app.modules.membership.exceptions import (
    InvalidPayerIdentification,
    MissingChargeToken,
    MissingMethodIdentifier,
    UnsupportedPaymentMethod,
)
from app.modules.membership.payer import (
    PaymentMethodClass,
    PayerProfileNormalizer,
    detect_method_class,
    is_valid_email,
    synthetic_email,
)
from app.modules.membership.schemas import PaymentForm

VALID_CPF = "529.982.247-25"
INVALID_CPF = "111.222.333-44"


def card_form(**overrides) -> PaymentForm:
    data = {
        "token": "card-token",
        "payment_method_id": "visa",
        "payment_type_id": "credit_card",
        "issuer_id": 25,
        "installments": 3,
        "payer": {
            "email": "member@example.com",
            "identification": {"type": "CPF", "number": VALID_CPF},
        },
    }
    data.update(overrides)
    return PaymentForm(**data)


class TestDetectMethodClass:

    @pytest.mark.parametrize("fields, expected", [
        ({"payment_type_id": "credit_card", "token": "t"}, PaymentMethodClass.CARD),
        ({"payment_type_id": "debit_card"}, PaymentMethodClass.CARD),
        ({"payment_type_id": "bank_transfer", "payment_method_id": "pix"}, PaymentMethodClass.DIGITAL_TRANSFER),
        ({"payment_method_id": "pix"}, PaymentMethodClass.DIGITAL_TRANSFER),
        ({"payment_type_id": "ticket", "payment_method_id": "bolbradesco"}, PaymentMethodClass.VOUCHER),
        ({"token": "t", "payment_method_id": "master"}, PaymentMethodClass.CARD),
    ])
    def test_classification(self, fields, expected) -> None:
        assert detect_method_class(PaymentForm(**fields)) == expected

    def test_unknown_method_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedPaymentMethod):
            detect_method_class(PaymentForm(payment_type_id="crypto"))


class TestEmail:

    @pytest.mark.parametrize("value, valid", [
        ("member@example.com", True),
        ("a.b+c@sub.example.org", True),
        ("member@example", False),
        ("member example@x.com", False),
        ("", False),
        (None, False),
    ])
    def test_pattern(self, value, valid) -> None:
        assert is_valid_email(value) is valid

    def test_synthetic_email_is_stable_and_valid(self) -> None:
        first = synthetic_email("acc1", "example.com")

        assert first == synthetic_email("acc1", "example.com")
        assert first != synthetic_email("acc2", "example.com")
        assert is_valid_email(first)


class TestCardNormalization:

    def test_valid_card_form(self, production_env) -> None:
        payment = PayerProfileNormalizer(production_env).normalize("acc1", card_form())

        assert payment.method_class == PaymentMethodClass.CARD
        assert payment.token == "card-token"
        assert payment.issuer_id == "25"
        assert payment.installments == 3
        assert payment.payer.to_gateway() == {
            "email": "member@example.com",
            "identification": {"type": "CPF", "number": "52998224725"},
        }

    def test_missing_token(self, production_env) -> None:
        with pytest.raises(MissingChargeToken):
            PayerProfileNormalizer(production_env).normalize("acc1", card_form(token=None))

    def test_missing_method_id(self, production_env) -> None:
        with pytest.raises(MissingMethodIdentifier):
            PayerProfileNormalizer(production_env).normalize("acc1", card_form(payment_method_id=None))

    def test_invalid_cpf_in_production(self, production_env) -> None:
        form = card_form(payer={"email": "member@example.com", "identification": {"number": INVALID_CPF}})

        with pytest.raises(InvalidPayerIdentification):
            PayerProfileNormalizer(production_env).normalize("acc1", form)

    def test_invalid_cpf_substituted_in_sandbox(self, sandbox_env) -> None:
        form = card_form(payer={"email": "member@example.com", "identification": {"number": INVALID_CPF}})

        payment = PayerProfileNormalizer(sandbox_env).normalize("acc1", form)

        assert payment.payer.identification_number == sandbox_env.sandbox_legal_id
        assert payment.payer.sandbox_substituted is True

    def test_flat_payer_fields(self, production_env) -> None:
        form = PaymentForm(
            token="card-token",
            payment_method_id="visa",
            payment_type_id="credit_card",
            email="flat@example.com",
            identificationType="cpf",
            identificationNumber=VALID_CPF,
        )

        payment = PayerProfileNormalizer(production_env).normalize("acc1", form)

        assert payment.payer.email == "flat@example.com"
        assert payment.payer.identification_type == "CPF"
        assert payment.payer.identification_number == "52998224725"

    def test_invalid_email_gets_synthetic_address(self, production_env) -> None:
        form = card_form(payer={"email": "not-an-email", "identification": {"number": VALID_CPF}})

        payment = PayerProfileNormalizer(production_env).normalize("acc1", form)

        assert payment.payer.email == synthetic_email("acc1", production_env.synthetic_email_domain)


class TestTransferNormalization:

    def test_transfer_needs_no_token_and_drops_invalid_cpf(self, production_env) -> None:
        form = PaymentForm(payment_method_id="pix", identificationNumber=INVALID_CPF)

        payment = PayerProfileNormalizer(production_env).normalize("acc1", form)

        assert payment.method_class == PaymentMethodClass.DIGITAL_TRANSFER
        assert payment.token is None
        assert payment.installments == 1
        assert "identification" not in payment.payer.to_gateway()

    def test_synthetic_policy_always_sends_email(self, production_env) -> None:
        payment = PayerProfileNormalizer(production_env).normalize("acc1", PaymentForm(payment_method_id="pix"))

        assert payment.payer.email == synthetic_email("acc1", production_env.synthetic_email_domain)

    def test_omit_policy_sends_only_client_email(self) -> None:
        env = BillingEnvironment(sandbox=False, transfer_email_policy=TransferEmailPolicy.OMIT)
        normalizer = PayerProfileNormalizer(env)

        without = normalizer.normalize("acc1", PaymentForm(payment_method_id="pix"))
        with_email = normalizer.normalize("acc1", PaymentForm(payment_method_id="pix", email="m@example.com"))

        assert "email" not in without.payer.to_gateway()
        assert with_email.payer.email == "m@example.com"


class TestVoucherNormalization:

    def test_voucher_requires_valid_cpf_in_production(self, production_env) -> None:
        form = PaymentForm(payment_type_id="ticket", payment_method_id="bolbradesco")

        with pytest.raises(InvalidPayerIdentification):
            PayerProfileNormalizer(production_env).normalize("acc1", form)

    def test_voucher_with_valid_cpf(self, production_env) -> None:
        form = PaymentForm(
            payment_type_id="ticket",
            payment_method_id="bolbradesco",
            payer={"first_name": "Ana", "last_name": "Souza", "identification": {"number": VALID_CPF}},
        )

        payment = PayerProfileNormalizer(production_env).normalize("acc1", form)

        gateway_payer = payment.payer.to_gateway()
        assert gateway_payer["identification"]["number"] == "52998224725"
        assert gateway_payer["first_name"] == "Ana"
        assert payment.token is None
