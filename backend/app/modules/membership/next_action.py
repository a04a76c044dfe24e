"""Next-action payloads for pending Pix and boleto charges.

Different gateway API versions put the payer-facing data (copy-and-paste
code, QR image, barcode, payment link) in different response fields. Each
field has an ordered list of extractors; the first one returning a value
wins. The orders are compatibility shims and tests pin them.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from app.modules.membership.payer import PaymentMethodClass

Extractor = Callable[[dict], Optional[str]]


def _dig(payload: Any, *keys: str) -> Optional[str]:
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    if payload is None:
        return None
    value = str(payload).strip()
    return value or None


def _transaction_data(*keys: str) -> Extractor:
    return lambda payload: _dig(payload, "point_of_interaction", "transaction_data", *keys)


def _transaction_details(*keys: str) -> Extractor:
    return lambda payload: _dig(payload, "transaction_details", *keys)


def first_populated(extractors: Sequence[Extractor], payload: dict) -> Optional[str]:
    """Value of the first extractor that finds a non-empty field."""
    for extractor in extractors:
        value = extractor(payload)
        if value:
            return value
    return None


TRANSFER_CODE_EXTRACTORS: tuple[Extractor, ...] = (
    _transaction_data("qr_code"),
)

TRANSFER_QR_IMAGE_EXTRACTORS: tuple[Extractor, ...] = (
    _transaction_data("qr_code_base64"),
)

TRANSFER_LINK_EXTRACTORS: tuple[Extractor, ...] = (
    _transaction_data("ticket_url"),
    _transaction_data("external_resource_url"),
    _transaction_details("external_resource_url"),
)

VOUCHER_BARCODE_EXTRACTORS: tuple[Extractor, ...] = (
    _transaction_details("barcode", "content"),
    _transaction_details("digitable_line"),
    lambda payload: _dig(payload, "barcode", "content"),
    _transaction_data("barcode", "content"),
)

VOUCHER_LINK_EXTRACTORS: tuple[Extractor, ...] = (
    _transaction_details("external_resource_url"),
    _transaction_data("ticket_url"),
)


@dataclass
class NextAction:
    """Payer-facing instructions for a pending charge."""
    type: str
    code: Optional[str] = None
    qr_base64: Optional[str] = None
    barcode: Optional[str] = None
    link: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "code": self.code,
            "qr_base64": self.qr_base64,
            "barcode": self.barcode,
            "link": self.link,
        }


def build_next_action(method_class: PaymentMethodClass, charge_payload: dict) -> Optional[NextAction]:
    """Assemble the next action for a pending charge, or None for cards."""
    if method_class == PaymentMethodClass.DIGITAL_TRANSFER:
        return NextAction(
            type="pix",
            code=first_populated(TRANSFER_CODE_EXTRACTORS, charge_payload),
            qr_base64=first_populated(TRANSFER_QR_IMAGE_EXTRACTORS, charge_payload),
            link=first_populated(TRANSFER_LINK_EXTRACTORS, charge_payload),
        )
    if method_class == PaymentMethodClass.VOUCHER:
        return NextAction(
            type="voucher",
            barcode=first_populated(VOUCHER_BARCODE_EXTRACTORS, charge_payload),
            link=first_populated(VOUCHER_LINK_EXTRACTORS, charge_payload),
        )
    return None
