"""Correlation reference codec.

The reference travels through the gateway in the charge's external
reference field and maps the charge back to (account id, invoice id).

Encoding always produces the composite shape ``"<account_id>|<invoice_id>"``.
Decoding also accepts the shapes written by earlier releases:

- legacy structured: a JSON object with the ids as named fields
- legacy bare: just the invoice id; the account id comes from charge metadata

They are tried in that fixed order: structured, composite, bare.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.modules.membership.exceptions import UnresolvedReference

SEPARATOR = "|"

# Field names under which older releases stored the ids
ACCOUNT_ID_KEYS = ("uid", "account_id", "accountId")
INVOICE_ID_KEYS = ("invoice_id", "invoiceId")


class ReferenceShape(str, Enum):
    COMPOSITE = "composite"
    LEGACY_BARE = "legacy_bare"
    LEGACY_STRUCTURED = "legacy_structured"


@dataclass(frozen=True)
class CorrelationReference:
    account_id: str
    invoice_id: str
    shape: ReferenceShape = ReferenceShape.COMPOSITE


def _first_value(source: Optional[dict], keys: tuple[str, ...]) -> Optional[str]:
    if not isinstance(source, dict):
        return None
    for key in keys:
        value = source.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def is_encodable_id(value: Optional[str], account: bool = False) -> bool:
    """Whether an id can be embedded in a composite reference."""
    if not value or value != value.strip() or SEPARATOR in value:
        return False
    return not (account and value.startswith("{"))


def encode_reference(account_id: str, invoice_id: str) -> str:
    """Encode the composite reference token.

    Raises:
        ValueError: If an id is empty, padded with whitespace, contains the
            separator, or the account id could be mistaken for a JSON payload
    """
    for name, value in (("account_id", account_id), ("invoice_id", invoice_id)):
        if not value or value != value.strip():
            raise ValueError(f"{name} must be a non-empty, unpadded string")
        if SEPARATOR in value:
            raise ValueError(f"{name} must not contain {SEPARATOR!r}")
    if account_id.startswith("{"):
        raise ValueError("account_id must not start with '{'")
    return f"{account_id}{SEPARATOR}{invoice_id}"


def decode_reference(token: Optional[str], metadata: Optional[dict] = None) -> CorrelationReference:
    """Decode a reference token, falling back through the legacy shapes.

    Args:
        token: The charge's external reference
        metadata: The charge's metadata, consulted for the account id

    Raises:
        UnresolvedReference: No (account id, invoice id) pair could be resolved
    """
    text = (token or "").strip()
    if not text:
        raise UnresolvedReference(token, "empty reference")

    structured = _parse_structured(text)
    if structured is not None:
        return _decode_structured(text, structured, metadata)
    if SEPARATOR in text:
        return _decode_composite(text)
    return _decode_bare(text, metadata)


def _parse_structured(text: str) -> Optional[dict]:
    if not text.startswith("{"):
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _decode_structured(text: str, payload: dict, metadata: Optional[dict]) -> CorrelationReference:
    invoice_id = _first_value(payload, INVOICE_ID_KEYS)
    account_id = _first_value(payload, ACCOUNT_ID_KEYS) or _first_value(metadata, ACCOUNT_ID_KEYS)
    if not invoice_id:
        raise UnresolvedReference(text, "structured reference without invoice id")
    if not account_id:
        raise UnresolvedReference(text, "structured reference without account id")
    return CorrelationReference(account_id, invoice_id, ReferenceShape.LEGACY_STRUCTURED)


def _decode_composite(text: str) -> CorrelationReference:
    account_id, _, invoice_id = text.partition(SEPARATOR)
    if not account_id or not invoice_id:
        raise UnresolvedReference(text, "composite reference with an empty part")
    return CorrelationReference(account_id, invoice_id, ReferenceShape.COMPOSITE)


def _decode_bare(text: str, metadata: Optional[dict]) -> CorrelationReference:
    account_id = _first_value(metadata, ACCOUNT_ID_KEYS)
    if not account_id:
        raise UnresolvedReference(text, "bare invoice id without account id in metadata")
    return CorrelationReference(account_id, text, ReferenceShape.LEGACY_BARE)
