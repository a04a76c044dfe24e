"""Membership billing models.

Invoices and billing summaries are documents in the document store; these
dataclasses are their typed views. Plans are a fixed catalog in a single
currency.
"""

import calendar
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


CURRENCY = "BRL"


class PlanType(str, Enum):
    """Membership plans."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"


PLAN_CATALOG = {
    PlanType.MONTHLY.value: {"label": "Monthly", "months": 1, "price": 30.0},
    PlanType.QUARTERLY.value: {"label": "Quarterly", "months": 3, "price": 85.0},
    PlanType.SEMIANNUAL.value: {"label": "Semiannual", "months": 6, "price": 170.0},
}


def plan_months(plan_type: str) -> int:
    return PLAN_CATALOG[plan_type]["months"]


def plan_price(plan_type: str) -> float:
    return PLAN_CATALOG[plan_type]["price"]


def plan_label(plan_type: str) -> str:
    return PLAN_CATALOG[plan_type]["label"]


def is_known_plan(plan_type: Optional[str]) -> bool:
    return plan_type in PLAN_CATALOG


class InvoiceStatus(str, Enum):
    """Invoice status values.

    ``open`` is initial; ``paid`` and ``expired`` are terminal; ``pending``
    and ``error`` may still move to ``paid`` or ``expired``.
    """
    OPEN = "open"
    PENDING = "pending"
    ERROR = "error"
    EXPIRED = "expired"
    PAID = "paid"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.EXPIRED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


# A terminal status only yields to a status of higher rank
_STATUS_RANK = {
    InvoiceStatus.OPEN: 0,
    InvoiceStatus.PENDING: 1,
    InvoiceStatus.ERROR: 1,
    InvoiceStatus.EXPIRED: 2,
    InvoiceStatus.PAID: 3,
}


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """Whether an invoice in ``current`` may move to ``target``.

    Non-terminal invoices move freely. Terminal invoices only move up in
    rank, so ``paid`` never regresses and a late approval still wins over
    ``expired`` whichever notification lands first.
    """
    if not current.is_terminal:
        return True
    return target.rank > current.rank


class OutcomeKind(str, Enum):
    """Gateway outcomes applied to an invoice."""
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED_OR_CANCELLED = "rejected_or_cancelled"
    ERROR = "error"


OUTCOME_STATUS = {
    OutcomeKind.APPROVED: InvoiceStatus.PAID,
    OutcomeKind.PENDING: InvoiceStatus.PENDING,
    OutcomeKind.REJECTED_OR_CANCELLED: InvoiceStatus.EXPIRED,
    OutcomeKind.ERROR: InvoiceStatus.ERROR,
}


@dataclass
class GatewayOutcome:
    """What the gateway said about an invoice's charge."""
    kind: OutcomeKind
    charge_id: Optional[str] = None
    gateway_status: Optional[str] = None
    detail: Optional[str] = None
    message: Optional[str] = None
    code: Optional[str] = None
    approved_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payer: Optional[dict] = None

    @property
    def target_status(self) -> InvoiceStatus:
        return OUTCOME_STATUS[self.kind]

    @classmethod
    def approved(cls, approved_at: Optional[datetime] = None, **kwargs) -> "GatewayOutcome":
        return cls(kind=OutcomeKind.APPROVED, approved_at=approved_at, **kwargs)

    @classmethod
    def pending(cls, detail: Optional[str] = None, **kwargs) -> "GatewayOutcome":
        return cls(kind=OutcomeKind.PENDING, detail=detail, **kwargs)

    @classmethod
    def rejected_or_cancelled(cls, detail: Optional[str] = None, **kwargs) -> "GatewayOutcome":
        return cls(kind=OutcomeKind.REJECTED_OR_CANCELLED, detail=detail, **kwargs)

    @classmethod
    def error(cls, message: str, code: Optional[str] = None, **kwargs) -> "GatewayOutcome":
        return cls(kind=OutcomeKind.ERROR, message=message, code=code, **kwargs)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_to_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def add_months_safe(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of a shorter target month.

    ``add_months_safe(Jan 31, 1)`` is Feb 28 (Feb 29 in leap years).
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


@dataclass
class Invoice:
    """One billing-cycle charge record for an account."""
    id: str
    account_id: str
    plan_type: str
    plan_name: str
    amount: float
    period_start: datetime
    period_end: datetime
    due_date: datetime
    status: InvoiceStatus = InvoiceStatus.OPEN
    gateway_charge_id: Optional[str] = None
    gateway_status: Optional[str] = None
    gateway_status_detail: Optional[str] = None
    gateway_error: Optional[str] = None
    gateway_error_code: Optional[str] = None
    payment_method: Optional[str] = None
    payment_url: Optional[str] = None
    preference_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    recorded_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    gateway: dict = field(default_factory=dict)

    def to_document(self) -> dict:
        data = asdict(self)
        data.pop("id")
        data["status"] = self.status.value
        return data

    @classmethod
    def from_document(cls, invoice_id: str, data: dict) -> "Invoice":
        known = {f for f in cls.__dataclass_fields__ if f != "id"}
        values = {k: v for k, v in data.items() if k in known}
        values["status"] = InvoiceStatus(values.get("status", InvoiceStatus.OPEN.value))
        values["gateway"] = values.get("gateway") or {}
        return cls(id=invoice_id, **values)


@dataclass
class BillingSummary:
    """Per-account projection of the current payment standing."""
    plan_type: Optional[str] = None
    last_payment_at: Optional[datetime] = None
    last_amount: Optional[float] = None
    next_due_at: Optional[datetime] = None
    active_until: Optional[datetime] = None
    outstanding_balance: float = 0.0
    exempt: bool = False
    updated_at: Optional[datetime] = None

    def to_document(self) -> dict:
        return asdict(self)

    @classmethod
    def from_document(cls, data: Optional[dict]) -> "BillingSummary":
        data = data or {}
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_paid_invoice(cls, invoice: Invoice, updated_at: datetime) -> "BillingSummary":
        return cls(
            plan_type=invoice.plan_type,
            last_payment_at=invoice.paid_at,
            last_amount=invoice.amount,
            next_due_at=invoice.period_end,
            active_until=invoice.period_end,
            outstanding_balance=0.0,
            exempt=False,
            updated_at=updated_at,
        )

    def same_standing(self, other: "BillingSummary") -> bool:
        """Equal in everything but the write timestamp."""
        mine = self.to_document()
        theirs = other.to_document()
        mine.pop("updated_at")
        theirs.pop("updated_at")
        return mine == theirs


ACCOUNT_STATUS_UP_TO_DATE = "Up to date"
