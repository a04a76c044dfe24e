"""Repository for membership billing documents.

Layout:
    accounts/{account_id}                     account profile
    accounts/{account_id}/invoices/{id}       invoices
    accounts/{account_id}/billing/summary     billing summary

Every write is a merge so concurrent writers touching different fields of
the same document do not clobber each other.
"""

from datetime import datetime
from typing import Optional

from app.core.document_store import DocumentStore, UpdateFn
from app.modules.membership.models import (
    BillingSummary,
    Invoice,
    InvoiceStatus,
)

ACCOUNTS = "accounts"
INVOICES = "invoices"
BILLING = "billing"
SUMMARY_DOC = "summary"


def account_path(account_id: str) -> str:
    return f"{ACCOUNTS}/{account_id}"


def invoices_path(account_id: str) -> str:
    return f"{account_path(account_id)}/{INVOICES}"


def invoice_path(account_id: str, invoice_id: str) -> str:
    return f"{invoices_path(account_id)}/{invoice_id}"


def summary_path(account_id: str) -> str:
    return f"{account_path(account_id)}/{BILLING}/{SUMMARY_DOC}"


class InvoiceRepository:
    """Data access for invoices, billing summaries and account profiles."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_invoice(self, account_id: str, invoice_id: str) -> Optional[Invoice]:
        data = await self.store.get(invoice_path(account_id, invoice_id))
        if data is None:
            return None
        return Invoice.from_document(invoice_id, data)

    async def add_invoice(self, account_id: str, data: dict) -> str:
        return await self.store.add(invoices_path(account_id), data)

    async def merge_invoice(self, account_id: str, invoice_id: str, patch: dict) -> None:
        await self.store.set(invoice_path(account_id, invoice_id), patch, merge=True)

    async def update_invoice(self, account_id: str, invoice_id: str, fn: UpdateFn) -> Optional[dict]:
        """Atomic read-check-merge of one invoice; see ``DocumentStore.update``."""
        return await self.store.update(invoice_path(account_id, invoice_id), fn)

    async def get_open_invoices(
        self,
        account_id: str,
        statuses: tuple[InvoiceStatus, ...] = (InvoiceStatus.OPEN, InvoiceStatus.PENDING),
    ) -> list[Invoice]:
        """Unsettled invoices of one account."""
        invoices = []
        for status in statuses:
            documents = await self.store.query(
                INVOICES, "status", "==", status.value,
                parent_path=invoices_path(account_id),
            )
            invoices.extend(Invoice.from_document(doc.id, doc.data) for doc in documents)
        return invoices

    async def get_summary(self, account_id: str) -> Optional[BillingSummary]:
        data = await self.store.get(summary_path(account_id))
        return BillingSummary.from_document(data) if data is not None else None

    async def merge_summary(self, account_id: str, summary: BillingSummary) -> None:
        await self.store.set(summary_path(account_id), summary.to_document(), merge=True)

    async def get_due_summaries(self, due_on_or_before: datetime) -> list[tuple[str, BillingSummary]]:
        """Billing summaries whose next due date has been reached.

        Returns:
            List of (account_id, summary) pairs
        """
        documents = await self.store.query(BILLING, "next_due_at", "<=", due_on_or_before)
        return [
            (doc.segments[1], BillingSummary.from_document(doc.data))
            for doc in documents
            if doc.id == SUMMARY_DOC and doc.segments[0] == ACCOUNTS
        ]

    async def get_account(self, account_id: str) -> Optional[dict]:
        return await self.store.get(account_path(account_id))

    async def merge_account(self, account_id: str, patch: dict) -> None:
        await self.store.set(account_path(account_id), patch, merge=True)
