"""Accounting entries posted when an invoice is approved.

One balanced entry per approval: the full invoice amount on both the debit
and the credit side. The entry starts with ERP status ``pending``; syncing
to an ERP happens outside this service.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from invoiceflow.core.models import AccountingEntry, ErpStatus, Invoice


logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(self, db):
        self.db = db

    def post_entry(
        self,
        invoice: Invoice,
        debit_account_code: Optional[str],
        credit_account_code: Optional[str],
        actor_id: Optional[str] = None,
    ) -> Optional[AccountingEntry]:
        """Best effort: failures are logged and None is returned."""
        amount = invoice.total_amount
        if amount is None:
            logger.warning("Skipping ledger entry for %s: amount unknown", invoice.id)
            return None
        description = f"Invoice {invoice.invoice_number or invoice.id}"
        if invoice.supplier_name:
            description += f" - {invoice.supplier_name}"
        try:
            row = self.db.create_accounting_entry({
                "company_id": invoice.company_id,
                "invoice_id": invoice.id,
                "debit_account_code": debit_account_code,
                "credit_account_code": credit_account_code,
                "debit_amount": amount,
                "credit_amount": amount,
                "entry_date": date.today().isoformat(),
                "description": description,
                "erp_status": ErpStatus.PENDING.value,
                "created_by": actor_id,
            })
        except Exception as exc:
            logger.error("Ledger entry for invoice %s failed: %s", invoice.id, exc)
            return None
        logger.info("Posted ledger entry %s for invoice %s (%s)", row["id"], invoice.id, amount)
        return AccountingEntry.from_row(row)

    def entries_for(self, invoice_id: str):
        return [AccountingEntry.from_row(row) for row in self.db.list_accounting_entries(invoice_id)]
