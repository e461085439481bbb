"""Dashboard KPIs for a company's invoices."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict

from invoiceflow.core.auth import CurrentUser
from invoiceflow.core.models import ApprovalStatus, to_amount
from invoiceflow.core.permissions import Permission, has_permission


class DashboardService:
    def __init__(self, db):
        self.db = db

    def metrics(self, actor: CurrentUser) -> Dict[str, Any]:
        rows = self.db.list_invoice_summaries(actor.company_id)
        week_ago = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat()

        counts = {status.value: 0 for status in ApprovalStatus}
        total_value = Decimal("0.00")
        approved_value = Decimal("0.00")
        recent = 0
        my_pending = 0

        for row in rows:
            approval_status = row.get("approval_status") or ApprovalStatus.PENDING.value
            counts[approval_status] = counts.get(approval_status, 0) + 1
            amount = to_amount(row.get("total_amount")) or Decimal("0.00")
            total_value += amount
            if approval_status in (ApprovalStatus.APPROVED.value, ApprovalStatus.AUTO_APPROVED.value):
                approved_value += amount
            if (row.get("created_at") or "") >= week_ago:
                recent += 1
            if (
                approval_status == ApprovalStatus.PENDING.value
                and row.get("assigned_approver_id") == actor.user_id
            ):
                my_pending += 1

        total = len(rows)
        processed = counts[ApprovalStatus.APPROVED.value] + counts[ApprovalStatus.AUTO_APPROVED.value]
        data: Dict[str, Any] = {
            "total_invoices": total,
            "total_processed": processed,
            "pending_approval": counts[ApprovalStatus.PENDING.value],
            "rejected": counts[ApprovalStatus.REJECTED.value],
            "auto_approved": counts[ApprovalStatus.AUTO_APPROVED.value],
            "total_value": float(total_value),
            "approved_value": float(approved_value),
            "approval_rate": round(processed / total * 100, 1) if total else 0.0,
            "recent_7_days": recent,
        }
        if has_permission(actor.role, Permission.DECIDE_INVOICE):
            data["my_pending_approvals"] = my_pending
        return data
