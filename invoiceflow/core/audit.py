"""
Invoiceflow Audit Logging

Append-only audit trail for every mutation on companies, approval rules,
invoices and users. Entries carry a checksum for tamper detection.

Writes are best effort: a failed audit write is logged and never undoes
the mutation it describes.
"""
from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Auditable actions."""
    # Invoices
    CREATE_INVOICE = "create_invoice"
    UPLOAD_INVOICE = "upload_invoice"
    AUTO_APPROVE_INVOICE = "auto_approve_invoice"
    ROUTE_INVOICE = "route_invoice"
    APPROVE_INVOICE = "approve_invoice"
    REJECT_INVOICE = "reject_invoice"
    UPDATE_INVOICE = "update_invoice"
    DELETE_INVOICE = "delete_invoice"

    # Approval rules
    CREATE_APPROVAL_RULE = "create_approval_rule"
    UPDATE_APPROVAL_RULE = "update_approval_rule"
    DELETE_APPROVAL_RULE = "delete_approval_rule"

    # Company
    UPDATE_COMPANY_CONFIG = "update_company_config"

    # Users
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"


@dataclass
class AuditEntry:
    """Immutable audit log entry."""
    company_id: str
    action: str
    actor_id: Optional[str] = None
    invoice_id: Optional[str] = None
    resource_type: str = ""
    resource_id: str = ""
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=lambda: f"AUD-{uuid.uuid4().hex}")
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    checksum: str = ""

    def __post_init__(self):
        if not self.checksum:
            self.checksum = self._calculate_checksum()

    def _calculate_checksum(self) -> str:
        """SHA-256 over the entry content."""
        data = {
            "id": self.id,
            "created_at": self.created_at,
            "company_id": self.company_id,
            "actor_id": self.actor_id,
            "invoice_id": self.invoice_id,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "action": self.action,
            "old_values": self.old_values,
            "new_values": self.new_values,
        }
        # Round-trip through JSON so stored and in-memory entries hash the same
        data_str = json.dumps(json.loads(json.dumps(data, default=str)), sort_keys=True)
        return hashlib.sha256(data_str.encode()).hexdigest()

    def verify(self) -> bool:
        """Verify entry hasn't been tampered with."""
        return self.checksum == self._calculate_checksum()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AuditEntry":
        return cls(
            id=row["id"],
            created_at=row["created_at"],
            company_id=row["company_id"],
            actor_id=row.get("actor_id"),
            invoice_id=row.get("invoice_id"),
            resource_type=row.get("resource_type") or "",
            resource_id=row.get("resource_id") or "",
            action=row["action"],
            old_values=row.get("old_values"),
            new_values=row.get("new_values"),
            checksum=row["checksum"],
        )


class AuditRecorder:
    """Writes audit entries to the store and reads them back."""

    def __init__(self, db):
        self.db = db

    def record(
        self,
        company_id: str,
        actor_id: Optional[str],
        action: AuditAction,
        invoice_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        resource_type: str = "",
        resource_id: str = "",
    ) -> Optional[AuditEntry]:
        """
        Append one audit entry.

        Args:
            company_id: Company the mutation belongs to
            actor_id: User performing the action (None for system actions)
            action: Action tag
            invoice_id: Invoice affected, when the mutation is on an invoice
            old_values: Snapshot before the mutation
            new_values: Snapshot after the mutation
            resource_type: invoice, approval_rule, company or user
            resource_id: ID of the affected record

        Returns:
            The stored entry, or None if the write failed
        """
        if invoice_id and not resource_type:
            resource_type, resource_id = "invoice", invoice_id
        entry = AuditEntry(
            company_id=company_id,
            actor_id=actor_id,
            invoice_id=invoice_id,
            action=action.value if isinstance(action, AuditAction) else str(action),
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
        )
        try:
            self.db.append_audit_entry(entry.to_dict())
        except Exception as exc:
            logger.error(
                "Audit write failed for %s on %s: %s",
                entry.action,
                resource_id or invoice_id or company_id,
                exc,
            )
            return None
        return entry

    def history(self, company_id: str, invoice_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent entries for one invoice, newest first."""
        return self.db.list_audit_entries(company_id, invoice_id=invoice_id, limit=limit)

    def query(
        self,
        company_id: str,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        rows = self.db.list_audit_entries(
            company_id,
            action=action.value if isinstance(action, AuditAction) else action,
            limit=limit,
        )
        return [AuditEntry.from_row(row) for row in rows]

    def verify_integrity(self, company_id: str, limit: int = 1000) -> Dict[str, Any]:
        """Recompute checksums and report entries that no longer match."""
        entries = self.query(company_id, limit=limit)
        tampered = [entry.id for entry in entries if not entry.verify()]
        if tampered:
            logger.warning("Audit integrity check failed for %d entries in %s", len(tampered), company_id)
        return {
            "total_checked": len(entries),
            "valid": len(entries) - len(tampered),
            "tampered": tampered,
            "integrity_ok": not tampered,
        }
