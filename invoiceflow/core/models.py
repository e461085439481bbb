"""
Invoiceflow Core Data Models

Domain records built from store rows. Money is always Decimal with two
places; the store keeps amounts as decimal text and booleans as integers.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional


CENT = Decimal("0.01")


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    MASTER = "master"
    USER = "user"


class InvoiceStatus(str, Enum):
    """Processing status of an invoice document."""
    PENDING_EXTRACTION = "pending_extraction"  # uploaded, fields not known yet
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    DELETED = "deleted"  # soft delete, terminal


class ApprovalStatus(str, Enum):
    """Approval decision on an invoice."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


class ErpStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


def to_amount(value: Any) -> Optional[Decimal]:
    """Parse a money value into a two-place Decimal. None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def amount_to_db(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def amount_to_json(value: Optional[Decimal]) -> Optional[float]:
    return None if value is None else float(value)


class _Record:
    """Shared row mapping for the dataclasses below."""

    _amount_fields: tuple = ()
    _bool_fields: tuple = ()
    _hidden_fields: tuple = ()

    @classmethod
    def from_row(cls, row: Optional[Dict[str, Any]]):
        if row is None:
            return None
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in row.items() if k in known}
        for name in cls._amount_fields:
            if name in values:
                values[name] = to_amount(values[name])
        for name in cls._bool_fields:
            if name in values and values[name] is not None:
                values[name] = bool(values[name])
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            if f.name in self._hidden_fields:
                continue
            value = getattr(self, f.name)
            if f.name in self._amount_fields:
                value = amount_to_json(value)
            data[f.name] = value
        return data


@dataclass
class Company(_Record):
    id: str
    name: str
    tax_id: Optional[str] = None
    auto_approve_limit: Decimal = Decimal("0.00")
    default_debit_account: Optional[str] = None
    default_credit_account: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _amount_fields = ("auto_approve_limit",)
    _bool_fields = ("is_active",)

    def __post_init__(self):
        # Unconfigured limit means no company-level auto-approval
        if self.auto_approve_limit is None:
            self.auto_approve_limit = Decimal("0.00")


@dataclass
class User(_Record):
    id: str
    company_id: str
    name: str
    email: str
    role: str = Role.USER.value
    department: Optional[str] = None
    is_active: bool = True
    password_hash: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _bool_fields = ("is_active",)
    _hidden_fields = ("password_hash",)

    @property
    def is_elevated(self) -> bool:
        return self.role in (Role.SUPER_ADMIN.value, Role.MASTER.value)


@dataclass
class ApprovalRule(_Record):
    id: str
    company_id: str
    approval_level: int
    min_amount: Decimal
    max_amount: Optional[Decimal] = None
    auto_approve: bool = False
    approver_id: Optional[str] = None
    escalation_approver_id: Optional[str] = None
    department_codes: List[str] = field(default_factory=list)
    approval_deadline_hours: int = 48
    priority: int = 10
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _amount_fields = ("min_amount", "max_amount")
    _bool_fields = ("auto_approve", "is_active")

    def __post_init__(self):
        if isinstance(self.department_codes, str):
            self.department_codes = json.loads(self.department_codes or "[]")
        self.department_codes = list(self.department_codes or [])

    def covers(self, amount: Decimal) -> bool:
        """Inclusive band check; a null max is unbounded."""
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


@dataclass
class Invoice(_Record):
    id: str
    company_id: str
    invoice_number: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_tax_id: Optional[str] = None
    invoice_series: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    description: Optional[str] = None
    po_number: Optional[str] = None
    status: str = InvoiceStatus.PENDING.value
    approval_status: str = ApprovalStatus.PENDING.value
    approver_id: Optional[str] = None
    approved_at: Optional[str] = None
    approval_notes: Optional[str] = None
    assigned_approver_id: Optional[str] = None
    approval_level: Optional[int] = None
    debit_account_code: Optional[str] = None
    credit_account_code: Optional[str] = None
    original_file_url: Optional[str] = None
    file_type: Optional[str] = None
    extraction_log_id: Optional[str] = None
    variance_detected: bool = False
    variance_description: Optional[str] = None
    deleted_at: Optional[str] = None
    deleted_by: Optional[str] = None
    deletion_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    _amount_fields = ("total_amount", "tax_amount", "discount_amount")
    _bool_fields = ("variance_detected",)

    @property
    def is_deleted(self) -> bool:
        return self.status == InvoiceStatus.DELETED.value


@dataclass
class AccountingEntry(_Record):
    id: str
    company_id: str
    invoice_id: str
    debit_account_code: Optional[str]
    credit_account_code: Optional[str]
    debit_amount: Decimal
    credit_amount: Decimal
    entry_date: str
    description: Optional[str] = None
    erp_status: str = ErpStatus.PENDING.value
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    _amount_fields = ("debit_amount", "credit_amount")


@dataclass
class Notification(_Record):
    id: str
    company_id: str
    user_id: str
    type: str
    title: str
    message: str
    invoice_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[str] = None
    created_at: Optional[str] = None

    _bool_fields = ("is_read",)
