"""
Write commands accepted by the workflow services.

Each mutation has its own model listing exactly the fields it may touch;
unknown fields are rejected rather than merged into the record.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from invoiceflow.core.models import Role
from invoiceflow.services.errors import ValidationError


CommandT = TypeVar("CommandT", bound=BaseModel)


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def parse_command(model: Type[CommandT], payload: Any) -> CommandT:
    """Accept a model instance or a plain mapping; report bad input as ValidationError."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload or {})
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            context={"errors": errors},
        )


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------

class InvoiceCreate(_Command):
    invoice_number: str = Field(min_length=1)
    supplier_name: str = Field(min_length=1)
    total_amount: Decimal = Field(ge=0)
    supplier_tax_id: Optional[str] = None
    invoice_series: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    po_number: Optional[str] = None
    debit_account_code: Optional[str] = None
    credit_account_code: Optional[str] = None


class InvoiceEdit(_Command):
    """Fields editable while an invoice awaits approval."""
    supplier_name: Optional[str] = Field(default=None, min_length=1)
    supplier_tax_id: Optional[str] = None
    invoice_number: Optional[str] = Field(default=None, min_length=1)
    invoice_series: Optional[str] = None
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_amount: Optional[Decimal] = Field(default=None, ge=0)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    description: Optional[str] = None
    po_number: Optional[str] = None
    debit_account_code: Optional[str] = None
    credit_account_code: Optional[str] = None


EDITABLE_INVOICE_FIELDS = tuple(InvoiceEdit.model_fields.keys())


class ApproveCommand(_Command):
    notes: Optional[str] = None
    debit_account_code: Optional[str] = None
    credit_account_code: Optional[str] = None


class RejectCommand(_Command):
    # Emptiness is checked by the engine after trimming
    reason: str = ""


class DeleteCommand(_Command):
    reason: str = ""


# ----------------------------------------------------------------------
# Approval rules
# ----------------------------------------------------------------------

class ApprovalRuleCreate(_Command):
    approval_level: int = Field(ge=1)
    min_amount: Decimal = Field(ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    auto_approve: bool = False
    approver_id: Optional[str] = None
    escalation_approver_id: Optional[str] = None
    department_codes: List[str] = Field(default_factory=list)
    approval_deadline_hours: int = Field(default=48, ge=1)
    priority: int = Field(default=10, ge=0)


class ApprovalRuleUpdate(_Command):
    approval_level: Optional[int] = Field(default=None, ge=1)
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    auto_approve: Optional[bool] = None
    approver_id: Optional[str] = None
    escalation_approver_id: Optional[str] = None
    department_codes: Optional[List[str]] = None
    approval_deadline_hours: Optional[int] = Field(default=None, ge=1)
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


# ----------------------------------------------------------------------
# Company and users
# ----------------------------------------------------------------------

class CompanyConfigUpdate(_Command):
    auto_approve_limit: Optional[Decimal] = Field(default=None, ge=0)
    default_debit_account: Optional[str] = None
    default_credit_account: Optional[str] = None


class UserCreate(_Command):
    name: str = Field(min_length=1)
    email: EmailStr
    role: Role = Role.USER
    department: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=8)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class UserUpdate(_Command):
    name: Optional[str] = Field(default=None, min_length=1)
    role: Optional[Role] = None
    department: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=8)


def changes(command: BaseModel) -> Dict[str, Any]:
    """Only the fields the caller actually sent."""
    return command.model_dump(exclude_unset=True)
