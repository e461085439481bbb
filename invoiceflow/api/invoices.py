"""Invoice endpoints: intake, routing, decisions, edits and reads."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile

from invoiceflow.api.deps import get_intake, get_lifecycle
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.intake import IntakeService
from invoiceflow.services.invoice_lifecycle import InvoiceLifecycle


router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.get("")
def list_invoices(
    status: Optional[str] = Query(default=None),
    approval_status: Optional[str] = Query(default=None),
    date_from: Optional[str] = Query(default=None),
    date_to: Optional[str] = Query(default=None),
    supplier_name: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.list_invoices(
        user,
        status=status,
        approval_status=approval_status,
        date_from=date_from,
        date_to=date_to,
        supplier_name=supplier_name,
        page=page,
        limit=limit,
    )


@router.post("", status_code=201)
def create_invoice(
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.create(user, payload).to_dict()


@router.post("/upload", status_code=201)
async def upload_invoice(
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
    intake: IntakeService = Depends(get_intake),
):
    data = await file.read()
    return await intake.upload(user, file.filename or "", file.content_type, data)


@router.get("/{invoice_id}")
def get_invoice(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.get(user, invoice_id)


@router.put("/{invoice_id}")
def update_invoice(
    invoice_id: str,
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return {"invoice": lifecycle.edit(user, invoice_id, payload).to_dict()}


@router.delete("/{invoice_id}")
def delete_invoice(
    invoice_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return {"invoice": lifecycle.soft_delete(user, invoice_id, payload).to_dict()}


@router.post("/{invoice_id}/validate")
def validate_invoice(
    invoice_id: str,
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.validate(user, invoice_id).to_dict()


@router.post("/{invoice_id}/approve")
def approve_invoice(
    invoice_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.approve(user, invoice_id, payload).to_dict()


@router.post("/{invoice_id}/reject")
def reject_invoice(
    invoice_id: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    user: CurrentUser = Depends(get_current_user),
    lifecycle: InvoiceLifecycle = Depends(get_lifecycle),
):
    return lifecycle.reject(user, invoice_id, payload).to_dict()
