"""Company policy endpoints."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from invoiceflow.api.deps import get_company_service
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.companies import CompanyService


router = APIRouter(prefix="/api/company", tags=["company"])


@router.get("/config")
def get_config(
    user: CurrentUser = Depends(get_current_user),
    companies: CompanyService = Depends(get_company_service),
):
    return {"company": companies.get_config(user)}


@router.put("/config")
def update_config(
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    companies: CompanyService = Depends(get_company_service),
):
    return {"company": companies.update_config(user, payload)}
