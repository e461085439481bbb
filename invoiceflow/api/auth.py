"""Login and session endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from invoiceflow.api.deps import get_container
from invoiceflow.core.auth import CurrentUser, LoginRequest, authenticate, get_current_user, issue_session
from invoiceflow.core.models import Company, User
from invoiceflow.di.container import ServiceContainer


router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
def login(request: LoginRequest, container: ServiceContainer = Depends(get_container)):
    user = authenticate(container.db, request.email, request.password)
    company = container.companies().get_company(user["company_id"])
    return {
        **issue_session(user),
        "user": User.from_row(user).to_dict(),
        "company": company.to_dict(),
    }


@router.get("/me")
def me(
    user: CurrentUser = Depends(get_current_user),
    container: ServiceContainer = Depends(get_container),
):
    return {
        "user": User.from_row(container.db.get_user(user.user_id)).to_dict(),
        "company": container.companies().get_company(user.company_id).to_dict(),
    }
