"""User management endpoints."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from invoiceflow.api.deps import get_user_service
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.users import UserService


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
def list_users(
    user: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return {"users": users.list_users(user)}


@router.post("", status_code=201)
def create_user(
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return {"user": users.create_user(user, payload)}


@router.get("/{user_id}")
def get_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return {"user": users.get_user(user, user_id)}


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return {"user": users.update_user(user, user_id, payload)}


@router.delete("/{user_id}")
def deactivate_user(
    user_id: str,
    user: CurrentUser = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    return users.deactivate_user(user, user_id)
