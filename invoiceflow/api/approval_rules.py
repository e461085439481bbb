"""Approval rule administration endpoints."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query

from invoiceflow.api.deps import get_rule_service
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.approval_rules import ApprovalRuleService


router = APIRouter(prefix="/api/approval-rules", tags=["approval-rules"])


@router.get("")
def list_rules(
    include_inactive: bool = Query(default=False),
    user: CurrentUser = Depends(get_current_user),
    rules: ApprovalRuleService = Depends(get_rule_service),
):
    return rules.list_rules(user, include_inactive=include_inactive)


@router.post("", status_code=201)
def create_rule(
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    rules: ApprovalRuleService = Depends(get_rule_service),
):
    return rules.create_rule(user, payload)


@router.get("/{rule_id}")
def get_rule(
    rule_id: str,
    user: CurrentUser = Depends(get_current_user),
    rules: ApprovalRuleService = Depends(get_rule_service),
):
    return {"rule": rules.get_rule(user, rule_id)}


@router.put("/{rule_id}")
def update_rule(
    rule_id: str,
    payload: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(get_current_user),
    rules: ApprovalRuleService = Depends(get_rule_service),
):
    return rules.update_rule(user, rule_id, payload)


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: str,
    user: CurrentUser = Depends(get_current_user),
    rules: ApprovalRuleService = Depends(get_rule_service),
):
    return rules.delete_rule(user, rule_id)
