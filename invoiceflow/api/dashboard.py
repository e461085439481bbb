"""Dashboard KPI endpoint."""
from fastapi import APIRouter, Depends

from invoiceflow.api.deps import get_dashboard_service
from invoiceflow.core.auth import CurrentUser, get_current_user
from invoiceflow.services.dashboard import DashboardService


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/metrics")
def dashboard_metrics(
    user: CurrentUser = Depends(get_current_user),
    dashboard: DashboardService = Depends(get_dashboard_service),
):
    return dashboard.metrics(user)
