from invoiceflow.api.auth import router as auth_router
from invoiceflow.api.invoices import router as invoices_router
from invoiceflow.api.approval_rules import router as approval_rules_router
from invoiceflow.api.company import router as company_router
from invoiceflow.api.users import router as users_router
from invoiceflow.api.notifications import router as notifications_router
from invoiceflow.api.dashboard import router as dashboard_router

ROUTERS = [
    auth_router,
    invoices_router,
    approval_rules_router,
    company_router,
    users_router,
    notifications_router,
    dashboard_router,
]
