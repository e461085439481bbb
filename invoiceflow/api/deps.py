"""FastAPI dependencies for Invoiceflow services."""
from fastapi import Request

from invoiceflow.di.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_lifecycle(request: Request):
    return get_container(request).lifecycle()


def get_intake(request: Request):
    return get_container(request).intake()


def get_rule_service(request: Request):
    return get_container(request).rules()


def get_company_service(request: Request):
    return get_container(request).companies()


def get_user_service(request: Request):
    return get_container(request).users()


def get_notification_service(request: Request):
    return get_container(request).notifications()


def get_dashboard_service(request: Request):
    return get_container(request).dashboard()
