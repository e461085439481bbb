"""
Invoiceflow - FastAPI Backend

Invoice intake, approval routing and audit.

Run Instructions:
-----------------
1. Install the package:
   pip install -e ".[test]"

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health
"""
import time
import uuid
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from invoiceflow.api import ROUTERS
from invoiceflow.core.database import InvoiceflowDB
from invoiceflow.di.container import ServiceContainer
from invoiceflow.services.errors import ErrorCode, InvoiceflowError, status_code_for
from invoiceflow.services.logging import log_request, log_error, logger
from invoiceflow.services.metrics import record_request, record_error, get_metrics


def _route_template(request: Request) -> str:
    """Matched route path ('/api/invoices/{invoice_id}'), or the raw path when nothing matched."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and record metrics."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            record_error("exception")
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise

        duration_ms = (time.time() - start_time) * 1000
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        record_request(request.method, _route_template(request), response.status_code, duration_ms)
        if response.status_code >= 400:
            record_error(f"http_{response.status_code}")
        return response


async def invoiceflow_exception_handler(request: Request, exc: InvoiceflowError):
    """Structured response for every workflow error."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        log_error(exc.code.value, exc.message, {"path": request.url.path, **exc.context})
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.code.value}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": "Invalid request",
            "context": {"errors": errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Unexpected failures are logged in full and answered generically."""
    error_id = uuid.uuid4().hex[:12]
    log_error(
        "unhandled_exception",
        f"Unhandled error {error_id} on {request.method} {request.url.path}",
        {"error_id": error_id},
        exception=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": ErrorCode.INTERNAL_ERROR.value,
            "error_id": error_id,
            "message": "An unexpected error occurred. Please try again or contact support.",
        },
    )


def create_app(db: Optional[InvoiceflowDB] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the API around one store handle (from the environment unless given)."""
    if container is None:
        container = ServiceContainer(db or InvoiceflowDB.from_env())

    app = FastAPI(
        title="Invoiceflow API",
        description="Supplier invoice intake, approval routing and audit trail.",
        version="1.0.0",
    )
    app.state.container = container

    for router in ROUTERS:
        app.include_router(router)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InvoiceflowError, invoiceflow_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/health", tags=["System"], summary="Health Check")
    def health():
        """Liveness plus a store round-trip."""
        try:
            container.db.initialize()
            database = "ok"
        except InvoiceflowError as exc:
            database = f"error: {exc.detail or exc.message}"
        return {
            "status": "healthy" if database == "ok" else "degraded",
            "database": database,
            "backend": "postgres" if container.db.use_postgres else "sqlite",
            "version": "v1.0.0",
        }

    @app.get("/metrics", tags=["System"], summary="Get Metrics")
    def metrics_endpoint():
        return get_metrics()

    return app


app = create_app()
