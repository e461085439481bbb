"""
Structured logging for Invoiceflow.

Every module logs through ``logging.getLogger(__name__)``; the handler sits
on the ``invoiceflow`` package logger so one switch (USE_JSON_LOGS) turns
the whole service into one-JSON-object-per-line output.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("invoiceflow")

_HANDLER_NAME = "invoiceflow-console"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; ``extra_fields`` are merged at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.funcName and record.funcName != "<module>":
            payload["function"] = f"{record.module}.{record.funcName}:{record.lineno}"
        payload.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """Attach the console handler once; later calls only adjust level and format."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

    handler = next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(_HANDLER_NAME)
        logger.addHandler(handler)

    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    return logger


def _emit(level: int, message: str, fields: Dict[str, Any], exception: Optional[BaseException] = None):
    exc_info = (type(exception), exception, exception.__traceback__) if exception else None
    logger.log(level, message, exc_info=exc_info, extra={"extra_fields": fields})


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[str] = None,
    company_id: Optional[str] = None,
):
    """One line per HTTP request; 5xx responses are logged at error level."""
    fields: Dict[str, Any] = {
        "type": "http_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 1),
    }
    if user_id:
        fields["user_id"] = user_id
    if company_id:
        fields["company_id"] = company_id
    level = logging.ERROR if status_code >= 500 else logging.INFO
    _emit(level, f"{method} {path} {status_code} {duration_ms:.1f}ms", fields)


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[BaseException] = None,
):
    """Error with a machine-readable type and the request/workflow context."""
    fields: Dict[str, Any] = {"type": "error", "error_type": error_type}
    fields.update(context or {})
    _emit(logging.ERROR, message, fields, exception)


configure_logging()
