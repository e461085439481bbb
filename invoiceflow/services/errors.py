"""
Invoiceflow Error Handling

Typed errors with user-facing messages and debugging context. Every
workflow failure is raised as one of these and translated to an HTTP
response by the app's exception handlers.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors (400s)
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Auth errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # State errors
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Collaborator errors (store, extraction webhook, object storage)
    DEPENDENCY_ERROR = "DEPENDENCY_ERROR"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class InvoiceflowError(Exception):
    """Base exception with structured error info."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        if code is not None:
            self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(InvoiceflowError):
    """Malformed or semantically invalid input."""
    code = ErrorCode.VALIDATION_ERROR


class UnauthorizedError(InvoiceflowError):
    """No valid session."""
    code = ErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Authentication required", **kwargs):
        super().__init__(message, **kwargs)


class ForbiddenError(InvoiceflowError):
    """Role insufficient or the record belongs to another company."""
    code = ErrorCode.FORBIDDEN

    def __init__(self, message: str = "Permission denied", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(InvoiceflowError):
    """Referenced record does not exist."""
    code = ErrorCode.NOT_FOUND

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        context = {"resource": resource}
        if resource_id:
            context["id"] = resource_id
        super().__init__(f"{resource} not found", context=context)


class ConflictError(InvoiceflowError):
    """State precondition failed: already decided, already deleted, duplicate key."""
    code = ErrorCode.CONFLICT


class DependencyError(InvoiceflowError):
    """An external collaborator (store, extraction, storage) failed."""
    code = ErrorCode.DEPENDENCY_ERROR

    def __init__(self, service: str, detail: str):
        super().__init__(
            f"{service} unavailable",
            detail=detail,
            context={"service": service},
        )


STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.DEPENDENCY_ERROR: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_code_for(error: InvoiceflowError) -> int:
    return STATUS_MAP.get(error.code, 500)

