"""
Shared error handling for the Recipe Access Gateway.

Every exception raised by a pipeline stage maps onto one stable HTTP
status and JSON body. Internal details (store hosts, stack traces) stay
in ``details`` for logging and are never rendered to clients.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    code: str
    message: str


class AccessLayerException(Exception):
    """Base exception for gateway services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        """Convert to the client-facing JSON body."""
        return ErrorResponse(code=self.code, message=self.message).model_dump()

    def headers(self) -> Dict[str, str]:
        """Extra response headers for this error."""
        return {}


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class SubscriptionRequiredError(AccessLayerException):
    """Caller's access tier does not include the requested feature."""

    status_code = 403

    def __init__(self, message: str = "Premium subscription required", details: Optional[Dict[str, Any]] = None):
        super().__init__("SUBSCRIPTION_REQUIRED", message, details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests, please try again later.",
                 details: Optional[Dict[str, Any]] = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__("RATE_LIMIT_ERROR", message, details)

    def to_response(self) -> Dict[str, Any]:
        return {
            "status": "error",
            "code": self.code,
            "message": self.message,
            "retryAfter": self.retry_after,
        }

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class BackingStoreError(ServiceError):
    """Key-value store or account store could not be reached."""

    def __init__(self, component: str, message: str = "Service temporarily unavailable",
                 details: Optional[Dict[str, Any]] = None):
        self.component = component
        super().__init__(message, details)
        self.code = "BACKING_STORE_ERROR"


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
