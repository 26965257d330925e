"""
Error taxonomy for the HTTP boundary.
Every APIError is rendered as a JSON envelope: {success: false, error, message?, details?}.
"""
from typing import Any, Dict, List, Optional


class APIError(Exception):
    """Base class for errors that map onto an HTTP status and a stable error string."""
    status_code = 500
    error = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[List[Dict[str, str]]] = None,
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message or error or self.error)
        if error:
            self.error = error
        self.message = message
        self.details = details
        self.extra = extra or {}
        self.headers = headers

    def to_envelope(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "error": self.error}
        if self.message:
            body["message"] = self.message
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class RequestMalformed(APIError):
    status_code = 400
    error = "Validation failed"


class NotFound(APIError):
    status_code = 404
    error = "Not found"


class PayloadTooLarge(APIError):
    status_code = 413
    error = "Payload too large"


class RateLimited(APIError):
    status_code = 429
    error = "Rate limit exceeded"


def field_error(field: str, message: str) -> Dict[str, str]:
    return {"field": field, "message": message}
