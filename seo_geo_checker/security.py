"""
Request hardening helpers used by the HTTP boundary.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from starlette.requests import Request

from seo_geo_checker.errors import PayloadTooLarge, RequestMalformed, field_error

logger = logging.getLogger(__name__)

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; "
        "font-src 'self'; "
        "connect-src 'self'; "
        "frame-ancestors 'none';"
    ),
}
# Headers that identify the server software
IDENTIFYING_HEADERS = ("server", "x-powered-by")

FORBIDDEN_KEYS = frozenset({"__proto__", "constructor", "prototype"})
SAFE_FILENAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,254}$")


def strip_forbidden_keys(value: Any) -> Any:
    """Recursively drop prototype-pollution keys from decoded JSON."""
    if isinstance(value, dict):
        return {k: strip_forbidden_keys(v) for k, v in value.items() if k not in FORBIDDEN_KEYS}
    if isinstance(value, list):
        return [strip_forbidden_keys(item) for item in value]
    return value


def is_json_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def content_length_exceeds(request: Request, max_bytes: int) -> bool:
    raw = request.headers.get("content-length")
    if raw is None:
        return False
    try:
        return int(raw) > max_bytes
    except ValueError:
        return False


async def read_json_body(request: Request, max_bytes: int) -> Dict[str, Any]:
    """
    Read and decode a JSON object body.

    Raises:
        RequestMalformed: Wrong content type, malformed JSON or a non-object body.
        PayloadTooLarge: Body larger than ``max_bytes``.
    """
    if not is_json_content_type(request.headers.get("content-type")):
        raise RequestMalformed(
            "Content-Type must be application/json",
            error="Invalid content type",
        )

    body = await request.body()
    if len(body) > max_bytes:
        raise PayloadTooLarge(f"Request size exceeds maximum allowed size of {max_bytes // (1024 * 1024)}MB")

    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RequestMalformed("Request body is not valid JSON", error="Malformed JSON")

    if not isinstance(data, dict):
        raise RequestMalformed(details=[field_error("body", "Request body must be a JSON object")])
    return strip_forbidden_keys(data)


def check_filename(filename: str) -> str:
    """Reject report filenames that could escape the reports directory."""
    if (
        not filename
        or ".." in filename
        or "/" in filename
        or "\\" in filename
        or not SAFE_FILENAME.match(filename)
    ):
        raise RequestMalformed(details=[field_error("filename", "Invalid filename")])
    return filename


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"
