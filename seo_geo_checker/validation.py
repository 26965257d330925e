"""
URL normalization and validation for the SEO & GEO Health Checker.
"""
import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from urllib.parse import urlsplit

import httpx

from seo_geo_checker.models import UrlIssue, UrlValidationResult

logger = logging.getLogger(__name__)

SCHEME_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
# Characters that can never appear in a URL we are willing to analyse
UNSAFE_CHARACTERS = re.compile(r"[<>\"'`\\{}|^\s\x00-\x1f\x7f]")
HOST_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$", re.IGNORECASE)
TLD_PATTERN = re.compile(r"^(xn--[a-z0-9-]+|[a-z]{2,63})$", re.IGNORECASE)

SUSPICIOUS_TLDS: Set[str] = {"tk", "ml", "ga", "cf"}

ACCESSIBILITY_TIMEOUT = 5.0
USER_AGENT = "SEO-GEO-Health-Checker/1.0"


class InvalidURLError(ValueError):
    """Raised when a string cannot be interpreted as an http(s) URL with a host."""
    pass


def normalize_url(raw: str) -> str:
    """Prefix ``https://`` when no http(s) scheme is present."""
    if SCHEME_PATTERN.match(raw):
        return raw
    return f"https://{raw}"


def _is_ipv4(hostname: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(hostname), ipaddress.IPv4Address)
    except ValueError:
        return False


def _is_plausible_host(hostname: str) -> bool:
    if hostname == "localhost" or _is_ipv4(hostname):
        return True
    labels = hostname.rstrip(".").split(".")
    if len(labels) < 2:
        return False
    if not all(HOST_LABEL.match(label) for label in labels):
        return False
    return bool(TLD_PATTERN.match(labels[-1]))


def parse_url(raw: str) -> Tuple[str, str]:
    """
    Normalize ``raw`` and check that it names a plausible host.

    Returns:
        Tuple of (normalized URL, lowercase hostname)

    Raises:
        InvalidURLError: If the value cannot be interpreted as a URL.
    """
    if not raw or UNSAFE_CHARACTERS.search(raw):
        raise InvalidURLError("URL contains characters that are not allowed")

    normalized = normalize_url(raw)
    parts = urlsplit(normalized)
    if parts.username or parts.password:
        raise InvalidURLError("URLs with embedded credentials are not allowed")

    hostname = (parts.hostname or "").lower()
    if not hostname:
        raise InvalidURLError("URL has no host")
    try:
        parts.port
    except ValueError:
        raise InvalidURLError("URL has an invalid port")

    if not _is_plausible_host(hostname):
        raise InvalidURLError("URL host is not a valid domain name")
    return normalized, hostname


def is_private_or_localhost(hostname: str) -> bool:
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def is_suspicious_domain(hostname: str) -> bool:
    if _is_ipv4(hostname):
        return True
    return hostname.rsplit(".", 1)[-1] in SUSPICIOUS_TLDS


class URLValidator:
    """
    Validates URL lists submitted for analysis.

    All URLs of one request must belong to the same domain. Individual bad
    URLs are reported in the result rather than raised. Raw input that
    failed validation is never copied into the result.

    Attributes:
        max_urls: Maximum number of URLs accepted in one request
    """

    def __init__(self, max_urls: int = 10):
        self.max_urls = max_urls

    def normalize_domain(self, url: str) -> str:
        """Extract the hostname of ``url`` without a leading ``www.``."""
        hostname = (urlsplit(normalize_url(url)).hostname or "").lower()
        if not hostname:
            raise InvalidURLError("Cannot extract domain from URL")
        if hostname.startswith("www."):
            hostname = hostname[4:]
        return hostname

    def validate_urls(self, urls: Sequence[str]) -> UrlValidationResult:
        errors: List[UrlIssue] = []
        warnings: List[UrlIssue] = []
        normalized_urls: List[str] = []

        if not urls:
            return UrlValidationResult(
                valid=False,
                errors=[UrlIssue(field="urls", message="No URLs provided", code="EMPTY_URL_LIST")],
            )

        if len(urls) > self.max_urls:
            errors.append(UrlIssue(
                field="urls",
                message=f"Too many URLs provided. Maximum allowed: {self.max_urls}, provided: {len(urls)}",
                code="TOO_MANY_URLS",
            ))

        base_domain: Optional[str] = None
        seen: Set[str] = set()
        for index, raw in enumerate(urls):
            field = f"urls[{index}]"
            try:
                normalized, hostname = parse_url(raw)
            except InvalidURLError as e:
                errors.append(UrlIssue(field=field, message=f"Invalid URL format: {e}", code="INVALID_URL_FORMAT"))
                continue

            key = normalized.lower()
            if key in seen:
                errors.append(UrlIssue(field=field, message="Duplicate URL provided", code="DUPLICATE_URL"))
                continue
            seen.add(key)

            if is_private_or_localhost(hostname):
                errors.append(UrlIssue(
                    field=field,
                    message="Private/localhost URLs are not allowed for security reasons",
                    code="PRIVATE_URL_BLOCKED",
                ))
                continue
            if is_suspicious_domain(hostname):
                errors.append(UrlIssue(
                    field=field,
                    message="Domain appears to be suspicious or blocked",
                    code="SUSPICIOUS_DOMAIN",
                ))
                continue

            domain = self.normalize_domain(normalized)
            if base_domain is None:
                base_domain = domain
            elif domain != base_domain:
                errors.append(UrlIssue(
                    field=field,
                    message=f"URL domain '{domain}' does not match base domain '{base_domain}'",
                    code="DOMAIN_MISMATCH",
                ))
                continue

            if normalized.lower().startswith("http://"):
                warnings.append(UrlIssue(
                    field=field,
                    message="HTTP URLs may have limited analysis capabilities. HTTPS recommended.",
                    code="HTTP_WARNING",
                ))
            normalized_urls.append(normalized)

        return UrlValidationResult(
            valid=not errors,
            normalized_urls=normalized_urls,
            errors=errors,
            warnings=warnings,
            domain=base_domain,
            url_count=len(normalized_urls),
        )

    def check_domain_consistency(self, urls: Sequence[str]) -> bool:
        """Return True when every URL shares the first URL's domain."""
        if len(urls) <= 1:
            return True
        try:
            domains = [self.normalize_domain(url) for url in urls]
        except ValueError:
            return False
        return all(domain == domains[0] for domain in domains)

    async def check_accessibility(self, url: str) -> Dict[str, Any]:
        """
        Issue a HEAD request against ``url``.

        Returns:
            Dict with ``accessible``, ``statusCode`` and ``error`` keys
        """
        try:
            async with httpx.AsyncClient(timeout=ACCESSIBILITY_TIMEOUT, follow_redirects=True) as client:
                response = await client.head(url, headers={"User-Agent": USER_AGENT})
                return {
                    "accessible": response.status_code < 400,
                    "statusCode": response.status_code,
                    "error": None,
                }
        except httpx.TimeoutException:
            logger.warning(f"Accessibility check timed out for {url}")
            return {"accessible": False, "statusCode": None, "error": "Request timed out"}
        except httpx.RequestError as e:
            logger.warning(f"Network error during accessibility check for {url}: {e}")
            return {"accessible": False, "statusCode": None, "error": "Network error"}
