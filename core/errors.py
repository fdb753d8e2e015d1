"""Error types raised and recorded while crawling.

Fetch errors are never thrown through the crawler: they are attached to the
FetchResult or Resource they belong to. Configuration errors are fatal to the
whole run and surface before anything is fetched.
"""
import ipaddress
from typing import Any, Dict, Optional


class CrawlError(Exception):
    """Base exception for all crawl errors."""

    error_code: str = "CRAWL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serialisable view of the error."""
        data: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
        }
        if self.details:
            data["details"] = self.details
        return data


# ============ Fetch errors (recorded per domain / asset) ============


class FetchError(CrawlError):
    """A single GET (including its redirects) failed."""

    error_code = "FETCH_ERROR"

    def __init__(self, url: str, message: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("url", url)
        super().__init__(message, details=details)
        self.url = url


class FetchConnectError(FetchError):
    """Connection, DNS or protocol level failure."""

    error_code = "CONNECT_ERROR"


class FetchTimeoutError(FetchError):
    """The GET-plus-redirects cycle exceeded the configured timeout."""

    error_code = "TIMEOUT"

    def __init__(self, url: str, timeout: float):
        super().__init__(url, f"request timed out after {timeout:g}s", details={"timeout": timeout})
        self.timeout = timeout


class TooManyRedirectsError(FetchError):
    error_code = "TOO_MANY_REDIRECTS"

    def __init__(self, url: str, limit: int):
        super().__init__(url, f"too many redirects ({limit})", details={"limit": limit})
        self.limit = limit


class OffOriginRedirectError(FetchError):
    """A redirect tried to leave the set of hosts/IPs under test."""

    error_code = "OFF_ORIGIN_REDIRECT"

    def __init__(self, url: str, target: str, reason: str):
        super().__init__(url, reason, details={"target": target})
        self.target = target


class InvalidAddressError(FetchError):
    error_code = "INVALID_ADDRESS"

    def __init__(self, url: str, ip: str):
        super().__init__(url, f"IP address provided is invalid: {ip}", details={"ip": ip})
        self.ip = ip


class InvalidURLError(FetchError):
    error_code = "INVALID_URL"

    def __init__(self, url: str, reason: str = "invalid url"):
        super().__init__(url, f"{reason}: {url}")


class HostnameMismatchError(FetchError):
    """The leaf certificate does not cover the hostname we meant to reach.

    Carries the offending certificate summary and the hostname so callers can
    report exactly what was presented.
    """

    error_code = "TLS_HOSTNAME_MISMATCH"

    def __init__(self, url: str, certificate: Any, host: str):
        self.certificate = certificate
        self.host = host
        super().__init__(url, self._describe(certificate, host), details={"host": host})

    @staticmethod
    def _describe(certificate: Any, host: str) -> str:
        if _is_ip(host):
            if not certificate.ip_addresses:
                return f"x509: cannot validate certificate for {host} because it doesn't contain any IP SANs"
            valid = ", ".join(certificate.ip_addresses)
        elif certificate.dns_names:
            valid = ", ".join(certificate.dns_names)
        else:
            valid = certificate.subject.common_name if certificate.subject else ""
        return f"x509: certificate is valid for {valid}, not {host}"


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


# ============ Non-fetch errors ============


class ParseError(CrawlError):
    """A value (asset reference, manual domain entry) could not be parsed."""

    error_code = "PARSE_ERROR"

    def __init__(self, value: str, reason: str):
        super().__init__(f"{reason}: {value}", details={"value": value})
        self.value = value


class ResolutionError(CrawlError):
    """A hostname did not resolve to any address."""

    error_code = "RESOLUTION_ERROR"

    def __init__(self, host: str, reason: str = "no address records found"):
        super().__init__(f"{reason} for host: {host}", details={"host": host})
        self.host = host


class ConfigurationError(CrawlError):
    """Invalid crawler configuration; fatal to the whole run."""

    error_code = "CONFIGURATION_ERROR"


class PoolError(RuntimeError):
    """Worker pool misuse (programming error)."""


class PoolClosedError(PoolError):
    """Slot()/Free()/Wait() used after the pool finished waiting."""


class CrawlStateError(RuntimeError):
    """crawl() called on a crawler that is not idle."""
