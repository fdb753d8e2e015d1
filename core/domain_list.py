"""Parsing of manually supplied domain lists (--domains / positional args).

Each whitespace separated item is one of:

    DOMAIN            example.com
    DOMAIN:IP         example.com:1.2.3.4
    DOMAIN:PORT       example.com:443
    DOMAIN:IP:PORT    example.com:1.2.3.4:8080

where DOMAIN may also be a full http(s) URL.
"""
import logging
import re
from typing import List

import httpx

from core.errors import ParseError
from models.domain import Domain

logger = logging.getLogger(__name__)

SSL_PORT = "443"
STD_PORT = "80"

_MANUAL_DOMAIN = re.compile(
    r"^(?P<domain>(?:[A-Za-z0-9_.-]{2,350}\.[A-Za-z0-9]{2,63})"
    r"|https?://[A-Za-z0-9_.-]{2,350}\.[A-Za-z0-9]{2,63}[!-~]+?)"
    r"(?::(?P<ip>\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}))?"
    r"(?::(?P<port>\d{2,5}))?$"
)


def domain_url(host: str, port: str = "") -> str:
    """
    Builds the URL to crawl for a host (or URL) and optional port.

    Port 443 selects https and 80 selects http, both dropped from the
    authority; any other port is kept. Bare hosts default to http.

    Raises:
        ParseError: when the port or resulting URL is invalid
    """
    if port and (not port.isdigit() or str(int(port)) != port or not 0 < int(port) < 65536):
        raise ParseError(f"{host}:{port}", "the host/port pair is invalid")

    if host.startswith(("http://", "https://")):
        try:
            url = httpx.URL(host)
        except httpx.InvalidURL as e:
            raise ParseError(host, f"the host/port pair is invalid ({e})") from e
    else:
        scheme = "https" if port == SSL_PORT else "http"
        try:
            url = httpx.URL(f"{scheme}://{host}/")
        except httpx.InvalidURL as e:
            raise ParseError(host, f"the host/port pair is invalid ({e})") from e

    if port == SSL_PORT:
        url = url.copy_with(scheme="https", port=None)
    elif port == STD_PORT:
        url = url.copy_with(scheme="http", port=None)
    elif port:
        url = url.copy_with(port=int(port))

    if not url.host:
        raise ParseError(host, "the host/port pair is invalid")

    return str(url)


def parse_domain_list(text: str) -> List[Domain]:
    """
    Parses a manual domain list into Domains, in input order.

    Raises:
        ParseError: on the first entry that does not match the accepted forms
    """
    domains: List[Domain] = []
    for item in text.split():
        match = _MANUAL_DOMAIN.match(item)
        if match is None:
            raise ParseError(item, "invalid domain manually provided")

        url = domain_url(match.group("domain"), match.group("port") or "")
        domains.append(Domain(url=url, ip=match.group("ip") or ""))

    logger.debug(f"parsed {len(domains)} domains from manual list")
    return domains
