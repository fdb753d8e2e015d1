import dns.exception
import dns.resolver
import logging
from typing import Optional

from core.errors import ResolutionError
from fetch.tls_client import parse_ip

# Default DNS timeout (in seconds)
DEFAULT_DNS_TIMEOUT = 5.0

# Record types tried in order; the first address found wins
ADDRESS_RECORD_TYPES = ("A", "AAAA")


def lookup_ip(hostname: str, timeout: Optional[float] = None) -> str:
    """
    Resolves a hostname to its first address record.

    Args:
        hostname: The hostname to resolve (a trailing ":port" is ignored)
        timeout: DNS query timeout in seconds (default: 5s)

    Returns:
        The first A record, or the first AAAA record if there is no A record

    Raises:
        ResolutionError: when no address record exists or the query fails
    """
    logger = logging.getLogger(__name__)
    hostname = strip_port(hostname)
    literal = parse_ip(hostname)
    if literal is not None:
        # IP literals are their own answer
        return str(literal)

    logger.debug(f"DNS address lookup for {hostname}")

    resolver = dns.resolver.Resolver()
    resolver.lifetime = timeout or DEFAULT_DNS_TIMEOUT

    for record_type in ADDRESS_RECORD_TYPES:
        try:
            answers = resolver.resolve(hostname, record_type)
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN, dns.resolver.NoNameservers, dns.exception.Timeout) as e:
            logger.debug(f"DNS {record_type} {hostname}: no records ({type(e).__name__})")
            continue

        for answer in answers:
            address = answer.to_text()
            logger.debug(f"DNS {record_type} {hostname}: {address}")
            return address

    raise ResolutionError(hostname)


def strip_port(host: str) -> str:
    if host.startswith("["):
        return host[1:host.index("]")] if "]" in host else host[1:]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host
