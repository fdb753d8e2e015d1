"""Host -> IP map for a crawl, and local/remote classification of hosts.

Every configured domain contributes three keys pointing at its override IP:
the host as given, the host without "www." and the host with "www.".
An empty IP means "use normal DNS" for that host.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, Iterator, Optional

import dns.exception

from core.cache import MISSING, LookupCache
from core.errors import ResolutionError
from fetch.dns_client import lookup_ip, strip_port
from fetch.tls_client import parse_ip
from models.domain import Domain

logger = logging.getLogger(__name__)

# host -> first resolved address; raises on failure
Resolver = Callable[[str], str]


class IPMap:
    """Read-only (after build) mapping of configured hosts to their override IPs."""

    def __init__(self, entries: Optional[Dict[str, str]] = None, resolver: Optional[Resolver] = None):
        self._entries: Dict[str, str] = dict(entries or {})
        self._resolver: Resolver = resolver or lookup_ip
        self._lookups = LookupCache()

    @classmethod
    def build(cls, domains: Iterable[Domain], resolver: Optional[Resolver] = None) -> "IPMap":
        entries: Dict[str, str] = {}
        for domain in domains:
            host = domain.host
            bare = host[len("www."):] if host.startswith("www.") else host
            entries[host] = domain.ip
            entries[bare] = domain.ip
            entries["www." + bare] = domain.ip
        logger.debug(f"built ip map with {len(entries)} host entries")
        return cls(entries, resolver=resolver)

    def __contains__(self, host: object) -> bool:
        return host in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, host: str) -> Optional[str]:
        """Configured IP for host ("" when configured without one), None if not configured."""
        return self._entries.get(host)

    def override_for(self, host: str) -> Optional[str]:
        """The IP to connect to instead of resolving host, if one was configured."""
        return self._entries.get(host) or None

    def has_address(self, address: str) -> bool:
        """True when address is the override IP of any configured host."""
        return bool(address) and address in self._entries.values()

    async def resolve(self, host: str) -> Optional[str]:
        """Resolve host through the resolver, caching the outcome. None on failure."""
        literal = parse_ip(strip_port(host))
        if literal is not None:
            return str(literal)

        cached = self._lookups.get(host)
        if cached is not None:
            return None if cached is MISSING else cached

        loop = asyncio.get_running_loop()
        try:
            address = await loop.run_in_executor(None, self._resolver, host)
        except (ResolutionError, dns.exception.DNSException, OSError) as e:
            logger.debug(f"unable to resolve {host}: {e}")
            self._lookups.set(host, MISSING)
            return None

        self._lookups.set(host, address)
        return address

    async def is_remote(self, host: str) -> bool:
        """Decide whether host should be treated as a third party.

        Hosts that are themselves configured count as remote here: they are
        crawled as domains of their own. A host whose DNS answer is one of the
        configured IPs is local (co-located). Lookup failures count as local so
        the real connection error surfaces when the asset is fetched.
        """
        if host in self._entries:
            return True

        address = await self.resolve(host)
        if address is None:
            return False

        return not self.has_address(address)
