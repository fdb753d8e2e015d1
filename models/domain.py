from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

import httpx


@dataclass(frozen=True)
class Domain:
    """A URL under test, with an optional IP to connect to instead of resolving it."""
    url: str
    ip: str = ""

    @property
    def host(self) -> str:
        """The URL authority (host, plus port when it is not the scheme default)."""
        return host_of(httpx.URL(self.url))

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "ip": self.ip}

    def __str__(self) -> str:
        return f"<[Domain] url:{self.url!r} ip:{self.ip!r}>"


def host_of(url: httpx.URL) -> str:
    """Return the authority used to key the IP map: host, or host:port for non-default ports."""
    return url.netloc.decode("ascii")


def strip_duplicates(domains: Iterable[Domain]) -> List[Domain]:
    """Drop domains sharing the same (URL, IP) pair, keeping first-seen order."""
    seen = set()
    unique: List[Domain] = []
    for domain in domains:
        key = (str(domain.url), domain.ip)
        if key in seen:
            continue
        seen.add(key)
        unique.append(domain)
    return unique
