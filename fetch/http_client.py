import asyncio
import httpx
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional, Tuple

from core.errors import (
    FetchConnectError,
    FetchTimeoutError,
    InvalidAddressError,
    InvalidURLError,
    OffOriginRedirectError,
    TooManyRedirectsError,
)
from core.ipmap import IPMap
from core.timer import Timer, TimerResult
from fetch.tls_client import build_ssl_context, parse_ip, summarize_session, verify_hostname
from models.domain import host_of
from models.tls import TLSSummary

# Default timeout configuration (in seconds)
DEFAULT_TIMEOUT = 10.0
DEFAULT_CONNECT_TIMEOUT = 5.0

MAX_REDIRECTS = 3
REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})

# Some servers deny requests by user agent (or the lack of one)
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/51.0.2704.79 Safari/537.36"
)


@dataclass
class FetchedResponse:
    """A response whose body has not been read yet.

    `url` is the effective URL after redirects, with the real hostname even
    when the connection went to an override IP.
    """
    response: httpx.Response
    url: httpx.URL
    time: TimerResult
    tls: Optional[TLSSummary]
    deadline: Optional[float] = None  # loop time by which the body must be read


class FetchClient:
    """
    HTTP GET client that can send a request to an override IP.

    For hosts present in the IP map with an IP, the connection goes to that IP
    while the Host header and TLS SNI keep the real hostname. Anything else is
    fetched with normal DNS.
    """

    def __init__(
        self,
        ipmap: IPMap,
        timeout: Optional[float] = None,
        allow_insecure: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ipmap = ipmap
        self.timeout = timeout or DEFAULT_TIMEOUT
        self.allow_insecure = allow_insecure
        self.transport = transport
        self._ssl_context = build_ssl_context(allow_insecure)

    @asynccontextmanager
    async def get(self, url: str) -> AsyncIterator[FetchedResponse]:
        """
        Performs one GET (following at most MAX_REDIRECTS redirects).

        Usage:
            async with client.get("https://example.com/") as fetched:
                body = await fetched.response.aread()

        Raises:
            FetchError subclasses for every failure of the request/redirect cycle
        """
        logger = logging.getLogger(__name__)
        origin = self._parse(url)

        timeout_config = httpx.Timeout(
            timeout=self.timeout,
            connect=min(DEFAULT_CONNECT_TIMEOUT, self.timeout),
        )
        # no keep-alive: a pooled connection would carry the SNI/certificate of another host
        async with httpx.AsyncClient(
            timeout=timeout_config,
            follow_redirects=False,
            verify=self._ssl_context,
            limits=httpx.Limits(max_keepalive_connections=0),
            transport=self.transport,
        ) as client:
            loop = asyncio.get_running_loop()
            deadline = loop.time() + self.timeout
            timer = Timer()
            try:
                response, effective, tls = await asyncio.wait_for(
                    self._follow(client, origin), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"HTTP timeout for {url} after {self.timeout}s")
                raise FetchTimeoutError(url, self.timeout) from None
            except httpx.TimeoutException as e:
                logger.warning(f"HTTP timeout for {url}: {e}")
                raise FetchTimeoutError(url, self.timeout) from e
            except httpx.HTTPError as e:
                logger.warning(f"HTTP request error for {url}: {e!r}")
                raise FetchConnectError(url, str(e) or type(e).__name__) from e

            elapsed = timer.end()
            logger.debug(f"HTTP {response.status_code} {effective} ({elapsed.milli}ms)")
            try:
                yield FetchedResponse(response=response, url=effective, time=elapsed, tls=tls, deadline=deadline)
            finally:
                await response.aclose()

    async def read(self, fetched: FetchedResponse, discard: bool = False) -> Tuple[bytes, int]:
        """
        Reads the body of a fetched response.

        Args:
            fetched: Response yielded by get()
            discard: Count the bytes without keeping them

        Returns:
            (body, size) where body is empty when discarding

        Raises:
            FetchTimeoutError: when the body is not complete by the deadline set in get()
        """
        url = str(fetched.url)
        remaining = None
        if fetched.deadline is not None:
            remaining = fetched.deadline - asyncio.get_running_loop().time()
            if remaining <= 0:
                raise FetchTimeoutError(url, self.timeout)

        try:
            return await asyncio.wait_for(self._read_body(fetched.response, discard), timeout=remaining)
        except asyncio.TimeoutError:
            logging.getLogger(__name__).warning(f"HTTP body read for {url} exceeded {self.timeout}s")
            raise FetchTimeoutError(url, self.timeout) from None
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(str(fetched.url), self.timeout) from e
        except httpx.HTTPError as e:
            raise FetchConnectError(str(fetched.url), str(e) or type(e).__name__) from e

    @staticmethod
    async def _read_body(response: httpx.Response, discard: bool) -> Tuple[bytes, int]:
        if discard:
            size = 0
            async for chunk in response.aiter_bytes():
                size += len(chunk)
            return b"", size

        body = await response.aread()
        return body, len(body)

    def _parse(self, url: str) -> httpx.URL:
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise InvalidURLError(str(url), f"invalid url ({e})") from e

        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise InvalidURLError(url, "unsupported url")

        ip = self.ipmap.override_for(host_of(parsed))
        if ip and parse_ip(ip) is None:
            raise InvalidAddressError(url, ip)

        return parsed

    async def _follow(
        self, client: httpx.AsyncClient, origin: httpx.URL
    ) -> Tuple[httpx.Response, httpx.URL, Optional[TLSSummary]]:
        """Run the request and its redirect chain, returning the final open response."""
        logger = logging.getLogger(__name__)
        # The off-origin guard only applies when we start from a host under test
        guarded = host_of(origin) in self.ipmap

        url = origin
        referer: Optional[str] = None
        redirects = 0

        while True:
            request = self._build_request(client, url, referer)
            response = await client.send(request, stream=True)

            try:
                tls = self._session_of(response)
                if not self.allow_insecure:
                    verify_hostname(tls, url.host, str(url))
            except Exception:
                await response.aclose()
                raise

            location = response.headers.get("location")
            if response.status_code not in REDIRECT_CODES or not location:
                return response, url, tls

            await response.aclose()

            try:
                target = url.join(location)
            except httpx.InvalidURL as e:
                raise InvalidURLError(location, "invalid redirect location") from e

            redirects += 1
            if redirects > MAX_REDIRECTS:
                raise TooManyRedirectsError(str(origin), MAX_REDIRECTS)

            self._check_redirect(origin, target, guarded)
            logger.debug(f"redirect {redirects}: {url} -> {target}")

            referer = str(url)
            url = target

    def _check_redirect(self, origin: httpx.URL, target: httpx.URL, guarded: bool) -> None:
        origin_host = host_of(origin)
        target_host = host_of(target)

        if parse_ip(target.host) is not None and target_host != origin_host:
            raise OffOriginRedirectError(
                str(origin), str(target), "redirected to IP that doesn't match proxy/origin request"
            )

        if not guarded or target_host in self.ipmap:
            return

        # not a configured host: allow it only when it names one of the configured IPs
        if self.ipmap.has_address(target_host) or self.ipmap.has_address(target.host):
            return

        raise OffOriginRedirectError(str(origin), str(target), "redirection does not match origin host")

    def _build_request(
        self, client: httpx.AsyncClient, url: httpx.URL, referer: Optional[str]
    ) -> httpx.Request:
        headers: Dict[str, str] = {"User-Agent": USER_AGENT}
        if referer:
            headers["Referer"] = referer

        extensions: Dict[str, str] = {}
        target = url

        host = host_of(url)
        ip = self.ipmap.override_for(host)
        if ip:
            if parse_ip(ip) is None:
                raise InvalidAddressError(str(url), ip)
            headers["Host"] = host
            target = url.copy_with(host=ip)
            if url.scheme == "https":
                extensions["sni_hostname"] = url.host

        return client.build_request("GET", target, headers=headers, extensions=extensions)

    def _session_of(self, response: httpx.Response) -> Optional[TLSSummary]:
        stream = response.extensions.get("network_stream")
        if stream is None:
            return None
        return summarize_session(stream.get_extra_info("ssl_object"), verified=not self.allow_insecure)
