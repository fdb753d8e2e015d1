import asyncio
import logging
from enum import Enum
from typing import Iterable, List, Optional

import httpx

from core.config import CrawlerConfig
from core.errors import CrawlStateError, FetchError, OffOriginRedirectError
from core.html_utils import extract_assets
from core.ipmap import IPMap, Resolver
from core.pool import WorkerPool
from core.timer import Timer
from fetch.http_client import FetchClient, FetchedResponse
from models.domain import Domain, host_of, strip_duplicates
from models.result import FetchResult, Resource, Response


class CrawlState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("content-length", ""))
    except ValueError:
        return 0


def _build_response(request: Domain, fetched: FetchedResponse, content_length: int, body: str = "") -> Response:
    headers = {}
    for key, value in fetched.response.headers.multi_items():
        headers.setdefault(key, []).append(value)

    return Response(
        remote=host_of(fetched.url) != host_of(httpx.URL(request.url)),
        code=fetched.response.status_code,
        url=str(fetched.url),
        headers=headers,
        content_length=content_length,
        tls=fetched.tls,
        body=body,
    )


def _display_url(request: Domain, effective: str) -> str:
    requested = str(httpx.URL(request.url))
    if effective != requested:
        return f"{request.url} (-> {effective})"
    return request.url


def _raise_failures(outcomes: list) -> int:
    """Re-raise unexpected task failures; returns the number of cancelled tasks."""
    cancelled = 0
    for outcome in outcomes:
        if isinstance(outcome, asyncio.CancelledError):
            cancelled += 1
        elif isinstance(outcome, BaseException):
            raise outcome
    return cancelled


class Crawler:
    """
    Concurrently crawls a list of domains, bypassing DNS where an IP is given.

    Each domain is fetched in a slot of the page pool; when asset crawling is
    enabled every page's assets are fetched through a per-domain asset pool.
    Failures are recorded on the result they belong to and never stop sibling
    work.
    """

    def __init__(
        self,
        domains: Iterable[Domain],
        config: Optional[CrawlerConfig] = None,
        resolver: Optional[Resolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            domains: Domains to crawl (duplicates by URL/IP are dropped at crawl time)
            config: Crawler settings; validated here, ConfigurationError if unusable
            resolver: host -> address lookup used for remote classification (default: DNS)
            transport: httpx transport override, used by tests
        """
        self.logger = logging.getLogger(__name__)
        self.config = (config or CrawlerConfig()).validate()
        self.domains: List[Domain] = list(domains)
        self.results: List[FetchResult] = []
        self.successful = 0
        self.failed = 0
        self.state = CrawlState.IDLE

        self.ipmap: Optional[IPMap] = None
        self.client: Optional[FetchClient] = None
        self.pool: Optional[WorkerPool] = None

        self._resolver = resolver
        self._transport = transport
        self._results_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._cancelled = False

    async def crawl(self) -> List[FetchResult]:
        """Crawl every domain; returns once all domains and their assets are finished."""
        if self.state is not CrawlState.IDLE:
            raise CrawlStateError(f"crawl() called on a crawler in state {self.state.value}")
        self.state = CrawlState.RUNNING
        timer = Timer()

        before = len(self.domains)
        self.domains = strip_duplicates(self.domains)
        if len(self.domains) != before:
            self.logger.debug(f"dropped {before - len(self.domains)} duplicate domain/ip pairs")

        self.ipmap = IPMap.build(self.domains, resolver=self._resolver)
        self.client = FetchClient(
            self.ipmap,
            timeout=self.config.timeout,
            allow_insecure=self.config.allow_insecure,
            transport=self._transport,
        )
        self.pool = WorkerPool(self.config.threads, name="page pool")
        self.logger.info(f"starting crawl of {len(self.domains)} domains ({self.config.threads} threads)")

        try:
            for domain in self.domains:
                await self.pool.slot()
                if self._cancelled:
                    self.pool.free()
                    break
                task = asyncio.create_task(self._crawl_domain(domain))
                # runs even when the task is cancelled before it starts
                task.add_done_callback(self._release_slot)
                self._tasks.append(task)

            await self.pool.wait()
        except asyncio.CancelledError:
            self.cancel()
            raise

        outcomes = await asyncio.gather(*self._tasks, return_exceptions=True)
        cancelled = _raise_failures(outcomes)
        if cancelled:
            self.logger.warning(f"{cancelled} domain crawls were cancelled")

        timer.end()
        self.state = CrawlState.DONE
        self.logger.info(f"finished scanning {len(self.results)} urls in {timer.result.seconds} seconds")

        for result in self.results:
            if result.successful:
                self.successful += 1
            else:
                self.failed += 1
        self.logger.info(f"{self.successful} successful, {self.failed} failed")

        return self.results

    def cancel(self) -> None:
        """Abort the crawl: in-flight domains are cancelled and produce no result."""
        self._cancelled = True
        for task in self._tasks:
            task.cancel()

    def _release_slot(self, task: asyncio.Task) -> None:
        self.pool.free()

    async def _crawl_domain(self, domain: Domain) -> None:
        if self.config.delay > 0:
            self.logger.info(f"delaying {self.config.delay}s before starting crawl on {domain}")
            await asyncio.sleep(self.config.delay)

        result = FetchResult(request=domain)
        await self.fetch(result)

        if self.config.no_remote and isinstance(result.error, OffOriginRedirectError):
            self.logger.info(f"skipping {domain} as skip remote was used (error: {result.error})")
            return

        async with self._results_lock:
            self.results.append(result)

        if result.error is not None:
            self.logger.warning(f"error scanning {domain} (error: {result.error})")
        else:
            self.logger.info(f"finished scanning {domain} ({result.total_time.milli}ms)")

    async def fetch(self, result: FetchResult) -> None:
        """Fetch the primary page of result.request and, if enabled, its assets."""
        crawl_timer = Timer()
        try:
            if not await self._fetch_primary(result):
                return

            resource_timer = Timer()
            try:
                if self.config.assets:
                    await self._fetch_assets(result)
            finally:
                result.resource_time = resource_timer.end()
        finally:
            result.total_time = crawl_timer.end()

    async def _fetch_primary(self, result: FetchResult) -> bool:
        request = result.request
        result.url = request.url

        try:
            async with self.client.get(request.url) as fetched:
                body, size = await self.client.read(fetched)
                text = fetched.response.text if body else ""
                content_length = _content_length(fetched.response)
                if content_length < 1:
                    content_length = size
                result.response = _build_response(request, fetched, content_length, body=text)
                result.time = fetched.time
        except FetchError as e:
            result.error = e
            return False

        result.url = _display_url(request, result.response.url)
        self.logger.info(f"fetched {result.response.url} in {result.time.milli}ms with status {result.response.code}")
        return True

    async def _fetch_assets(self, result: FetchResult) -> None:
        urls = extract_assets(result.response.body, result.response.url)
        pool = WorkerPool(self.config.asset_threads, name=f"asset pool for {result.request.url}")
        tasks: List[asyncio.Task] = []

        try:
            for url in urls:
                try:
                    host = host_of(httpx.URL(url))
                except httpx.InvalidURL as e:
                    self.logger.warning(f"unable to parse asset uri [{url}], resource: {result.request}: {e}")
                    continue

                if self.config.no_remote and await self.ipmap.is_remote(host):
                    self.logger.info(f"host {host} (url: {url}) resolves to a unknown remote ip, skipping")
                    continue

                await pool.slot()
                asset = Resource(request=Domain(url=url))
                result.assets.append(asset)
                tasks.append(asyncio.create_task(self.fetch_resource(asset, pool)))

            await pool.wait()
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        _raise_failures(await asyncio.gather(*tasks, return_exceptions=True))

    async def fetch_resource(self, resource: Resource, pool: Optional[WorkerPool] = None) -> None:
        """Fetch one asset; the body is counted and discarded, never parsed."""
        try:
            request = resource.request
            resource.url = request.url

            try:
                async with self.client.get(request.url) as fetched:
                    content_length = _content_length(fetched.response)
                    if content_length < 1:
                        _, content_length = await self.client.read(fetched, discard=True)
                    resource.response = _build_response(request, fetched, content_length)
                    resource.time = fetched.time
            except FetchError as e:
                resource.error = e
                self.logger.debug(f"error fetching asset {request.url}: {e}")
                return

            resource.url = _display_url(request, resource.response.url)
            self.logger.debug(
                f"fetched {resource.response.url} in {resource.time.milli}ms with status {resource.response.code}"
            )
        finally:
            if pool is not None:
                pool.free()
