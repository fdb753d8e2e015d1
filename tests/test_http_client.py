import asyncio

import httpx
import pytest

from core.errors import (
    FetchConnectError,
    FetchTimeoutError,
    HostnameMismatchError,
    InvalidAddressError,
    InvalidURLError,
    OffOriginRedirectError,
    TooManyRedirectsError,
)
from core.ipmap import IPMap
from fetch.http_client import MAX_REDIRECTS, USER_AGENT, FetchClient
from helpers import FakeNetworkStream, FakeSSLObject, make_certificate
from models.domain import Domain


def _client(handler, domains=(), **kwargs):
    ipmap = IPMap.build(list(domains))
    return FetchClient(ipmap, transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_spoofed_request_keeps_host_header():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="hello")

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    async with client.get("http://example.com/") as fetched:
        body, size = await client.read(fetched)

    request = seen[0]
    assert request.url.host == "203.0.113.5"
    assert request.headers["host"] == "example.com"
    assert request.headers["user-agent"] == USER_AGENT
    assert "referer" not in request.headers
    assert body == b"hello"
    assert size == 5
    assert fetched.url == httpx.URL("http://example.com/")
    assert fetched.tls is None


@pytest.mark.asyncio
async def test_https_spoof_sets_sni_hostname():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    client = _client(handler, [Domain("https://example.com/", "203.0.113.5")], allow_insecure=True)
    async with client.get("https://www.example.com/") as fetched:
        assert fetched.response.status_code == 204

    assert seen[0].url.host == "203.0.113.5"
    assert seen[0].extensions["sni_hostname"] == "www.example.com"


@pytest.mark.asyncio
async def test_unconfigured_host_uses_normal_dns():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    async with client.get("http://cdn.other.net/a.js"):
        pass

    assert seen[0].url.host == "cdn.other.net"


@pytest.mark.asyncio
async def test_redirects_followed_with_referer():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/":
            return httpx.Response(301, headers={"Location": "/landing"})
        if request.url.path == "/landing":
            return httpx.Response(302, headers={"Location": "http://www.example.com/final"})
        return httpx.Response(200, text="done")

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    async with client.get("http://example.com/") as fetched:
        assert fetched.response.status_code == 200

    assert [r.url.path for r in seen] == ["/", "/landing", "/final"]
    assert all(r.url.host == "203.0.113.5" for r in seen)
    assert seen[1].headers["referer"] == "http://example.com/"
    assert seen[2].headers["referer"] == "http://example.com/landing"
    assert seen[2].headers["host"] == "www.example.com"
    assert fetched.url == httpx.URL("http://www.example.com/final")


@pytest.mark.asyncio
async def test_too_many_redirects():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(302, headers={"Location": f"/hop{len(calls)}"})

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    with pytest.raises(TooManyRedirectsError) as exc:
        async with client.get("http://example.com/"):
            pass

    assert str(exc.value) == "too many redirects (3)"
    assert len(calls) == MAX_REDIRECTS + 1


@pytest.mark.parametrize("origin,location", [
    ("http://example.com/", "http://evil.example.net/"),
    ("http://example.com/deep/page", "http://evil.example.net/"),
    ("http://example.com/deep/page", "//evil.example.net/"),
    ("http://example.com/deep/page?q=1", "http://evil.example.net/"),
])
@pytest.mark.asyncio
async def test_redirect_off_origin_rejected(origin, location):
    def handler(request):
        return httpx.Response(302, headers={"Location": location})

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    with pytest.raises(OffOriginRedirectError) as exc:
        async with client.get(origin):
            pass

    assert exc.value.target == "http://evil.example.net/"
    assert exc.value.url == origin
    assert str(exc.value) == "redirection does not match origin host"


@pytest.mark.asyncio
async def test_redirect_within_origin_from_deep_path():
    def handler(request):
        if request.url.path == "/deep/page":
            return httpx.Response(302, headers={"Location": "../other"})
        return httpx.Response(200)

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    async with client.get("http://example.com/deep/page") as fetched:
        assert fetched.url == httpx.URL("http://example.com/other")


@pytest.mark.asyncio
async def test_redirect_to_bare_ip_rejected():
    def handler(request):
        return httpx.Response(302, headers={"Location": "http://198.51.100.1/"})

    client = _client(handler)
    with pytest.raises(OffOriginRedirectError) as exc:
        async with client.get("http://cdn.other.net/"):
            pass

    assert "redirected to IP" in str(exc.value)


@pytest.mark.asyncio
async def test_unguarded_fetch_may_leave_host():
    def handler(request):
        if request.url.host == "cdn.other.net":
            return httpx.Response(302, headers={"Location": "http://mirror.other.net/a.js"})
        return httpx.Response(200)

    client = _client(handler, [Domain("http://example.com/", "203.0.113.5")])
    async with client.get("http://cdn.other.net/a.js") as fetched:
        assert fetched.url.host == "mirror.other.net"


@pytest.mark.asyncio
async def test_invalid_override_ip():
    def handler(request):
        raise AssertionError("no request expected")

    client = _client(handler, [Domain("http://example.com/", "999.1.2.3")])
    with pytest.raises(InvalidAddressError):
        async with client.get("http://example.com/"):
            pass


@pytest.mark.asyncio
async def test_unsupported_url():
    client = _client(lambda request: httpx.Response(200))
    with pytest.raises(InvalidURLError):
        async with client.get("ftp://example.com/file"):
            pass


@pytest.mark.asyncio
async def test_connect_error_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(FetchConnectError):
        async with client.get("http://down.example.com/"):
            pass


@pytest.mark.asyncio
async def test_whole_cycle_timeout():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    client = _client(handler, timeout=0.1)
    with pytest.raises(FetchTimeoutError):
        async with client.get("http://slow.example.com/"):
            pass


@pytest.mark.asyncio
async def test_certificate_checked_against_real_host():
    tls_stream = FakeNetworkStream(FakeSSLObject(make_certificate("other.com", dns_names=["other.com"])))

    def handler(request):
        return httpx.Response(200, extensions={"network_stream": tls_stream})

    client = _client(handler, [Domain("https://example.com/", "203.0.113.5")])
    with pytest.raises(HostnameMismatchError) as exc:
        async with client.get("https://example.com/"):
            pass

    assert str(exc.value) == "x509: certificate is valid for other.com, not example.com"


@pytest.mark.asyncio
async def test_matching_certificate_summarized():
    tls_stream = FakeNetworkStream(FakeSSLObject(make_certificate("example.com", dns_names=["*.example.com"])))

    def handler(request):
        return httpx.Response(200, extensions={"network_stream": tls_stream})

    client = _client(handler, [Domain("https://example.com/", "203.0.113.5")])
    async with client.get("https://www.example.com/") as fetched:
        assert fetched.tls.verified is True
        assert fetched.tls.leaf.dns_names == ["*.example.com"]


@pytest.mark.asyncio
async def test_read_discard_counts_bytes():
    def handler(request):
        return httpx.Response(200, content=b"x" * 1024)

    client = _client(handler)
    async with client.get("http://cdn.other.net/a.bin") as fetched:
        body, size = await client.read(fetched, discard=True)

    assert body == b""
    assert size == 1024


async def _trickle(count, pause):
    for _ in range(count):
        await asyncio.sleep(pause)
        yield b"x"


@pytest.mark.parametrize("discard", [False, True])
@pytest.mark.asyncio
async def test_slow_body_bounded_by_fetch_timeout(discard):
    def handler(request):
        return httpx.Response(200, content=_trickle(10, 0.1))

    client = _client(handler, timeout=0.2)
    loop = asyncio.get_running_loop()
    started = loop.time()

    with pytest.raises(FetchTimeoutError):
        async with client.get("http://slow.example.com/big.bin") as fetched:
            await client.read(fetched, discard=discard)

    assert loop.time() - started < 0.6
