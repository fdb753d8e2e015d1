import pytest

from core.ipmap import IPMap
from models.domain import Domain, strip_duplicates
from helpers import fake_resolver


def test_build_adds_www_variants():
    ipmap = IPMap.build([
        Domain("http://example.com/", "203.0.113.5"),
        Domain("https://www.other.org", "203.0.113.6"),
        Domain("http://plain.net"),
    ])

    assert ipmap.get("example.com") == "203.0.113.5"
    assert ipmap.get("www.example.com") == "203.0.113.5"
    assert ipmap.get("other.org") == "203.0.113.6"
    assert ipmap.get("www.other.org") == "203.0.113.6"
    assert "plain.net" in ipmap
    assert ipmap.override_for("plain.net") is None
    assert ipmap.get("unknown.com") is None


def test_build_keys_non_default_port():
    ipmap = IPMap.build([Domain("http://example.com:8080/", "203.0.113.5")])

    assert "example.com:8080" in ipmap
    assert "example.com" not in ipmap


def test_strip_duplicates_keeps_first_order():
    domains = [
        Domain("http://a.com/", "1.1.1.1"),
        Domain("http://b.com/", "1.1.1.1"),
        Domain("http://a.com/", "1.1.1.1"),
        Domain("http://a.com/", "2.2.2.2"),
    ]

    assert strip_duplicates(domains) == [domains[0], domains[1], domains[3]]


@pytest.mark.asyncio
async def test_is_remote_classification():
    resolver = fake_resolver({
        "cdn.example.com": "203.0.113.5",
        "thirdparty.net": "198.51.100.7",
    })
    ipmap = IPMap.build([Domain("http://example.com/", "203.0.113.5")], resolver=resolver)

    # explicitly configured
    assert await ipmap.is_remote("example.com") is True
    # resolves to a configured IP: co-located
    assert await ipmap.is_remote("cdn.example.com") is False
    # resolves elsewhere
    assert await ipmap.is_remote("thirdparty.net") is True
    # lookup failure fails open
    assert await ipmap.is_remote("nxdomain.invalid") is False


@pytest.mark.asyncio
async def test_resolve_caches_failures():
    resolver = fake_resolver({})
    ipmap = IPMap({}, resolver=resolver)

    assert await ipmap.resolve("missing.test") is None
    assert await ipmap.resolve("missing.test") is None
    assert resolver.calls == ["missing.test"]


@pytest.mark.asyncio
async def test_ip_literal_hosts_classified_without_lookup():
    resolver = fake_resolver({})
    ipmap = IPMap.build([Domain("http://example.com/", "203.0.113.5")], resolver=resolver)

    assert await ipmap.is_remote("198.51.100.7") is True
    assert await ipmap.is_remote("203.0.113.5") is False
    assert await ipmap.is_remote("198.51.100.7:8080") is True
    assert resolver.calls == []
