"""Discovery of a page's static assets (stylesheets, icons, scripts, images).

The HTML is scanned as a token stream, so the body can be fed in chunks as it
arrives. Only one level is discovered: assets of assets are never parsed.
"""
import logging
import re
from html.parser import HTMLParser
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import urljoin, urlsplit

from core.errors import ParseError

logger = logging.getLogger(__name__)

# rel values of <link> tags we fetch
LINK_RELS = frozenset({"stylesheet", "shortcut icon"})

# tag -> attribute holding the asset reference
SOURCE_ATTRS = {
    "link": "href",
    "script": "src",
    "img": "src",
}

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_BARE_RELATIVE = re.compile(r"^(?:[a-zA-Z0-9_]|\.\./)")


def _get_attr(name: str, attrs: List[Tuple[str, Optional[str]]]) -> str:
    for key, value in attrs:
        if key == name:
            return value or ""
    return ""


class AssetParser(HTMLParser):
    """Collects raw asset references in document order."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.sources: List[str] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        attr = SOURCE_ATTRS.get(tag)
        if attr is None:
            return

        if tag == "link":
            rel = _get_attr("rel", attrs).strip().lower()
            if rel and rel not in LINK_RELS:
                return

        src = _get_attr(attr, attrs).strip()
        if src:
            self.sources.append(src)


def resolve_asset_url(src: str, base_url: str) -> Optional[str]:
    """
    Resolves one raw asset reference against the page it was found on.

    Args:
        src: Attribute value as written in the HTML
        base_url: Effective URL of the page (scheme, host and path are used)

    Returns:
        Absolute http(s) URL, or None when the reference is dropped (empty,
        ends with "/", or not http based once resolved)

    Raises:
        ParseError: when the reference or base cannot be parsed as a URL
    """
    src = src.strip()
    if not src or src.endswith("/"):
        return None

    try:
        base = urlsplit(base_url)
        path = base.path or "/"
        origin = f"{base.scheme}://{base.netloc}"

        if src.startswith("//"):
            # scheme-relative, inherits the page's scheme
            resolved = f"{base.scheme}:{src}"
        elif src.startswith("/"):
            resolved = origin + src
        elif src.startswith("./"):
            # relative to the page path itself, e.g. /sub/path + ./x.js -> /sub/path/x.js
            resolved = f"{origin}{path.rstrip('/')}/{src[2:]}"
        elif _SCHEME.match(src):
            resolved = src
        elif _BARE_RELATIVE.match(src):
            resolved = urljoin(f"{origin}{path}", src)
        else:
            return None

        parsed = urlsplit(resolved)
    except ValueError as e:
        raise ParseError(src, f"invalid asset url ({e})") from e

    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None

    return resolved


def extract_assets(body: Union[str, Iterable[str]], base_url: str) -> List[str]:
    """
    Scans an HTML body for asset URLs.

    Args:
        body: The HTML as one string or an iterable of text chunks
        base_url: Effective URL of the page

    Returns:
        Absolute asset URLs, deduplicated, in document order
    """
    parser = AssetParser()
    chunks = [body] if isinstance(body, str) else body
    for chunk in chunks:
        parser.feed(chunk)
    parser.close()

    urls: List[str] = []
    seen = set()
    for src in parser.sources:
        try:
            url = resolve_asset_url(src, base_url)
        except ParseError as e:
            logger.warning(f"unable to parse asset uri [{src}] on {base_url}: {e}")
            continue

        if url is None or url in seen:
            continue
        seen.add(url)
        urls.append(url)

    logger.debug(f"found {len(urls)} assets on {base_url}")
    return urls
