"""URL canonicalisation and filtering for crawling."""

from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

_STATIC_ASSET = re.compile(
    r"\.(jpg|jpeg|png|gif|svg|webp|ico|pdf|zip|gz|css|js|mp3|mp4|woff2?)$",
    flags=re.IGNORECASE,
)
_AUTH_PATHS = ("/wp-admin", "/login", "/signin", "/signup")


def canonicalize_url(url: str) -> str:
    """Drop the fragment and a trailing slash; the root path stays `/`."""

    parts = urlsplit(url.strip())
    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))


def is_crawlable(url: str) -> bool:
    """http(s) only, no static assets, no authentication flows."""

    if urlsplit(url).scheme not in {"http", "https"}:
        return False
    if _STATIC_ASSET.search(url):
        return False
    return not any(marker in url for marker in _AUTH_PATHS)


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def url_to_file_name(url: str) -> str:
    """`https://host/a/b/` -> `host/a-b`; the home page becomes `host/index`."""

    try:
        parts = urlsplit(url)
    except ValueError:
        return "unknown-page"
    if not parts.hostname:
        return "unknown-page"
    path = parts.path.strip("/").replace("/", "-") or "index"
    return f"{parts.hostname}/{path}"
