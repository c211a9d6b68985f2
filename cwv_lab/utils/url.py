"""
URL, origin and domain utility functions for resource attribution.
"""

from __future__ import annotations

import hashlib
from urllib import parse


def extract_domain(url: str) -> str:
    """Extract the hostname from a URL string."""
    try:
        parsed = parse.urlparse(url)
        return parsed.hostname or "unknown"
    except ValueError:
        return "unknown"


def get_origin(url: str) -> str | None:
    """Return the ``scheme://host[:port]`` origin of *url*.

    Default ports are dropped so ``https://a.com:443`` and
    ``https://a.com`` compare equal.  Returns ``None`` for
    strings that carry no scheme or host.
    """
    try:
        parsed = parse.urlparse(url)
        port = parsed.port
    except ValueError:
        return None
    if not parsed.scheme or not parsed.hostname:
        return None
    scheme = parsed.scheme.lower()
    host = parsed.hostname.lower()
    if port is None or (scheme, port) in (("http", 80), ("https", 443)):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def is_same_origin(resource_url: str, page_url: str) -> bool:
    """Determine whether *resource_url* shares the page's origin.

    Unparseable URLs are never same-origin.
    """
    resource_origin = get_origin(resource_url)
    page_origin = get_origin(page_url)
    if resource_origin is None or page_origin is None:
        return False
    return resource_origin == page_origin


def resource_id(url: str | None, text: str | None) -> str:
    """Build a stable identifier for a coverage resource.

    Resources with a URL are keyed by it; inline scripts and
    styles (empty URL) are keyed by a hash of their source text.
    """
    if url:
        return url
    digest = hashlib.sha1((text or "").encode("utf-8")).hexdigest()[:12]
    return f"inline:{digest}"


def short_path(url: str) -> str:
    """Return the path component of *url* for compact display."""
    try:
        path = parse.urlparse(url).path
    except ValueError:
        return url
    return path or url
