"""URL normalization helpers.

``clean_url`` is the single canonical form used for cache keys, de-duplication
and comparisons across the discovery cascade.
"""

from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
})


def _is_tracking_param(key: str) -> bool:
    key = key.lower()
    return key in TRACKING_PARAMS or key.startswith("utm_")


def clean_url(raw_url: str) -> str:
    """Normalize a URL for comparison and fetching.

    - Adds ``https://`` when the scheme is missing (``//host`` too)
    - Lower-cases the host, drops the fragment
    - Removes tracking query parameters (utm_*, gclid, fbclid, ...)
    - Strips a trailing slash from any path other than ``/``

    Unparseable input is returned trimmed, never raises.
    """
    if not raw_url:
        return ""

    candidate = raw_url.strip()
    if candidate.startswith("//"):
        candidate = f"https:{candidate}"
    if not candidate.lower().startswith(("http://", "https://")):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        host = (parts.hostname or "").lower()
        if not host:
            return raw_url.strip()
        netloc = host
        if parts.port is not None:
            netloc = f"{host}:{parts.port}"
        if parts.username:
            netloc = f"{parts.username}@{netloc}"
    except ValueError:
        return raw_url.strip()

    query_pairs = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(k)
    ]
    path = parts.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    return urlunsplit((parts.scheme.lower(), netloc, path, urlencode(query_pairs), ""))


def to_absolute_url(value: str, base: str) -> str:
    """Resolve ``value`` against ``base``; returns ``value`` unchanged on error."""
    try:
        return urljoin(base, value.strip())
    except ValueError:
        return value


def hostname(raw_url: str) -> str:
    try:
        return (urlsplit(raw_url).hostname or "").lower()
    except ValueError:
        return ""


def same_host(url_a: str, url_b: str) -> bool:
    host_a = hostname(url_a)
    return bool(host_a) and host_a == hostname(url_b)


def origin(raw_url: str) -> str:
    """Return ``scheme://host[:port]`` or "" when the URL has no host."""
    try:
        parts = urlsplit(raw_url)
        if not parts.scheme or not parts.hostname:
            return ""
        netloc = parts.hostname.lower()
        if parts.port is not None:
            netloc = f"{netloc}:{parts.port}"
        return f"{parts.scheme.lower()}://{netloc}"
    except ValueError:
        return ""


def host_path(raw_url: str) -> str:
    """Lower-cased ``host + path``, used for token and keyword matching."""
    try:
        parts = urlsplit(raw_url)
        return f"{(parts.hostname or '').lower()}{parts.path.lower()}"
    except ValueError:
        return raw_url.lower()
