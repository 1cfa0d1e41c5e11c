import re
from urllib.parse import (
    parse_qsl,
    urldefrag,
    urlencode,
    urlsplit,
    urlunsplit,
)

MAX_KEY_LENGTH = 255
MAX_URL_LENGTH = 2083

TRACKING_KEYS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "gclid",
    "fbclid",
}

_WHITESPACE = re.compile(r"\s+")


def _strip_tracking(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    return urlencode([(k, v) for k, v in pairs if k not in TRACKING_KEYS])


def normalize_url(href: str) -> str | None:
    """
    Canonical form of an absolute http(s) URL, or None if it is not one.

    Scheme and host are lowercased, the fragment and tracking parameters
    are dropped.
    """
    href, _ = urldefrag(href.strip())
    parts = urlsplit(href)
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or len(href) > MAX_URL_LENGTH:
        return None

    netloc = (parts.hostname or "").lower()
    if parts.port:
        netloc = f"{netloc}:{parts.port}"

    normalized = urlunsplit((scheme, netloc, parts.path, _strip_tracking(parts.query), ""))
    return normalized if len(normalized) <= MAX_URL_LENGTH else None


def normalize_title(title: str) -> str:
    """
    Normalize a page title or /wiki/ link target.

    The section fragment is dropped, underscores become spaces and whitespace
    is collapsed. Case is kept. Percent-escapes are left alone, so a normalized
    key normalizes to itself; decode raw hrefs before calling this.
    """
    title = title.split("#", 1)[0]
    title = title.replace("_", " ")
    return _WHITESPACE.sub(" ", title).strip()


def normalize_key(raw: str) -> str:
    """
    Canonical key for deduplicating pages and aliases.

    URLs are normalized as URLs, anything else as a title.

    Raises:
        ValueError: if nothing is left after normalization
    """
    if raw is None:
        raise ValueError("key must not be None")
    if raw.strip().lower().startswith(("http://", "https://")):
        key = normalize_url(raw)
    else:
        key = normalize_title(raw)
    if not key:
        raise ValueError(f"empty key after normalization: {raw!r}")
    if len(key) > MAX_KEY_LENGTH and not key.startswith(("http://", "https://")):
        raise ValueError(f"key longer than {MAX_KEY_LENGTH} characters: {key[:40]!r}...")
    return key


def iter_chunks(items, size: int):
    """Yield successive lists of at most `size` items."""
    batch = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
