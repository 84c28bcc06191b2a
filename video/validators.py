import re
from urllib.parse import urlsplit

from django.conf import settings

# [[HH:]MM:]SS[.fff]
_TIMESTAMP_RE = re.compile(r"(?:(?:(\d+):)?(\d{1,2}):)?(\d+(?:\.\d+)?)")


def is_allowed_source_url(url: str, allowed_hosts=None) -> bool:
    """
    True when ``url`` is http(s) and its host is one of the allowed hosts
    or a subdomain of one (``www.youtube.com``, ``m.youtube.com``...).
    """
    if not isinstance(url, str) or not url:
        return False
    hosts = allowed_hosts if allowed_hosts is not None else settings.VIDEO_ALLOWED_HOSTS
    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not hostname:
        return False
    hostname = hostname.lower().rstrip(".")
    return any(hostname == h or hostname.endswith("." + h) for h in (h.lower() for h in hosts))


def parse_timestamp(value: str):
    """Seconds for ``[[HH:]MM:]SS[.fff]``, or None when the format isn't recognised."""
    m = _TIMESTAMP_RE.fullmatch(value.strip()) if isinstance(value, str) else None
    if not m:
        return None
    hours, minutes, seconds = m.groups()
    return int(hours or 0) * 3600 + int(minutes or 0) * 60 + float(seconds)


def is_empty_range(start: str, end: str) -> bool:
    """True when both ends parse and ``end`` does not come after ``start``."""
    s, e = parse_timestamp(start), parse_timestamp(end)
    return s is not None and e is not None and e <= s
