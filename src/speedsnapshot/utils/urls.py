"""URL helpers for submissions and measurement variants."""

import logging
import re
from typing import List, Optional
from urllib.parse import unquote, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r'^[a-z][a-z0-9+.-]*://', re.IGNORECASE)
_BARE_DOMAIN_RE = re.compile(r'^[a-z0-9.-]+\.[a-z]{2,}([/:?].*)?$', re.IGNORECASE)
_DOMAIN_PREFIX_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9]*\.[a-zA-Z]{2,}')
_SEPARATORS_RE = re.compile(r'[\s,;]+')
_HOSTNAME_RE = re.compile(r'^[a-z0-9]([a-z0-9.-]*[a-z0-9])?$', re.IGNORECASE)


def normalize_url(value: Optional[str]) -> Optional[str]:
    """
    Turn user input into an absolute URL.

    Accepts "example.com", "//example.com" and full URLs; adds https:// when
    no scheme is given and lowercases the host.

    Returns:
        Normalized URL, or None if the input is not a usable URL
    """
    if not value:
        return None
    s = str(value).strip()

    # "/example.com" pasted with a stray leading slash
    if s.startswith('/') and not s.startswith('//') and _BARE_DOMAIN_RE.match(s[1:]):
        s = s[1:]

    if s.startswith('//'):
        s = 'https:' + s

    if not _SCHEME_RE.match(s):
        s = 'https://' + s

    try:
        parts = urlsplit(s)
        hostname = parts.hostname
    except ValueError:
        return None

    if parts.scheme.lower() not in ('http', 'https') or not hostname:
        return None
    if not _HOSTNAME_RE.match(hostname):
        return None

    # Lowercase the host only; port and credentials stay as typed
    netloc = _lower_host(parts.netloc)
    path = parts.path or '/'
    return urlunsplit((parts.scheme.lower(), netloc, path, parts.query, parts.fragment))


def _lower_host(netloc: str) -> str:
    userinfo, sep, hostport = netloc.rpartition('@')
    return f"{userinfo}{sep}{hostport.lower()}"


def detect_multiple_urls(text: Optional[str]) -> List[str]:
    """
    Find several URLs pasted into a single input.

    Splits on whitespace, commas and semicolons after URL-decoding, keeps
    http(s) URLs and bare domains, and drops duplicates in order.

    Returns:
        The URLs if more than one was found, otherwise an empty list
    """
    if not text or not isinstance(text, str):
        return []

    decoded = unquote(text)
    candidates = [item.strip() for item in _SEPARATORS_RE.split(decoded) if item.strip()]

    valid = [
        item for item in candidates
        if item.startswith(('http://', 'https://')) or _DOMAIN_PREFIX_RE.match(item)
    ]
    unique = list(dict.fromkeys(valid))

    logger.debug(f"[URL-DETECTION] Candidates: {candidates} Unique: {unique}")
    return unique if len(unique) > 1 else []


def add_query_param(url: str, param: str) -> str:
    """Append a query parameter ("name" or "name=value") to a URL."""
    separator = '&' if '?' in url else '?'
    return f"{url}{separator}{param}"
