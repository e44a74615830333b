"""
URL normalization used for issuer keys and target-link comparisons.
"""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import quote, unquote_plus, urlencode, urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _netloc(scheme: str, hostname: str, port: int | None) -> str:
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return hostname
    return f"{hostname}:{port}"


def normalize_issuer(issuer: str) -> str:
    """
    Canonical registry key for an issuer URL.

    Scheme and host are lowercased, default ports and trailing slashes are
    dropped.  Values that are not absolute URLs are only trimmed.

    >>> normalize_issuer("HTTPS://Canvas.Example.edu:443/")
    'https://canvas.example.edu'
    """
    value = issuer.strip()
    try:
        parts = urlsplit(value)
        port = parts.port
    except ValueError:
        return value.rstrip("/")

    if not parts.scheme or not parts.hostname:
        return value.rstrip("/")

    scheme = parts.scheme.lower()
    netloc = _netloc(scheme, parts.hostname.lower(), port)
    return urlunsplit((scheme, netloc, parts.path.rstrip("/"), parts.query, ""))


def normalize_url_for_comparison(value: str) -> str | None:
    """
    Reduce an absolute URL to scheme, host and path.

    Query string and fragment are stripped.  Returns None for anything that
    is not an absolute http(s) URL.
    """
    try:
        parts = urlsplit(value.strip())
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None

    path = parts.path or "/"
    return urlunsplit((scheme, _netloc(scheme, parts.hostname.lower(), port), path, "", ""))


def is_absolute_http_url(value: str) -> bool:
    return normalize_url_for_comparison(value) is not None


def set_query_params(url: str, params: Mapping[str, str]) -> str:
    """
    Return *url* with each of *params* set, replacing existing values of the same name.

    Other query pairs are kept byte for byte; only the new pairs are encoded.
    """
    parts = urlsplit(url)
    kept = [
        pair
        for pair in parts.query.split("&")
        if pair and unquote_plus(pair.partition("=")[0]) not in params
    ]
    if params:
        kept.append(urlencode(params, quote_via=quote))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment))
