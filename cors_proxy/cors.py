"""
CORS header policy.

Every response leaving the proxy (preflight, forwarded or error) gets the
headers computed here so a browser can always read it.
"""
from typing import Iterable, List, Tuple

from .config import ProxyConfig
from .headers import Headers, get_header, remove_header, set_header

DEFAULT_ALLOWED_HEADERS = ('Origin', 'Content-Type', 'Accept', 'Authorization', 'Authentication')
DEFAULT_EXPOSED_HEADERS = ('authorization', 'www-authenticate')
ALLOWED_METHODS = ('GET', 'POST', 'PUT', 'DELETE', 'OPTIONS', 'PATCH')


def _unique(names: Iterable[str]) -> List[str]:
    """De-duplicate names case-insensitively, keeping the first spelling."""
    seen = {}
    for name in names:
        seen.setdefault(name.lower(), name)
    return list(seen.values())


def allowed_headers(request_headers: Iterable[Tuple[str, str]],
                    config: ProxyConfig) -> List[str]:
    """
    Compute the header names to allow for a request.

    Args:
        request_headers: Headers of the incoming request
        config: Proxy configuration

    Returns:
        Defaults, then configured extras, then whatever the client asked
        for in ``Access-Control-Request-Headers``
    """
    requested = get_header(request_headers, 'Access-Control-Request-Headers') or ''
    names = list(DEFAULT_ALLOWED_HEADERS)
    names.extend(config.extra_allowed_headers)
    names.extend(part.strip() for part in requested.split(',') if part.strip())
    return _unique(names)


def cors_headers(request_headers: Iterable[Tuple[str, str]],
                 config: ProxyConfig) -> Headers:
    """
    Compute the CORS response headers for a request.

    With credentials allowed, a non-empty ``Origin`` is echoed back together
    with ``Access-Control-Allow-Credentials``; otherwise the wildcard origin
    is used and no credentials header is emitted.

    Args:
        request_headers: Headers of the incoming request
        config: Proxy configuration

    Returns:
        List of CORS header pairs
    """
    request_headers = list(request_headers)
    origin = get_header(request_headers, 'Origin') if config.allow_credentials else None

    if origin:
        headers = [('Access-Control-Allow-Origin', origin),
                   ('Access-Control-Allow-Credentials', 'true')]
    else:
        headers = [('Access-Control-Allow-Origin', '*')]

    exposed = _unique(DEFAULT_EXPOSED_HEADERS + config.extra_allowed_headers)
    headers.extend([
        ('Access-Control-Allow-Methods', ', '.join(ALLOWED_METHODS)),
        ('Access-Control-Allow-Headers', ', '.join(allowed_headers(request_headers, config))),
        ('Access-Control-Expose-Headers', ', '.join(exposed)),
    ])
    return headers


def apply_cors_headers(response_headers: Headers,
                       request_headers: Iterable[Tuple[str, str]],
                       config: ProxyConfig) -> None:
    """Set the CORS headers on a response, replacing any upstream values."""
    policy = cors_headers(request_headers, config)
    if get_header(policy, 'Access-Control-Allow-Credentials') is None:
        remove_header(response_headers, 'Access-Control-Allow-Credentials')
    for name, value in policy:
        set_header(response_headers, name, value)
