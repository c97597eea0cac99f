from typing import Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

from .config import ProxyConfig


def split_request_target(request_target: str) -> Tuple[str, str]:
    """
    Split an HTTP request-target into its raw path and query.

    Args:
        request_target: Origin-form (``/a?b``) or absolute-form target

    Returns:
        Tuple of (path, query), both still percent-encoded
    """
    if request_target.startswith('/'):
        # origin-form; urlsplit would read a leading '//' as an authority
        target = request_target.split('#', 1)[0]
        path, _, query = target.partition('?')
        return path, query

    parts = urlsplit(request_target)
    return parts.path, parts.query


def build_target_uri(config: ProxyConfig, request_target: str) -> str:
    """
    Build the upstream URI for an incoming request.

    The target's path segments come first, followed by the request's; the
    request's query parameters overwrite the target's on collision.

    Args:
        config: Proxy configuration holding the pre-parsed target
        request_target: Request-target from the incoming request line

    Returns:
        Absolute upstream URI
    """
    path, query = split_request_target(request_target)

    segments = list(config.target_segments)
    segments.extend(s for s in path.split('/') if s)
    path = ''.join(f"/{s}" for s in segments) or '/'

    params = dict(config.target_query)
    # latin-1 maps each byte to one code point, so any query bytes round-trip
    params.update(parse_qsl(query, keep_blank_values=True, encoding='latin-1'))

    uri = f"{config.scheme}://{config.authority}{path}"
    if params:
        uri = f"{uri}?{urlencode(params, encoding='latin-1')}"
    return uri
