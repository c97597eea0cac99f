"""
Helpers over a header multi-map.

Headers are kept as a list of ``(name, value)`` pairs so repeated lines such
as ``Set-Cookie`` survive; every lookup is case-insensitive.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from requests.exceptions import InvalidHeader
from requests.structures import CaseInsensitiveDict
from requests.utils import check_header_validity

logger = logging.getLogger(__name__)

Headers = List[Tuple[str, str]]


def get_header(headers: Iterable[Tuple[str, str]], name: str) -> Optional[str]:
    """Return the first value of header `name`, or None if absent."""
    name = name.lower()
    for key, value in headers:
        if key.lower() == name:
            return value
    return None


def remove_header(headers: Headers, name: str) -> None:
    """Remove every line of header `name` in place."""
    name = name.lower()
    headers[:] = [(k, v) for k, v in headers if k.lower() != name]


def set_header(headers: Headers, name: str, value: str) -> None:
    """Replace all lines of header `name` with a single value."""
    remove_header(headers, name)
    headers.append((name, value))


def is_valid_header(name: str, value: str) -> bool:
    """Check a header line the way the outbound client would."""
    try:
        check_header_validity((name, value))
    except InvalidHeader as e:
        logger.debug(f"Skipping header {name!r}: {e}")
        return False
    return True


def copy_headers(source: Iterable[Tuple[str, str]], exclude: Iterable[str] = ()) -> Headers:
    """
    Copy header lines, skipping excluded names and invalid lines.

    Args:
        source: Header pairs to copy from
        exclude: Header names to leave out (case-insensitive)

    Returns:
        New list of valid header pairs
    """
    excluded = {name.lower() for name in exclude}
    return [(name, value) for name, value in source
            if name.lower() not in excluded and is_valid_header(name, value)]


def fold_headers(headers: Iterable[Tuple[str, str]]) -> CaseInsensitiveDict:
    """
    Fold repeated header lines into a single-valued mapping.

    Repeated lines are comma-joined, except ``Cookie`` which joins with
    ``; ``.
    """
    folded = CaseInsensitiveDict()
    for name, value in headers:
        if name in folded:
            separator = '; ' if name.lower() == 'cookie' else ', '
            folded[name] = f"{folded[name]}{separator}{value}"
        else:
            folded[name] = value
    return folded
