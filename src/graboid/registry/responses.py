"""
HTTP response and transport error mapping.

Translates httpx failures and registry status codes into the graboid error
taxonomy so every caller sees the same error kinds.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import httpx

from ..errors import AuthError, GraboidError, NetworkError, NotFoundError

__all__ = ["raise_for_status", "transport_errors"]


def raise_for_status(response: httpx.Response, identifier: str) -> None:
    """
    Raise the graboid error matching a non-2xx response.

    Mapping:
        404 -> NotFoundError
        401, 403 -> AuthError(kind="unauthorized")
        429, 5xx -> NetworkError (transient)
        other 4xx -> GraboidError
    """
    status = response.status_code
    if status < 400:
        return

    url = str(response.request.url) if response.request else identifier
    if status == 404:
        raise NotFoundError(f"Not found: {identifier}", identifier)
    if status in (401, 403):
        raise AuthError(f"Access denied ({status}) for {identifier}", identifier,
                        kind=AuthError.UNAUTHORIZED)
    if status == 429 or status >= 500:
        raise NetworkError(f"Registry returned {status} for {url}", identifier)
    raise GraboidError(f"Registry error {status} for {url}", identifier)


@contextmanager
def transport_errors(identifier: str) -> Iterator[None]:
    """Convert httpx transport failures (connect, read, timeout) into NetworkError."""
    try:
        yield
    except httpx.TransportError as e:
        raise NetworkError(f"Network error for {identifier}: {e}", identifier) from e
