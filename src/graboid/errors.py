"""
Error taxonomy for image pulls.

Every stage of a pull raises one of these instead of terminating the process.
Each error carries the offending identifier (digest, tag, URL or path) so the
caller can report it, and only NetworkError is meant to be retried.
"""
from __future__ import annotations

from typing import Optional


class GraboidError(Exception):
    """
    Base class for all pull errors.

    Attributes:
        identifier: Digest, tag, URL or path the error is about (if any)
    """

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class AuthError(GraboidError):
    """
    Authentication handshake failed.

    Raised when:
    - The registry sends a challenge we cannot parse (kind="challenge")
    - The token endpoint or registry rejects our credentials (kind="unauthorized")
    """

    CHALLENGE = "challenge"
    UNAUTHORIZED = "unauthorized"

    def __init__(self, message: str, identifier: Optional[str] = None, *,
                 kind: str = UNAUTHORIZED):
        super().__init__(message, identifier)
        self.kind = kind


class NotFoundError(GraboidError):
    """Repository, tag, manifest or blob does not exist (HTTP 404)."""
    pass


class UnsupportedFormatError(GraboidError):
    """
    Manifest cannot be used.

    Raised when:
    - The manifest media type is not one we understand (e.g. schema 1)
    - A manifest list has no entry for the target platform
    """
    pass


class InvalidManifestError(UnsupportedFormatError):
    """Manifest body is not valid JSON or is structurally inconsistent."""
    pass


class IntegrityError(GraboidError):
    """
    Content digest validation failed.

    Never retried: a mismatch means corruption or tampering on the server or
    in a cache along the way, not a transient fault.
    """

    def __init__(self, message: str, digest: str, *, expected: str,
                 actual: str):
        super().__init__(message, digest)
        self.digest = digest
        self.expected = expected
        self.actual = actual


class ImageIOError(GraboidError):
    """Local filesystem failure while staging blobs or writing the archive."""
    pass


class NetworkError(GraboidError):
    """
    Transport-level failure (connect, read, timeout) or a transient server reply.

    The only error kind a caller should retry, with a fresh client.
    """
    pass


__all__ = [
    "GraboidError",
    "AuthError",
    "NotFoundError",
    "UnsupportedFormatError",
    "InvalidManifestError",
    "IntegrityError",
    "ImageIOError",
    "NetworkError",
]
