"""
Content digest calculation and verification.

Digests have the form "<algorithm>:<hex>". The verifier hashes a byte stream
incrementally so blobs never need to be held in memory.
"""
from __future__ import annotations

import hashlib
import re
from typing import Tuple, Union

from .errors import IntegrityError

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^([a-z0-9]+(?:[+._-][a-z0-9]+)*):([a-f0-9]+)$")

# Supported algorithms and their hex lengths
SUPPORTED_ALGORITHMS = {"sha256": 64, "sha384": 96, "sha512": 128}


def parse_digest(digest: str) -> Tuple[str, str]:
    """
    Split a digest into algorithm and hex parts.

    Args:
        digest: Digest string (e.g. "sha256:abc...")

    Returns:
        (algorithm, hex) tuple

    Raises:
        ValueError: If the digest is malformed or uses an unsupported algorithm
    """
    if not isinstance(digest, str):
        raise ValueError(f"Invalid digest format: {digest!r}")

    match = DIGEST_PATTERN.match(digest)
    if not match:
        raise ValueError(f"Invalid digest format: {digest}")

    algorithm, hex_part = match.groups()
    expected_len = SUPPORTED_ALGORITHMS.get(algorithm)
    if expected_len is None:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    if len(hex_part) != expected_len:
        raise ValueError(f"Invalid {algorithm} digest length: {digest}")

    return algorithm, hex_part


def validate_digest(digest: str) -> bool:
    """Return True if digest is well-formed and uses a supported algorithm."""
    try:
        parse_digest(digest)
    except ValueError:
        return False
    return True


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Calculate "<algorithm>:<hex>" digest of in-memory data."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


class DigestVerifier:
    """
    Incremental digest check for a byte stream.

    Feed chunks with update() as they are written, then call verify() once
    the stream is complete.

    Example:
        >>> verifier = DigestVerifier("sha256:...")
        >>> for chunk in stream:
        ...     verifier.update(chunk)
        >>> verifier.verify()
    """

    def __init__(self, expected_digest: str, expected_size: int | None = None):
        self.algorithm, self.expected_hex = parse_digest(expected_digest)
        self.expected_digest = expected_digest
        self.expected_size = expected_size
        self._hash = hashlib.new(self.algorithm)
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.size += len(chunk)

    @property
    def actual_digest(self) -> str:
        return f"{self.algorithm}:{self._hash.hexdigest()}"

    def verify(self) -> None:
        """
        Compare the computed digest (and size, when known) with the expected values.

        Raises:
            IntegrityError: On any mismatch
        """
        if self.expected_size is not None and self.size != self.expected_size:
            raise IntegrityError(
                f"Size mismatch for {self.expected_digest}: "
                f"expected {self.expected_size} bytes, got {self.size}",
                self.expected_digest,
                expected=str(self.expected_size),
                actual=str(self.size),
            )

        actual = self.actual_digest
        if actual != self.expected_digest:
            raise IntegrityError(
                f"Digest mismatch: expected {self.expected_digest}, got {actual}",
                self.expected_digest,
                expected=self.expected_digest,
                actual=actual,
            )


def verify_bytes(data: bytes, expected_digest: str) -> None:
    """Verify in-memory data against a digest, raising IntegrityError on mismatch."""
    verifier = DigestVerifier(expected_digest)
    verifier.update(data)
    verifier.verify()


__all__ = [
    "parse_digest",
    "validate_digest",
    "calculate_digest",
    "DigestVerifier",
    "verify_bytes",
]
