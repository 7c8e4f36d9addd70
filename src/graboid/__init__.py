"""
graboid - pull container images from a Docker Registry v2 without a daemon.

Resolves an image reference to a single-platform manifest, downloads and
verifies its blobs concurrently and writes a `docker load` compatible archive.
"""
__version__ = "0.1.0"

from .client import PullRequest, PullState, RegistryClient
from .errors import (
    AuthError,
    GraboidError,
    ImageIOError,
    IntegrityError,
    InvalidManifestError,
    NetworkError,
    NotFoundError,
    UnsupportedFormatError,
)
from .events import ProgressEvent
from .reference import ImageReference, parse_reference
from .settings import Settings, create_settings_from_env

__all__ = [
    "__version__",
    "PullRequest",
    "PullState",
    "RegistryClient",
    "ImageReference",
    "parse_reference",
    "ProgressEvent",
    "Settings",
    "create_settings_from_env",
    "GraboidError",
    "AuthError",
    "NotFoundError",
    "UnsupportedFormatError",
    "InvalidManifestError",
    "IntegrityError",
    "ImageIOError",
    "NetworkError",
]
