"""
Registry protocol package - authentication, manifests and blobs.

Everything in here works on a single pull's RegistryHTTP instance; nothing is
shared between pulls.
"""
from .auth import AuthState, AuthToken, DockerAuth, TokenManager
from .blobs import BlobFetcher, FetchCancelled
from .http import RegistryHTTP
from .manifests import ManifestResolver, host_platform, select_platform

__all__ = [
    "AuthState",
    "AuthToken",
    "DockerAuth",
    "TokenManager",
    "BlobFetcher",
    "FetchCancelled",
    "RegistryHTTP",
    "ManifestResolver",
    "host_platform",
    "select_platform",
]
