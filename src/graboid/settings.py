"""
Settings and configuration for graboid.

Centralizes endpoint configuration and provides validation with fail-fast
behavior. A Settings value is immutable for the duration of a pull.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["Settings", "DEFAULT_INDEX_URL", "create_settings_from_env"]

DEFAULT_INDEX_URL = "https://index.docker.io"

_URL_PATTERN = re.compile(r"^(?:https?://)?[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$")
_PLATFORM_PATTERN = re.compile(r"^[a-z0-9]+/[a-z0-9_]+(?:/[a-z0-9]+)?$")


@dataclass(frozen=True)
class Settings:
    """
    Registry endpoint configuration.

    Registry Settings:
        index_url: Index endpoint (used as the registry when no override is set)
        registry_url: Registry endpoint override
        proxy: HTTP/HTTPS proxy URL
        insecure: Skip TLS verification and default to http:// for bare hosts
        username: Username for registry authentication
        password: Password for registry authentication

    Transfer Settings:
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Extra attempts after a network failure (0=no retry)
        max_concurrent_downloads: Parallel layer downloads per pull
        platform: Target platform for manifest lists ("os/arch[/variant]")
    """
    index_url: str = DEFAULT_INDEX_URL
    registry_url: Optional[str] = None
    proxy: Optional[str] = None
    insecure: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    http_timeout_s: float = 30.0
    http_retry: int = 0
    max_concurrent_downloads: int = 4
    platform: Optional[str] = None

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.index_url:
            raise ValueError("index_url is required")

        if not _URL_PATTERN.match(self.index_url):
            raise ValueError(f"Invalid index_url format: {self.index_url}")

        if self.registry_url and not _URL_PATTERN.match(self.registry_url):
            raise ValueError(f"Invalid registry_url format: {self.registry_url}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if not 1 <= self.max_concurrent_downloads <= 32:
            raise ValueError(
                f"max_concurrent_downloads must be between 1 and 32, got {self.max_concurrent_downloads}"
            )

        if self.platform is not None and not _PLATFORM_PATTERN.match(self.platform):
            raise ValueError(f"Invalid platform format: {self.platform}. Expected os/arch[/variant]")

        # Credentials are all-or-nothing
        if bool(self.username) != bool(self.password):
            raise ValueError("username and password must be specified together")

    @property
    def registry_base_url(self) -> str:
        """Base URL for /v2/ requests, with a scheme."""
        endpoint = (self.registry_url or self.index_url).rstrip("/")
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"http://{endpoint}" if self.insecure else f"https://{endpoint}"

    @property
    def registry_host(self) -> str:
        """Registry host[:port] without scheme, used for Docker config lookups."""
        return re.sub(r"^https?://", "", self.registry_base_url).split("/", 1)[0]

    @property
    def credentials(self) -> Optional[tuple[str, str]]:
        if self.username and self.password:
            return (self.username, self.password)
        return None


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - GRABOID_INDEX (default: https://index.docker.io)
        - GRABOID_REGISTRY (optional)
        - HTTPS_PROXY (optional)
        - GRABOID_INSECURE (default: false)
        - GRABOID_USERNAME (optional)
        - GRABOID_PASSWORD (optional)
        - GRABOID_HTTP_TIMEOUT (default: 30.0)
        - GRABOID_HTTP_RETRY (default: 0)
        - GRABOID_CONCURRENCY (default: 4)
        - GRABOID_PLATFORM (optional, e.g. linux/arm64)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    return Settings(
        index_url=os.getenv("GRABOID_INDEX") or DEFAULT_INDEX_URL,
        registry_url=os.getenv("GRABOID_REGISTRY") or None,
        proxy=os.getenv("HTTPS_PROXY") or None,
        insecure=str_to_bool(os.getenv("GRABOID_INSECURE", "false")),
        username=os.getenv("GRABOID_USERNAME") or None,
        password=os.getenv("GRABOID_PASSWORD") or None,
        http_timeout_s=get_float("GRABOID_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("GRABOID_HTTP_RETRY", 0),
        max_concurrent_downloads=get_int("GRABOID_CONCURRENCY", 4),
        platform=os.getenv("GRABOID_PLATFORM") or None,
    )
