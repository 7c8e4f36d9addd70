"""
Operations Facade - Application service layer.

Provides a clean interface between the CLI and RegistryClient, centralizing
command orchestration, configuration and retry policy while keeping CLI
commands thin and testable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..client import PullRequest, RegistryClient
from ..errors import NetworkError
from ..events import ProgressSink
from ..reference import parse_reference
from ..registry import DockerAuth
from ..settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Centralizes policy decisions like compression, output verbosity and
    retry backoff to avoid scattered configuration.
    """
    compression: str = "gzip"               # Archive compression: gzip, zstd or none
    scratch_root: Optional[Path] = None     # Parent for per-pull scratch directories
    verbose: bool = False                   # Show per-blob progress
    retry_backoff_s: float = 1.0            # Base of the exponential wait between attempts


class Operations:
    """
    Application service facade for CLI operations.

    One method per CLI verb. Every attempt builds its own RegistryClient, so a
    retried pull starts from a fresh token and a fresh manifest. Only
    NetworkError is retried (settings.http_retry extra attempts); every other
    error bubbles up for central mapping.
    """

    def __init__(self, config: OpsConfig, settings: Optional[Settings] = None, *,
                 transport: Optional[httpx.BaseTransport] = None,
                 docker_auth: Optional[DockerAuth] = None,
                 sink: Optional[ProgressSink] = None):
        """
        Initialize Operations facade.

        Args:
            config: Configuration settings
            settings: Optional settings (if None, loaded from environment)
            transport: Optional httpx transport for every client (tests)
            docker_auth: Optional Docker config credential lookup
            sink: Optional progress event sink
        """
        self.cfg = config

        if settings is None:
            from ..settings import create_settings_from_env
            settings = create_settings_from_env()
        self.settings = settings

        self.transport = transport
        self.docker_auth = docker_auth
        self.sink = sink

    def tags(self, image: str) -> List[str]:
        """
        List an image repository's tags in registry order.

        Args:
            image: Image reference; any tag part is ignored
        """
        reference = parse_reference(image)
        request = PullRequest(reference=reference, settings=self.settings)

        def _attempt() -> List[str]:
            with self._client(request) as client:
                return client.list_tags()

        return self._retrying()(_attempt)

    def pull(self, image: str, output_dir: Union[str, Path] = ".") -> Path:
        """
        Pull an image into a docker-load archive.

        Args:
            image: Image reference ("redis", "bitnami/redis:7.2")
            output_dir: Directory for the archive

        Returns:
            Path of the written archive
        """
        request = PullRequest(
            reference=parse_reference(image),
            settings=self.settings,
            output_dir=Path(output_dir),
            compression=self.cfg.compression,
            scratch_root=self.cfg.scratch_root,
        )

        def _attempt() -> Path:
            with self._client(request) as client:
                return client.pull()

        return self._retrying()(_attempt)

    def _client(self, request: PullRequest) -> RegistryClient:
        return RegistryClient(request, transport=self.transport,
                              docker_auth=self.docker_auth, sink=self.sink)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.settings.http_retry + 1),
            wait=wait_exponential(multiplier=self.cfg.retry_backoff_s, max=30),
            retry=retry_if_exception_type(NetworkError),
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Attempt {retry_state.attempt_number} failed ({error}); retrying")
