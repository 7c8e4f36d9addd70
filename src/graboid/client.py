"""
Registry client: one image pull, start to finish.

A RegistryClient owns every resource of a single pull (HTTP client, token,
scratch workspace) and walks an explicit state machine:

    UNAUTHENTICATED -> AUTHENTICATED -> MANIFEST_RESOLVED -> BLOBS_FETCHED -> ASSEMBLED

Any stage failure moves it to FAILED. States are never revisited, so a client
pulls at most once; build a new one (fresh token, fresh manifest) to try again.
"""
from __future__ import annotations

import enum
import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

import httpx

from .assembler import archive_suffix, assemble
from .errors import ImageIOError
from .events import ProgressSink, Stage, emit
from .models import ImageManifest
from .reference import ImageReference, archive_basename
from .registry import BlobFetcher, DockerAuth, ManifestResolver, RegistryHTTP
from .settings import Settings

__all__ = ["PullState", "PullRequest", "RegistryClient"]

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "graboid-"


class PullState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    MANIFEST_RESOLVED = "manifest_resolved"
    BLOBS_FETCHED = "blobs_fetched"
    ASSEMBLED = "assembled"
    FAILED = "failed"


@dataclass(frozen=True)
class PullRequest:
    """
    Everything one pull needs, fixed up front.

    Attributes:
        reference: Image to pull
        settings: Registry endpoint configuration
        output_dir: Directory the archive is written to
        compression: "gzip", "zstd" or "none"
        scratch_root: Parent of the scratch workspace (system temp dir if None)
    """
    reference: ImageReference
    settings: Settings = field(default_factory=Settings)
    output_dir: Path = Path(".")
    compression: str = "gzip"
    scratch_root: Optional[Path] = None

    def __post_init__(self):
        archive_suffix(self.compression)

    @property
    def archive_path(self) -> Path:
        """Where the assembled archive ends up, e.g. ./library_redis.tar.gz."""
        return Path(self.output_dir) / f"{archive_basename(self.reference)}{archive_suffix(self.compression)}"


class RegistryClient:
    """
    Drive one pull against a Docker Registry v2 endpoint.

    Args:
        request: What to pull and where to put it
        transport: Optional httpx transport (tests inject httpx.MockTransport)
        docker_auth: Optional Docker config credential lookup
        sink: Optional progress event sink

    Example:
        >>> request = PullRequest(parse_reference("redis:7"), Settings())
        >>> with RegistryClient(request) as client:
        ...     archive = client.pull()
    """

    def __init__(self, request: PullRequest, *, transport: Optional[httpx.BaseTransport] = None,
                 docker_auth: Optional[DockerAuth] = None, sink: Optional[ProgressSink] = None):
        self.request = request
        self.sink = sink
        self.state = PullState.UNAUTHENTICATED
        self.manifest: Optional[ImageManifest] = None
        self._pull_started = False

        settings = request.settings
        self.http = RegistryHTTP(settings, request.reference.scope,
                                 transport=transport, docker_auth=docker_auth)
        self.resolver = ManifestResolver(self.http, settings.platform)
        self.fetcher = BlobFetcher(self.http, max_workers=settings.max_concurrent_downloads, sink=sink)

    @property
    def reference(self) -> ImageReference:
        return self.request.reference

    def authenticate(self) -> None:
        """
        Complete the auth handshake (UNAUTHENTICATED -> AUTHENTICATED).

        Raises:
            AuthError: Challenge or credentials rejected
            NetworkError: Registry unreachable
        """
        self._require(PullState.UNAUTHENTICATED)
        with self._stage("authenticate", self.request.settings.registry_host):
            self.http.authenticate()
        self.state = PullState.AUTHENTICATED

    def list_tags(self) -> List[str]:
        """
        List the repository's tags in registry order.

        Authenticates first if needed. Does not advance the pull state.
        """
        if self.state is PullState.UNAUTHENTICATED:
            self.authenticate()
        self._require(PullState.AUTHENTICATED, PullState.MANIFEST_RESOLVED)
        with self._stage("tags", self.reference.repository):
            tags = self.resolver.list_tags(self.reference.repository)
        return tags

    def resolve_manifest(self) -> ImageManifest:
        """
        Resolve the reference to a single-platform manifest
        (AUTHENTICATED -> MANIFEST_RESOLVED).
        """
        if self.state is PullState.UNAUTHENTICATED:
            self.authenticate()
        self._require(PullState.AUTHENTICATED)
        with self._stage("manifest", str(self.reference)):
            self.manifest = self.resolver.get_manifest(self.reference.repository, self.reference.tag)
        self.state = PullState.MANIFEST_RESOLVED
        return self.manifest

    def pull(self) -> Path:
        """
        Pull the image and write its archive.

        Blobs are staged in a private scratch directory that is removed on
        every exit path. The archive appears at request.archive_path only once
        it is complete.

        Returns:
            Path of the written archive

        Raises:
            RuntimeError: If this client already pulled (or tried to)
            GraboidError: Whatever stage failed; the state is then FAILED
        """
        if self._pull_started:
            raise RuntimeError("RegistryClient.pull() can only run once; create a new client")
        self._pull_started = True

        manifest = self.manifest
        if self.state is not PullState.MANIFEST_RESOLVED:
            manifest = self.resolve_manifest()

        scratch = self._make_scratch()
        try:
            with self._stage("blobs", str(self.reference)):
                config, layers = self.fetcher.fetch_image(
                    self.reference.repository, manifest.config, manifest.layers, scratch
                )
            self.state = PullState.BLOBS_FETCHED

            out_path = self.request.archive_path
            with self._stage("assemble", str(out_path)):
                archive = assemble(config, layers, str(self.reference), out_path,
                                   compression=self.request.compression)
            self.state = PullState.ASSEMBLED
        finally:
            _remove_scratch(scratch)

        logger.info(f"Pulled {self.reference} to {archive}")
        return archive

    def _make_scratch(self) -> Path:
        root = self.request.scratch_root
        try:
            if root is not None:
                Path(root).mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=root))
        except OSError as e:
            self.state = PullState.FAILED
            raise ImageIOError(f"Cannot create scratch directory: {e}", str(root or tempfile.gettempdir())) from e

    def _require(self, *allowed: PullState) -> None:
        if self.state not in allowed:
            raise RuntimeError(
                f"Invalid pull state {self.state.value}; expected {' or '.join(s.value for s in allowed)}"
            )

    @contextmanager
    def _stage(self, stage: Stage, item: str) -> Iterator[None]:
        """Report a stage and move to FAILED if it raises."""
        emit(self.sink, stage, item, "started")
        try:
            yield
        except Exception:
            self.state = PullState.FAILED
            emit(self.sink, stage, item, "failed")
            raise
        emit(self.sink, stage, item, "completed")

    def close(self):
        """Close HTTP client."""
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _remove_scratch(scratch: Path) -> None:
    try:
        shutil.rmtree(scratch)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove scratch directory {scratch}: {e}")
