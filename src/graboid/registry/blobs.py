"""
Content-addressed blob retrieval.

Streams blobs to disk while hashing them and only ever hands out paths whose
content matched the descriptor. Layer blobs are fetched concurrently with a
shared cancel signal: the first failure stops the others and every partial
file is removed.
"""
from __future__ import annotations

import logging
import os
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..digest import DigestVerifier
from ..errors import GraboidError, ImageIOError
from ..events import ProgressSink, Stage, emit
from ..models import Descriptor, VerifiedBlob
from .http import RegistryHTTP
from .responses import transport_errors

__all__ = ["BlobFetcher", "FetchCancelled"]

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB


class FetchCancelled(GraboidError):
    """A fetch stopped because another fetch of the same pull failed."""
    pass


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class BlobFetcher:
    """
    Download and verify blobs for one pull.

    Args:
        http: Authenticated registry client
        max_workers: Upper bound on concurrent downloads
        sink: Optional progress event sink
    """

    def __init__(self, http: RegistryHTTP, *, max_workers: int = 4,
                 sink: Optional[ProgressSink] = None):
        self.http = http
        self.max_workers = max_workers
        self.sink = sink

    @staticmethod
    def blob_path(directory: Path, descriptor: Descriptor) -> Path:
        """Scratch location of a blob inside a pull's workspace."""
        return directory / descriptor.hex

    def fetch_blob(self, repository: str, descriptor: Descriptor, destination: Path,
                   cancel: Optional[threading.Event] = None) -> VerifiedBlob:
        """
        Stream one blob to destination, verifying size and digest.

        The body goes to a temporary sibling file first and is renamed onto
        destination only after verification, so destination either holds the
        complete verified blob or does not exist.

        Raises:
            IntegrityError: Content does not match the descriptor
            NotFoundError: Blob unknown to the registry
            NetworkError: Transport failure mid-stream
            ImageIOError: Local write failure
            FetchCancelled: cancel was set before the fetch finished
        """
        if cancel is not None and cancel.is_set():
            raise FetchCancelled(f"Fetch of {descriptor.digest} cancelled", descriptor.digest)

        verifier = DigestVerifier(descriptor.digest, descriptor.size)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=".partial.", dir=destination.parent)
        except OSError as e:
            raise ImageIOError(f"Cannot create scratch file for {descriptor.digest}: {e}",
                               str(destination)) from e
        temp_path = Path(temp_name)

        try:
            with os.fdopen(fd, "wb") as out:
                with self.http.stream(f"/v2/{repository}/blobs/{descriptor.digest}",
                                      identifier=descriptor.digest) as response:
                    with transport_errors(descriptor.digest):
                        for chunk in response.iter_bytes(CHUNK_SIZE):
                            if cancel is not None and cancel.is_set():
                                raise FetchCancelled(f"Fetch of {descriptor.digest} cancelled",
                                                     descriptor.digest)
                            verifier.update(chunk)
                            out.write(chunk)

            verifier.verify()
            os.replace(temp_path, destination)
        except OSError as e:
            _discard(temp_path)
            raise ImageIOError(f"Failed to write blob {descriptor.digest}: {e}",
                               str(destination)) from e
        except Exception:
            _discard(temp_path)
            raise

        logger.debug(f"Verified {descriptor.digest} ({verifier.size} bytes)")
        return VerifiedBlob(descriptor=descriptor, path=destination)

    def fetch_image(self, repository: str, config: Descriptor, layers: Sequence[Descriptor],
                    directory: Path) -> Tuple[VerifiedBlob, List[VerifiedBlob]]:
        """
        Fetch an image's config and layer blobs in one concurrent fan-out.

        Returns:
            (config blob, layer blobs in manifest order)
        """
        stages: Dict[str, Stage] = {d.digest: "layer" for d in layers}
        stages[config.digest] = "config"
        blobs = self.fetch_all(repository, [config, *layers], directory, stages=stages)
        return blobs[0], blobs[1:]

    def fetch_all(self, repository: str, descriptors: Sequence[Descriptor], directory: Path,
                  *, stages: Optional[Mapping[str, Stage]] = None) -> List[VerifiedBlob]:
        """
        Fetch blobs concurrently and return them in descriptor order.

        Each distinct digest is downloaded once. Blocks until every fetch has
        succeeded or the first one failed; in the latter case the remaining
        fetches are cancelled, their partial files removed, and the first
        failure is raised.

        Args:
            stages: Progress stage per digest (default "layer")
        """
        stages = stages or {}
        unique: Dict[str, Descriptor] = {}
        for d in descriptors:
            unique.setdefault(d.digest, d)
        if not unique:
            return []

        cancel = threading.Event()
        results: Dict[str, VerifiedBlob] = {}
        first_error: Optional[BaseException] = None
        workers = min(self.max_workers, len(unique))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="graboid-fetch") as pool:
            futures: Dict[Future, Descriptor] = {
                pool.submit(self._fetch_reported, repository, d,
                            self.blob_path(directory, d), cancel,
                            stages.get(d.digest, "layer")): d
                for d in unique.values()
            }
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                error = future.exception()
                if error is None:
                    blob = future.result()
                    results[blob.descriptor.digest] = blob
                    continue
                if first_error is None:
                    first_error = error
                    cancel.set()
                    for pending in futures:
                        pending.cancel()
            # leaving the executor waits for in-flight fetches to unwind

        if first_error is not None:
            raise first_error

        return [results[d.digest] for d in descriptors]

    def _fetch_reported(self, repository: str, descriptor: Descriptor, destination: Path,
                        cancel: threading.Event, stage: Stage) -> VerifiedBlob:
        emit(self.sink, stage, descriptor.digest, "started", detail=True, size=descriptor.size)
        try:
            blob = self.fetch_blob(repository, descriptor, destination, cancel)
        except FetchCancelled:
            emit(self.sink, stage, descriptor.digest, "skipped", detail=True)
            raise
        except Exception:
            emit(self.sink, stage, descriptor.digest, "failed", detail=True)
            raise
        emit(self.sink, stage, descriptor.digest, "completed", detail=True, size=descriptor.size)
        return blob
