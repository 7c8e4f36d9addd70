"""
Tests for verified blob fetching.

Covers streaming verification, atomic placement, cancellation and the
concurrent fan-out's fail-fast behavior.
"""
from __future__ import annotations

import threading
from pathlib import Path

import httpx
import pytest

from graboid.errors import IntegrityError, NetworkError, NotFoundError
from graboid.events import ProgressEvent
from graboid.models import Descriptor, VerifiedBlob
from graboid.registry import BlobFetcher, FetchCancelled, RegistryHTTP
from graboid.registry.blobs import CHUNK_SIZE

from .fakes import FakeRegistry, sha256_digest

REPO = "library/redis"


def _fetcher(fake: FakeRegistry, docker_auth, **kwargs) -> BlobFetcher:
    http = RegistryHTTP(fake.settings(), f"repository:{REPO}:pull",
                        transport=fake.transport, docker_auth=docker_auth)
    http.authenticate()
    return BlobFetcher(http, **kwargs)


def _descriptor(fake: FakeRegistry, data: bytes) -> Descriptor:
    return Descriptor.model_validate(fake.add_blob(data))


def _leftovers(directory: Path):
    return sorted(p.name for p in directory.iterdir() if p.name.startswith(".partial."))


class TestFetchBlob:
    """Test single blob download and verification."""

    def test_verified_blob_written(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = _descriptor(fake, b"layer bytes")
        destination = tmp_path / descriptor.hex

        blob = _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, destination)

        assert isinstance(blob, VerifiedBlob)
        assert blob.path == destination
        assert destination.read_bytes() == b"layer bytes"
        assert _leftovers(tmp_path) == []

    def test_digest_mismatch_leaves_nothing(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = _descriptor(fake, b"original")
        fake.corrupt_blobs[descriptor.digest] = b"tampered"
        destination = tmp_path / descriptor.hex

        with pytest.raises(IntegrityError) as exc_info:
            _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, destination)

        err = exc_info.value
        assert err.digest == descriptor.digest
        assert err.expected == descriptor.digest
        assert err.actual == sha256_digest(b"tampered")
        assert not destination.exists()
        assert _leftovers(tmp_path) == []

    def test_truncated_body(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = _descriptor(fake, b"0123456789")
        fake.corrupt_blobs[descriptor.digest] = b"01234"
        with pytest.raises(IntegrityError, match="Size mismatch"):
            _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, tmp_path / "blob")

    def test_connection_drop(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = _descriptor(fake, b"x" * 1000)
        fake.broken_blobs.add(descriptor.digest)

        with pytest.raises(NetworkError):
            _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, tmp_path / "blob")
        assert list(tmp_path.iterdir()) == []

    def test_unknown_blob(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = Descriptor(digest=sha256_digest(b"never uploaded"), size=14)
        with pytest.raises(NotFoundError) as exc_info:
            _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, tmp_path / "blob")
        assert exc_info.value.identifier == descriptor.digest

    def test_cancelled_before_start(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptor = _descriptor(fake, b"data")
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(FetchCancelled):
            _fetcher(fake, docker_auth).fetch_blob(REPO, descriptor, tmp_path / "blob", cancel)
        assert not any(r.url.path.endswith(descriptor.digest) for r in fake.requests)

    def test_cancelled_mid_stream(self, docker_auth, tmp_path):
        """Test that cancel is honoured between chunks and the partial file removed."""
        data = b"a" * CHUNK_SIZE + b"b" * CHUNK_SIZE
        digest = sha256_digest(data)
        cancel = threading.Event()

        class _CancellingStream(httpx.SyncByteStream):
            def __iter__(self):
                yield data[:CHUNK_SIZE]
                cancel.set()
                yield data[CHUNK_SIZE:]

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/":
                return httpx.Response(200)
            return httpx.Response(200, stream=_CancellingStream())

        fake = FakeRegistry()
        http = RegistryHTTP(fake.settings(), f"repository:{REPO}:pull",
                            transport=httpx.MockTransport(handler), docker_auth=docker_auth)
        descriptor = Descriptor(digest=digest, size=len(data))

        with pytest.raises(FetchCancelled):
            BlobFetcher(http).fetch_blob(REPO, descriptor, tmp_path / "blob", cancel)
        assert list(tmp_path.iterdir()) == []


class TestFetchAll:
    """Test the concurrent fan-out."""

    def test_results_in_descriptor_order(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptors = [_descriptor(fake, f"layer-{i}".encode() * 100) for i in range(6)]

        blobs = _fetcher(fake, docker_auth, max_workers=3).fetch_all(REPO, descriptors, tmp_path)

        assert [b.descriptor for b in blobs] == descriptors
        for blob in blobs:
            assert sha256_digest(blob.path.read_bytes()) == blob.descriptor.digest

    def test_duplicate_digest_fetched_once(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        shared = _descriptor(fake, b"shared base layer")
        other = _descriptor(fake, b"app layer")

        blobs = _fetcher(fake, docker_auth).fetch_all(REPO, [shared, other, shared], tmp_path)

        assert [b.descriptor.digest for b in blobs] == [shared.digest, other.digest, shared.digest]
        blob_requests = [r for r in fake.requests if r.url.path.endswith(shared.digest)]
        assert len(blob_requests) == 1

    def test_empty(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        assert _fetcher(fake, docker_auth).fetch_all(REPO, [], tmp_path) == []

    def test_first_failure_raised_and_partials_removed(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        good = [_descriptor(fake, f"good-{i}".encode() * 1000) for i in range(4)]
        bad = _descriptor(fake, b"bad layer")
        fake.corrupt_blobs[bad.digest] = b"evil layer"

        with pytest.raises(IntegrityError) as exc_info:
            _fetcher(fake, docker_auth, max_workers=2).fetch_all(REPO, [*good[:2], bad, *good[2:]], tmp_path)

        assert exc_info.value.digest == bad.digest
        assert _leftovers(tmp_path) == []
        assert not (tmp_path / bad.hex).exists()

    def test_network_failure_propagates(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        descriptors = [_descriptor(fake, f"layer-{i}".encode()) for i in range(3)]
        fake.broken_blobs.add(descriptors[1].digest)

        with pytest.raises(NetworkError):
            _fetcher(fake, docker_auth).fetch_all(REPO, descriptors, tmp_path)
        assert _leftovers(tmp_path) == []

    def test_fetch_image_labels_config(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        config = _descriptor(fake, b'{"os":"linux"}')
        layers = [_descriptor(fake, b"layer-a"), _descriptor(fake, b"layer-b")]
        events = []

        fetcher = _fetcher(fake, docker_auth, sink=events.append)
        config_blob, layer_blobs = fetcher.fetch_image(REPO, config, layers, tmp_path)

        assert config_blob.descriptor == config
        assert [b.descriptor for b in layer_blobs] == layers
        completed = {(e.stage, e.item) for e in events if e.outcome == "completed"}
        assert completed == {("config", config.digest), ("layer", layers[0].digest),
                             ("layer", layers[1].digest)}
        assert all(isinstance(e, ProgressEvent) and e.detail for e in events)

    def test_failure_events(self, docker_auth, tmp_path):
        fake = FakeRegistry()
        bad = _descriptor(fake, b"bad")
        fake.corrupt_blobs[bad.digest] = b"bat"
        events = []

        with pytest.raises(IntegrityError):
            _fetcher(fake, docker_auth, sink=events.append).fetch_all(REPO, [bad], tmp_path)
        assert [e.outcome for e in events] == ["started", "failed"]
