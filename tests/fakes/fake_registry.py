"""
In-memory Docker Registry v2 for tests.

Served through httpx.MockTransport, so RegistryHTTP talks to it exactly as it
would to a real registry: same URLs, auth challenges, status codes and
pagination headers.
"""
from __future__ import annotations

import base64
import hashlib
import json
import re
from typing import Dict, Iterator, List, Optional, Set, Tuple
from urllib.parse import urlencode

import httpx

from graboid import media_types as mt
from graboid.settings import Settings

REGISTRY_HOST = "registry.test"
AUTH_HOST = "auth.test"
TOKEN_REALM = f"https://{AUTH_HOST}/token"

_MANIFEST_PATH = re.compile(r"^/v2/(?P<repo>.+)/manifests/(?P<ref>[^/]+)$")
_BLOB_PATH = re.compile(r"^/v2/(?P<repo>.+)/blobs/(?P<digest>[^/]+)$")
_TAGS_PATH = re.compile(r"^/v2/(?P<repo>.+)/tags/list$")


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


class _BrokenStream(httpx.SyncByteStream):
    """Sends part of a body, then drops the connection."""

    def __init__(self, data: bytes):
        self.data = data

    def __iter__(self) -> Iterator[bytes]:
        yield self.data[: len(self.data) // 2]
        raise httpx.ReadError("connection reset by peer")


class FakeRegistry:
    """
    Fake registry with optional bearer or basic authentication.

    Args:
        auth: "none", "bearer" or "basic"
        username, password: Credentials the token endpoint (bearer) or the
            registry (basic) accepts; None accepts anonymous token requests
        token: Bearer token value issued by the token endpoint
        expires_in: expires_in field of token responses (omitted if None)
    """

    def __init__(self, *, auth: str = "none", username: Optional[str] = None,
                 password: Optional[str] = None, token: str = "test-token",
                 expires_in: Optional[int] = None):
        self.auth = auth
        self.username = username
        self.password = password
        self.token = token
        self.expires_in = expires_in

        self.manifests: Dict[Tuple[str, str], Tuple[str, bytes]] = {}
        self.blobs: Dict[str, bytes] = {}
        self.tags: Dict[str, List[str]] = {}
        self.tags_page_size: Optional[int] = None

        # Fault injection
        self.corrupt_blobs: Dict[str, bytes] = {}
        self.broken_blobs: Set[str] = set()
        self.fail_status: Dict[str, int] = {}

        self.requests: List[httpx.Request] = []
        self.token_requests: List[httpx.Request] = []

    # -- wiring -----------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def settings(self, **kwargs) -> Settings:
        kwargs.setdefault("registry_url", f"https://{REGISTRY_HOST}")
        return Settings(**kwargs)

    # -- seeding ----------------------------------------------------------

    def add_blob(self, data: bytes, media_type: str = mt.DOCKER_LAYER_GZIP) -> dict:
        digest = sha256_digest(data)
        self.blobs[digest] = data
        return {"mediaType": media_type, "digest": digest, "size": len(data)}

    def add_manifest(self, repo: str, body: bytes, media_type: str,
                     tag: Optional[str] = None) -> str:
        digest = sha256_digest(body)
        self.manifests[(repo, digest)] = (media_type, body)
        if tag is not None:
            self.manifests[(repo, tag)] = (media_type, body)
            self.add_tag(repo, tag)
        return digest

    def add_image(self, repo: str, tag: Optional[str], layers: List[bytes], *,
                  config: Optional[dict] = None,
                  media_type: str = mt.DOCKER_MANIFEST_V2) -> str:
        """Seed config, layers and a single-platform manifest; returns the manifest digest."""
        config_doc = config or {"architecture": "amd64", "os": "linux", "rootfs": {"type": "layers"}}
        config_bytes = json.dumps(config_doc, sort_keys=True).encode()
        config_type = mt.OCI_IMAGE_CONFIG if media_type == mt.OCI_IMAGE_MANIFEST else mt.DOCKER_IMAGE_CONFIG
        layer_type = mt.OCI_LAYER_GZIP if media_type == mt.OCI_IMAGE_MANIFEST else mt.DOCKER_LAYER_GZIP

        manifest = {
            "schemaVersion": 2,
            "mediaType": media_type,
            "config": self.add_blob(config_bytes, config_type),
            "layers": [self.add_blob(layer, layer_type) for layer in layers],
        }
        return self.add_manifest(repo, json.dumps(manifest).encode(), media_type, tag)

    def add_manifest_list(self, repo: str, tag: str, entries: List[Tuple[str, str]],
                          media_type: str = mt.DOCKER_MANIFEST_LIST) -> str:
        """
        Seed a manifest list.

        entries: (platform "os/arch[/variant]", manifest digest) in list order
        """
        manifests = []
        for platform, digest in entries:
            os_name, arch, *variant = platform.split("/")
            child_type, body = self.manifests[(repo, digest)]
            entry = {
                "mediaType": child_type,
                "digest": digest,
                "size": len(body),
                "platform": {"os": os_name, "architecture": arch},
            }
            if variant:
                entry["platform"]["variant"] = variant[0]
            manifests.append(entry)

        doc = {"schemaVersion": 2, "mediaType": media_type, "manifests": manifests}
        return self.add_manifest(repo, json.dumps(doc).encode(), media_type, tag)

    def add_tag(self, repo: str, tag: str) -> None:
        self.tags.setdefault(repo, []).append(tag)

    # -- request handling -------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == AUTH_HOST:
            self.token_requests.append(request)
            return self._token_endpoint(request)

        self.requests.append(request)
        denied = self._check_auth(request)
        if denied is not None:
            return denied

        path = request.url.path
        if path in self.fail_status:
            return httpx.Response(self.fail_status[path])
        if path == "/v2/":
            return httpx.Response(200, json={})

        match = _TAGS_PATH.match(path)
        if match:
            return self._tags_list(request, match["repo"])

        match = _MANIFEST_PATH.match(path)
        if match:
            entry = self.manifests.get((match["repo"], match["ref"]))
            if entry is None:
                return self._error(404, "MANIFEST_UNKNOWN")
            media_type, body = entry
            return httpx.Response(200, content=body, headers={
                "Content-Type": media_type,
                "Docker-Content-Digest": sha256_digest(body),
            })

        match = _BLOB_PATH.match(path)
        if match:
            digest = match["digest"]
            if digest not in self.blobs:
                return self._error(404, "BLOB_UNKNOWN")
            data = self.corrupt_blobs.get(digest, self.blobs[digest])
            if digest in self.broken_blobs:
                return httpx.Response(200, stream=_BrokenStream(data))
            return httpx.Response(200, content=data,
                                  headers={"Content-Type": "application/octet-stream"})

        return self._error(404, "NAME_UNKNOWN")

    def _check_auth(self, request: httpx.Request) -> Optional[httpx.Response]:
        presented = request.headers.get("Authorization")
        if self.auth == "bearer":
            if presented == f"Bearer {self.token}":
                return None
            challenge = f'Bearer realm="{TOKEN_REALM}",service="{REGISTRY_HOST}"'
            repo = self._repository_of(request.url.path)
            if repo:
                challenge += f',scope="repository:{repo}:pull"'
            return self._error(401, "UNAUTHORIZED", {"WWW-Authenticate": challenge})
        if self.auth == "basic":
            if presented == self._basic_header():
                return None
            return self._error(401, "UNAUTHORIZED", {"WWW-Authenticate": 'Basic realm="fake"'})
        return None

    def _token_endpoint(self, request: httpx.Request) -> httpx.Response:
        if self.username is not None and request.headers.get("Authorization") != self._basic_header():
            return httpx.Response(401, json={"details": "incorrect username or password"})
        body = {"token": self.token}
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        return httpx.Response(200, json=body)

    def _tags_list(self, request: httpx.Request, repo: str) -> httpx.Response:
        if repo not in self.tags:
            return self._error(404, "NAME_UNKNOWN")
        tags = self.tags[repo]
        n = self.tags_page_size or int(request.url.params.get("n", len(tags) or 1))
        last = request.url.params.get("last")
        start = tags.index(last) + 1 if last in tags else 0
        page = tags[start:start + n]

        headers = {}
        if start + n < len(tags):
            query = urlencode({"n": n, "last": page[-1]})
            headers["Link"] = f'</v2/{repo}/tags/list?{query}>; rel="next"'
        return httpx.Response(200, json={"name": repo, "tags": page}, headers=headers)

    def _basic_header(self) -> str:
        encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {encoded}"

    @staticmethod
    def _repository_of(path: str) -> Optional[str]:
        for pattern in (_MANIFEST_PATH, _BLOB_PATH, _TAGS_PATH):
            match = pattern.match(path)
            if match:
                return match["repo"]
        return None

    @staticmethod
    def _error(status: int, code: str, headers: Optional[dict] = None) -> httpx.Response:
        return httpx.Response(status, json={"errors": [{"code": code, "message": code.lower()}]},
                              headers=headers)
