"""
Manifest resolution.

Fetches image manifests with full content negotiation, narrows manifest lists
to the single entry for the target platform and validates the result.

Platform policy: the target is the configured platform ("os/arch[/variant]")
or, when none is configured, linux on the host's CPU architecture. Entries
match on os and architecture, and on variant only when the target names one.
The first match in registry order wins; no match is an UnsupportedFormatError.
"""
from __future__ import annotations

import json
import logging
import platform as _platform
from typing import List, Optional, Tuple

from pydantic import ValidationError

from .. import media_types as mt
from ..digest import validate_digest, verify_bytes
from ..errors import InvalidManifestError, UnsupportedFormatError
from ..models import Descriptor, ImageManifest, ManifestList, Platform
from .http import RegistryHTTP

__all__ = ["ManifestResolver", "host_platform", "select_platform"]

logger = logging.getLogger(__name__)

# Python machine names -> Go architecture names used in manifest lists
_ARCH_ALIASES = {
    "x86_64": ("amd64", None),
    "amd64": ("amd64", None),
    "aarch64": ("arm64", None),
    "arm64": ("arm64", None),
    "armv7l": ("arm", "v7"),
    "armv6l": ("arm", "v6"),
    "i386": ("386", None),
    "i686": ("386", None),
    "ppc64le": ("ppc64le", None),
    "s390x": ("s390x", None),
    "riscv64": ("riscv64", None),
}

TAGS_PAGE_SIZE = 1000


def host_platform() -> str:
    """Default target platform: linux on the host CPU architecture."""
    machine = _platform.machine().lower()
    arch, variant = _ARCH_ALIASES.get(machine, (machine or "amd64", None))
    return f"linux/{arch}/{variant}" if variant else f"linux/{arch}"


def _parse_platform(target: str) -> Platform:
    parts = target.split("/")
    if len(parts) not in (2, 3) or not all(parts):
        raise ValueError(f"Invalid platform: {target}. Expected os/arch[/variant]")
    return Platform(os=parts[0], architecture=parts[1],
                    variant=parts[2] if len(parts) == 3 else None)


def select_platform(manifest_list: ManifestList, target: str) -> Descriptor:
    """
    Pick the manifest list entry for a target platform.

    Raises:
        UnsupportedFormatError: If no entry matches
    """
    wanted = _parse_platform(target)
    for entry in manifest_list.manifests:
        p = entry.platform
        if p is None:
            continue
        if p.os != wanted.os or p.architecture != wanted.architecture:
            continue
        if wanted.variant and p.variant != wanted.variant:
            continue
        return entry

    available = ", ".join(str(e.platform) for e in manifest_list.manifests if e.platform) or "none"
    raise UnsupportedFormatError(
        f"No manifest for platform {target} (available: {available})", target
    )


class ManifestResolver:
    """
    Resolve tags to single-platform manifests and list repository tags.

    Args:
        http: Authenticated registry client for this pull
        platform: Target platform for manifest lists (default: host_platform())
    """

    def __init__(self, http: RegistryHTTP, platform: Optional[str] = None):
        self.http = http
        self.platform = platform or host_platform()

    def list_tags(self, repository: str) -> List[str]:
        """
        List tags in registry order, following pagination.

        Duplicates are dropped (first occurrence kept); nothing is re-sorted.

        Raises:
            NotFoundError: Unknown repository
            InvalidManifestError: Malformed tags response
        """
        tags: List[str] = []
        seen = set()
        path: Optional[str] = f"/v2/{repository}/tags/list"
        params: Optional[dict] = {"n": str(TAGS_PAGE_SIZE)}

        while path:
            response = self.http.get(path, identifier=repository, params=params)
            try:
                data = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise InvalidManifestError(f"Invalid tags response for {repository}: {e}", repository) from e

            page = data.get("tags") if isinstance(data, dict) else None
            if page is None:
                page = []
            if not isinstance(page, list):
                raise InvalidManifestError(f"Invalid tags response for {repository}", repository)

            for tag in page:
                if tag not in seen:
                    seen.add(tag)
                    tags.append(tag)

            # The next link already carries its own query string
            next_link = response.links.get("next", {}).get("url")
            path, params = (next_link, None) if next_link else (None, None)

        logger.debug(f"Found {len(tags)} tags for {repository}")
        return tags

    def get_manifest(self, repository: str, reference: str) -> ImageManifest:
        """
        Resolve a tag (or digest) to a validated single-platform manifest.

        Raises:
            NotFoundError: Unknown repository, tag or manifest
            InvalidManifestError: Malformed JSON or inconsistent structure
            UnsupportedFormatError: Unknown media type or no matching platform
            IntegrityError: Manifest fetched by digest does not match it
        """
        identifier = f"{repository}:{reference}" if not validate_digest(reference) \
            else f"{repository}@{reference}"
        media_type, body = self._fetch(repository, reference, identifier)

        if media_type in mt.MANIFEST_LIST_TYPES:
            manifest_list = self._parse(ManifestList, body, identifier)
            entry = select_platform(manifest_list, self.platform)
            logger.info(f"Selected {entry.platform} manifest {entry.digest} for {identifier}")

            child_id = f"{repository}@{entry.digest}"
            media_type, body = self._fetch(repository, entry.digest, child_id)
            if media_type in mt.MANIFEST_LIST_TYPES:
                raise UnsupportedFormatError(f"Nested manifest list at {child_id}", child_id)
            identifier = child_id

        if media_type not in mt.SINGLE_MANIFEST_TYPES:
            raise UnsupportedFormatError(
                f"Unsupported manifest media type: {media_type or 'unknown'} for {identifier}. "
                f"Expected one of: {', '.join(mt.ACCEPTED_MANIFEST_TYPES)}",
                identifier,
            )

        manifest = self._parse(ImageManifest, body, identifier)
        logger.debug(f"Resolved {identifier}: config {manifest.config.digest}, "
                     f"{len(manifest.layers)} layers")
        return manifest

    def _fetch(self, repository: str, reference: str, identifier: str) -> Tuple[str, bytes]:
        """Fetch a manifest body and determine its media type."""
        headers = {"Accept": ", ".join(mt.ACCEPTED_MANIFEST_TYPES)}
        response = self.http.get(f"/v2/{repository}/manifests/{reference}",
                                 identifier=identifier, headers=headers)
        body = response.content

        if validate_digest(reference):
            verify_bytes(body, reference)

        content_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
        return self._detect_media_type(content_type, body, identifier), body

    @staticmethod
    def _detect_media_type(content_type: str, body: bytes, identifier: str) -> str:
        try:
            doc = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidManifestError(f"Invalid JSON in manifest {identifier}: {e}", identifier) from e
        if not isinstance(doc, dict):
            raise InvalidManifestError(f"Manifest {identifier} is not a JSON object", identifier)

        declared = doc.get("mediaType")
        if isinstance(declared, str) and declared:
            return declared
        if content_type in mt.ACCEPTED_MANIFEST_TYPES:
            return content_type

        # OCI documents may omit mediaType; fall back on shape
        if doc.get("schemaVersion") == 2:
            if "manifests" in doc:
                return mt.OCI_IMAGE_INDEX
            if "config" in doc and "layers" in doc:
                return mt.OCI_IMAGE_MANIFEST
        if doc.get("schemaVersion") == 1:
            return mt.DOCKER_MANIFEST_V1
        return content_type

    @staticmethod
    def _parse(model, body: bytes, identifier: str):
        try:
            return model.model_validate_json(body)
        except ValidationError as e:
            raise InvalidManifestError(f"Invalid manifest {identifier}: {e}", identifier) from e
