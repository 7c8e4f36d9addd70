"""
Data models for registry documents and the docker-load index.

These Pydantic models validate manifests as they arrive from the registry and
describe the manifest.json written into the assembled archive. All models are
frozen: descriptors are immutable once resolved.
"""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .digest import parse_digest

__all__ = [
    "Platform",
    "Descriptor",
    "ImageManifest",
    "ManifestList",
    "ArchiveIndexEntry",
    "VerifiedBlob",
]


class _RegistryModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Platform(_RegistryModel):
    """Platform of a manifest list entry."""
    os: str = Field(..., description="Operating system (linux, windows, ...)")
    architecture: str = Field(..., description="CPU architecture in Go naming (amd64, arm64, ...)")
    variant: Optional[str] = Field(default=None, description="CPU variant (v7, v8, ...)")

    def __str__(self) -> str:
        parts = [self.os, self.architecture]
        if self.variant:
            parts.append(self.variant)
        return "/".join(parts)


class Descriptor(_RegistryModel):
    """Digest + size + media type identifying a retrievable blob or manifest."""
    media_type: str = Field(default="", alias="mediaType", description="Content media type")
    digest: str = Field(..., description="Content digest (sha256:...)")
    size: int = Field(..., ge=0, description="Content size in bytes")
    platform: Optional[Platform] = Field(default=None, description="Platform (manifest lists only)")

    @field_validator("digest")
    @classmethod
    def validate_digest(cls, v: str) -> str:
        if not v:
            raise ValueError("digest must not be empty")
        parse_digest(v)
        return v

    @property
    def hex(self) -> str:
        """Hex part of the digest, used for file names."""
        return parse_digest(self.digest)[1]


class ImageManifest(_RegistryModel):
    """Single-platform image manifest (Docker v2 schema 2 or OCI)."""
    schema_version: int = Field(..., alias="schemaVersion")
    media_type: str = Field(default="", alias="mediaType")
    config: Descriptor
    layers: List[Descriptor]

    @field_validator("schema_version")
    @classmethod
    def validate_schema_version(cls, v: int) -> int:
        if v != 2:
            raise ValueError(f"unsupported schemaVersion {v}")
        return v


class ManifestList(_RegistryModel):
    """Manifest list / OCI index pointing at per-platform manifests."""
    schema_version: int = Field(..., alias="schemaVersion")
    media_type: str = Field(default="", alias="mediaType")
    manifests: List[Descriptor]


class ArchiveIndexEntry(_RegistryModel):
    """One entry of the manifest.json read by `docker load`."""
    config: str = Field(..., alias="Config")
    repo_tags: List[str] = Field(..., alias="RepoTags")
    layers: List[str] = Field(..., alias="Layers")


class VerifiedBlob(BaseModel):
    """
    A blob on local disk whose content matched its descriptor's digest.

    Only the blob fetcher creates these; the assembler accepts nothing else.
    """
    model_config = ConfigDict(frozen=True)

    descriptor: Descriptor
    path: Path
