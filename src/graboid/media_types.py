"""
Registry media types and constants.

Single source of truth for the manifest and blob media types we negotiate.
"""
from __future__ import annotations

# Single-platform manifests
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"

# Multi-platform manifests
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"

# Legacy schema 1 manifests (recognised only to reject them clearly)
DOCKER_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
DOCKER_MANIFEST_V1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"

# Config blobs
DOCKER_IMAGE_CONFIG = "application/vnd.docker.container.image.v1+json"
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"

# Layer blobs
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"
OCI_LAYER_TAR = "application/vnd.oci.image.layer.v1.tar"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
OCI_LAYER_ZSTD = "application/vnd.oci.image.layer.v1.tar+zstd"

SINGLE_MANIFEST_TYPES = (DOCKER_MANIFEST_V2, OCI_IMAGE_MANIFEST)
MANIFEST_LIST_TYPES = (DOCKER_MANIFEST_LIST, OCI_IMAGE_INDEX)

# Accept header order: single manifests first, then lists
ACCEPTED_MANIFEST_TYPES = SINGLE_MANIFEST_TYPES + MANIFEST_LIST_TYPES


__all__ = [
    "DOCKER_MANIFEST_V2",
    "OCI_IMAGE_MANIFEST",
    "DOCKER_MANIFEST_LIST",
    "OCI_IMAGE_INDEX",
    "DOCKER_MANIFEST_V1",
    "DOCKER_MANIFEST_V1_SIGNED",
    "DOCKER_IMAGE_CONFIG",
    "OCI_IMAGE_CONFIG",
    "DOCKER_LAYER_GZIP",
    "OCI_LAYER_TAR",
    "OCI_LAYER_GZIP",
    "OCI_LAYER_ZSTD",
    "SINGLE_MANIFEST_TYPES",
    "MANIFEST_LIST_TYPES",
    "ACCEPTED_MANIFEST_TYPES",
]
