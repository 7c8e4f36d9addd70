"""
Image reference parsing.

Turns user input such as "redis", "redis:7" or "bitnami/redis:7.2" into a
namespace-qualified ImageReference and derives the archive file name from it.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

__all__ = ["ImageReference", "parse_reference", "archive_basename"]

DEFAULT_TAG = "latest"
OFFICIAL_NAMESPACE = "library"

_REPO_COMPONENT = r"[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*"
_REPO_PATTERN = re.compile(rf"^{_REPO_COMPONENT}(?:/{_REPO_COMPONENT})*$")
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Repository name plus tag.

    repository is always namespace-qualified ("library/redis", "bitnami/redis").
    """
    repository: str
    tag: str = DEFAULT_TAG

    def __post_init__(self):
        if not self.repository:
            raise ValueError("repository cannot be empty")
        if "://" in self.repository:
            raise ValueError(f"repository must not contain a scheme: {self.repository}")
        if not _REPO_PATTERN.match(self.repository):
            raise ValueError(f"Invalid repository name: {self.repository}")
        if not _TAG_PATTERN.match(self.tag):
            raise ValueError(f"Invalid tag: {self.tag}")

    @property
    def scope(self) -> str:
        """Token scope for pulling this repository."""
        return f"repository:{self.repository}:pull"

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


def parse_reference(ref_str: str) -> ImageReference:
    """
    Parse "name[:tag]" into an ImageReference.

    - No tag implies "latest"
    - No "/" implies the official "library/" namespace
    - A registry host prefix is rejected; the registry comes from settings

    Examples:
        >>> parse_reference("redis")
        ImageReference(repository='library/redis', tag='latest')

        >>> parse_reference("bitnami/redis:7.2")
        ImageReference(repository='bitnami/redis', tag='7.2')

    Raises:
        ValueError: If the reference is empty or malformed
    """
    ref_str = ref_str.strip()
    if not ref_str:
        raise ValueError("Image reference cannot be empty")
    if "://" in ref_str:
        raise ValueError(f"Image reference must not contain a scheme: {ref_str}")
    if "@" in ref_str:
        raise ValueError(f"Digest references are not supported: {ref_str}")

    # Tag separator is a ":" after the last "/"
    name, tag = ref_str, DEFAULT_TAG
    last_slash = ref_str.rfind("/")
    colon = ref_str.rfind(":")
    if colon > last_slash:
        name, tag = ref_str[:colon], ref_str[colon + 1:]
        if not tag:
            raise ValueError(f"Empty tag in image reference: {ref_str}")

    if "/" in name:
        first = name.split("/", 1)[0]
        if "." in first or ":" in first or first == "localhost":
            raise ValueError(
                f"Registry host in image reference is not supported: {ref_str}. "
                f"Use --registry to select the registry."
            )
    else:
        name = f"{OFFICIAL_NAMESPACE}/{name}"

    return ImageReference(repository=name, tag=tag)


def archive_basename(reference: ImageReference) -> str:
    """
    File name stem for the archive of a reference.

    Path-unsafe characters in the repository name are replaced with "_".

    >>> archive_basename(ImageReference("library/redis", "7"))
    'library_redis'
    """
    return re.sub(r"[^A-Za-z0-9._-]", "_", reference.repository)
