"""Test doubles for graboid."""
from .fake_registry import FakeRegistry, sha256_digest

__all__ = ["FakeRegistry", "sha256_digest"]
