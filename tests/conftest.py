"""Root pytest configuration for graboid tests."""
import pytest

from graboid.registry import DockerAuth
from graboid.settings import Settings

from .fakes import FakeRegistry

REDIS_LAYERS = [b"layer-one" * 100, b"layer-two" * 200, b"layer-three" * 50]


# Set up test environment variables
@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's registry environment and Docker config."""
    for key in ("GRABOID_INDEX", "GRABOID_REGISTRY", "HTTPS_PROXY", "GRABOID_INSECURE",
                "GRABOID_USERNAME", "GRABOID_PASSWORD", "GRABOID_HTTP_TIMEOUT",
                "GRABOID_HTTP_RETRY", "GRABOID_CONCURRENCY", "GRABOID_PLATFORM"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def docker_auth(tmp_path):
    """Docker config lookup pointing at a file that does not exist."""
    return DockerAuth(tmp_path / "docker-config.json")


@pytest.fixture
def registry():
    """Anonymous fake registry seeded with library/redis."""
    fake = FakeRegistry()
    fake.add_image("library/redis", "latest", REDIS_LAYERS)
    fake.add_tag("library/redis", "1.0")
    fake.add_tag("library/redis", "1.1")
    return fake


@pytest.fixture
def bearer_registry():
    """Fake registry behind a bearer token service, seeded with library/redis."""
    fake = FakeRegistry(auth="bearer")
    fake.add_image("library/redis", "latest", REDIS_LAYERS)
    return fake


@pytest.fixture
def settings(registry) -> Settings:
    """Standard test settings pointing at the fake registry."""
    return registry.settings()
