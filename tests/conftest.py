"""Root pytest configuration for registry-dupe tests."""
import pytest

from registry_dupe.settings import Settings

from .fakes.fake_registry import FakeRegistry

# Import fixtures to make them available
from .fixtures.oci_registry import oci_registry


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Docker)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep the developer's environment and Docker credentials out of tests."""
    for key in (
        "REGISTRY_DUPE_SOURCE_URL",
        "REGISTRY_DUPE_DEST_URL",
        "REGISTRY_DUPE_SOURCE_USERNAME",
        "REGISTRY_DUPE_SOURCE_PASSWORD",
        "REGISTRY_DUPE_DEST_USERNAME",
        "REGISTRY_DUPE_DEST_PASSWORD",
        "REGISTRY_DUPE_CONCURRENCY",
        "REGISTRY_DUPE_INSECURE",
        "REGISTRY_DUPE_HTTP_TIMEOUT",
        "REGISTRY_DUPE_HTTP_RETRY",
        "REGISTRY_DUPE_PROGRESS_INTERVAL",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "docker-config"))


# Standardized test fixtures
@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(
        source_url="http://source.test:5000",
        dest_url="http://dest.test:5000",
        insecure=True,
    )


@pytest.fixture
def source():
    """Fake source registry."""
    return FakeRegistry()


@pytest.fixture
def destination():
    """Fake destination registry."""
    return FakeRegistry()
