"""
Pytest fixtures for the storyboard studio backend tests.

Everything runs against the in-memory repository, mock providers and a
temporary local storage directory. SQL repository tests use a throwaway
SQLite file through aiosqlite.
"""

import pytest

from studio.config import Settings
from studio.services.container import build_container
from studio.services.credentials import ResolvedCredential

SERVER_KEY = "server-key-0123456789abcdef"
USER_KEY = "user-key-0123456789abcdefgh"


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_gcs: mark test as talking to a real GCS bucket (skipped in CI)",
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Mock providers, local storage only, no server key."""
    return Settings(
        _env_file=None,
        gemini_api_key="",
        provider_mode="mock",
        use_in_memory_store=True,
        storage_provider_order_raw="local",
        default_storage_provider="local",
        local_storage_path=str(tmp_path / "storage"),
        generation_poll_interval_s=0.01,
        generation_timeout_s=5.0,
        mock_video_polls_until_done=2,
    )


@pytest.fixture
def container(settings):
    """Fresh service graph per test (its queue binds to the running loop)."""
    return build_container(settings)


@pytest.fixture
def user_credential() -> ResolvedCredential:
    return ResolvedCredential(source="user", key=USER_KEY)
