"""Shared pytest fixtures and configuration.

Fixture Categories:
1. Settings: mock_settings, prod_settings
2. Models: sample_instance_row, sample_instance
3. Infrastructure: mock_supabase_client, mock_logfire, test_client
4. Webhooks: sign_body, recording_handler
"""

import os
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

from src.config import Settings, get_settings
from src.models.instance_models import InstagramInstance
from src.services.webhook_security import compute_signature

TEST_CLIENT_SECRET = "test-client-secret"
TEST_VERIFY_TOKEN = "test-verify-token"

# Modules that log through logfire at import-time bound names
_LOGFIRE_MODULES = (
    "src.services.instagram_service",
    "src.services.event_router",
    "src.db.repository",
    "src.db.query_executor",
    "src.errors",
    "src.logging_config",
    "src.main",
)

# Modules that call get_settings() directly rather than through Depends
_SETTINGS_MODULES = (
    "src.db.repository",
    "src.db.client",
    "src.errors",
    "src.main",
)


def make_settings(**overrides) -> Settings:
    """Settings populated with test values."""
    values = dict(
        instagram_client_id="test-client-id",
        instagram_client_secret=TEST_CLIENT_SECRET,
        instagram_webhook_verify_token=TEST_VERIFY_TOKEN,
        instagram_redirect_uri="https://api.test.com/api/instagram/auth/callback",
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-service-key",
        api_url="https://api.test.com",
        frontend_url="https://app.test.com",
        env="local",
        logfire_token=None,
        database_url=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def mock_settings(monkeypatch):
    """Test settings, patched everywhere get_settings() is called directly."""
    settings = make_settings()
    for module in _SETTINGS_MODULES:
        monkeypatch.setattr(f"{module}.get_settings", lambda: settings)
    return settings


@pytest.fixture
def mock_logfire(monkeypatch):
    """Replace logfire in application modules with a mock."""

    @contextmanager
    def mock_span(*args, **kwargs):
        yield {}

    mock_logfire_module = MagicMock()
    mock_logfire_module.info = Mock()
    mock_logfire_module.debug = Mock()
    mock_logfire_module.warn = Mock()
    mock_logfire_module.error = Mock()
    mock_logfire_module.span = mock_span

    for module in _LOGFIRE_MODULES:
        monkeypatch.setattr(f"{module}.logfire", mock_logfire_module)

    return mock_logfire_module


@pytest.fixture
def mock_supabase_client(monkeypatch):
    """Mock Supabase client returned by the repository's client factory.

    Query chains resolve to MagicMocks; tests set ``.data`` on the
    ``execute.return_value`` of the chain they exercise.
    """
    client = MagicMock()
    monkeypatch.setattr("src.db.repository.get_supabase_client", lambda: client)
    return client


@pytest.fixture
def sample_instance_row():
    """Raw instagram_instances row as returned by Supabase."""
    return {
        "id": "inst-1",
        "instance_name": "aB3dE5gH7j",
        "name": "Main Store",
        "user_id": "user-1",
        "token": "f" * 64,
        "instagram_account_id": "123",
        "access_token": "IGQVJ-test-access-token",
        "token_type": "bearer",
        "token_expires_at": "2026-12-01T00:00:00+00:00",
        "is_long_lived": True,
        "username": "main_store",
        "status": "connected",
        "webhook_url": "https://api.test.com/api/instagram/webhook",
        "created_at": "2026-10-01T12:00:00+00:00",
        "updated_at": "2026-10-01T12:00:00+00:00",
    }


@pytest.fixture
def sample_instance(sample_instance_row):
    """InstagramInstance for account 123."""
    return InstagramInstance(**sample_instance_row)


@pytest.fixture
def sign_body():
    """Build the x-hub-signature-256 header for a raw body."""

    def _sign(raw_body: bytes, secret: str = TEST_CLIENT_SECRET) -> str:
        return f"sha256={compute_signature(raw_body, secret)}"

    return _sign


class RecordingHandler:
    """EventHandler that records every call."""

    def __init__(self):
        self.on_direct_message = AsyncMock()
        self.on_comment = AsyncMock()


@pytest.fixture
def recording_handler():
    """EventHandler double with AsyncMock methods."""
    return RecordingHandler()


@pytest.fixture
def test_client(mock_settings, mock_logfire):
    """FastAPI TestClient for E2E tests, wired to mock_settings."""
    from fastapi.testclient import TestClient

    from src.main import app

    app.dependency_overrides[get_settings] = lambda: mock_settings
    # raise_server_exceptions=False so error handlers render 500s as responses
    client = TestClient(app, raise_server_exceptions=False)
    yield client
    app.dependency_overrides.clear()
