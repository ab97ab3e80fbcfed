"""Shared test fixtures -- reduces boilerplate across test modules.

Provides:
- ``set_test_config`` -- autouse fixture that patches common settings
- ``reset_state`` -- autouse fixture that clears rate-limit and cache state
- ``test_client`` -- pre-built TestClient against the app
- ``GRAPH_TOKEN`` / ``GITHUB_TOKEN`` / ``auth_header`` -- provider credentials
"""

import pytest
from fastapi.testclient import TestClient

from poolside.api.rate_limit import chat_limiter
from poolside.clients import github_client
from poolside.main import app

# ---------------------------------------------------------------------------
# Canonical test credentials
# ---------------------------------------------------------------------------

GRAPH_TOKEN = "graph-test-token"
GITHUB_TOKEN = "gho_testtoken123"

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "poolside.config.settings.ENVIRONMENT": "development",
    "poolside.config.settings.ANTHROPIC_API_KEY": "test-key",
    "poolside.config.settings.LLM_HAIKU_MODEL": "test-haiku",
    "poolside.config.settings.LLM_SONNET_MODEL": "test-sonnet",
    "poolside.config.settings.LLM_OPUS_MODEL": "test-opus",
    "poolside.config.settings.DEFAULT_CHAT_MODEL": "sonnet",
    "poolside.config.settings.ANALYSIS_MODEL": "haiku",
    "poolside.config.settings.LLM_MAX_RETRIES": 2,
    "poolside.config.settings.LLM_RETRY_MAX_WAIT": 0.0,
    "poolside.config.settings.CHAT_MAX_TOOL_ITERATIONS": 5,
    "poolside.config.settings.SEARCH_RESULT_LIMIT": 50,
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    This is ``autouse=True`` so every test automatically gets a
    deterministic, non-production configuration with instant retries.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


@pytest.fixture(autouse=True)
def reset_state():
    """Start every test with an empty chat limiter and GitHub cache."""
    chat_limiter.reset()
    github_client.clear_caches()
    yield
    chat_limiter.reset()
    github_client.clear_caches()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(token: str = GRAPH_TOKEN) -> dict:
    """Return an ``Authorization`` header carrying a provider token."""
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app, raise_server_exceptions=False)
